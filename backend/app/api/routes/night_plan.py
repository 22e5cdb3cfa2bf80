"""API route for the night preload plan."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.schemas.night_plan import NightPreloadSummaryResponse
from backend.app.services.night_preload import load_night_plan

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/night-plan", tags=["night-plan"])


@router.get("", response_model=NightPreloadSummaryResponse)
async def get_night_plan(
    at: datetime | None = Query(None, description="Reference instant (ISO 8601, UTC if no offset); defaults to now"),
    db: AsyncSession = Depends(get_db),
):
    """Plates to preload per printer for the night after ``at``."""
    reference = at or datetime.now(timezone.utc)
    summary = await load_night_plan(db, reference)
    return NightPreloadSummaryResponse.model_validate(summary)
