"""Ingress for start/finish events reported by the local Bambu bridge."""

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.services.bambu_events import BambuEventError, InvalidEventError, parse_event
from backend.app.services.cycle_reconciler import cycle_reconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bambu-events", tags=["bambu-events"])


@router.post("")
async def receive_bambu_event(request: Request, db: AsyncSession = Depends(get_db)):
    """Apply a printer started/finished event to the planned cycles.

    Expected anomalies (no cycle to start or finish, a failed store write) are
    reported in a 200 body; only malformed events, unknown printers and an
    unreachable store end in an error status.
    """
    try:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise InvalidEventError("Invalid JSON body") from e

        logger.info("Received event: %s", body)
        command = parse_event(body)
        result = await cycle_reconciler.reconcile(db, command)
    except BambuEventError as e:
        if e.status_code >= 500:
            logger.error("Event rejected: %s", e)
        else:
            logger.warning("Event rejected (%s): %s", e.status_code, e)
        return JSONResponse(status_code=e.status_code, content=e.to_dict())
    except Exception as e:
        logger.exception("Unexpected error handling Bambu event")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(e)})

    return result.model_dump()
