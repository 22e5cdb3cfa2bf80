"""API routes for planned cycles.

Cycles are created and re-planned here; their status only moves through
printer events (see services/cycle_reconciler.py).
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.database import get_db
from backend.app.models.planned_cycle import ELIGIBLE_FOR_START, PlannedCycle
from backend.app.models.printer import Printer
from backend.app.models.project import Project
from backend.app.schemas.cycle import PlannedCycleCreate, PlannedCycleResponse, PlannedCycleUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cycles", tags=["cycles"])


async def _validate_links(db: AsyncSession, printer_id: int | None, project_id: int | None):
    if printer_id is not None and not await db.get(Printer, printer_id):
        raise HTTPException(400, "Printer not found")
    if project_id is not None and not await db.get(Project, project_id):
        raise HTTPException(400, "Project not found")


@router.get("/", response_model=list[PlannedCycleResponse])
async def list_cycles(
    printer_id: int | None = Query(None, description="Filter by printer"),
    status: str | None = Query(None, description="Filter by status"),
    db: AsyncSession = Depends(get_db),
):
    """List planned cycles, earliest start first."""
    query = select(PlannedCycle).order_by(PlannedCycle.start_time.asc().nulls_last(), PlannedCycle.id)

    if printer_id is not None:
        query = query.where(PlannedCycle.printer_id == printer_id)
    if status:
        query = query.where(PlannedCycle.status == status)

    result = await db.execute(query)
    return list(result.scalars().all())


@router.post("/", response_model=PlannedCycleResponse)
async def create_cycle(data: PlannedCycleCreate, db: AsyncSession = Depends(get_db)):
    """Add a cycle to a printer's plan."""
    await _validate_links(db, data.printer_id, data.project_id)

    cycle = PlannedCycle(**data.model_dump())
    db.add(cycle)
    await db.commit()
    await db.refresh(cycle)

    logger.info(f"Planned cycle {cycle.id} on printer {cycle.printer_id} at {cycle.start_time}")
    return cycle


@router.get("/{cycle_id}", response_model=PlannedCycleResponse)
async def get_cycle(cycle_id: int, db: AsyncSession = Depends(get_db)):
    """Get a specific cycle."""
    cycle = await db.get(PlannedCycle, cycle_id)
    if not cycle:
        raise HTTPException(404, "Cycle not found")
    return cycle


@router.patch("/{cycle_id}", response_model=PlannedCycleResponse)
async def update_cycle(cycle_id: int, data: PlannedCycleUpdate, db: AsyncSession = Depends(get_db)):
    """Re-plan a cycle that has not started yet."""
    cycle = await db.get(PlannedCycle, cycle_id)
    if not cycle:
        raise HTTPException(404, "Cycle not found")

    if cycle.status not in ELIGIBLE_FOR_START:
        raise HTTPException(400, "Can only update planned or scheduled cycles")

    update_data = data.model_dump(exclude_unset=True)
    await _validate_links(db, update_data.get("printer_id"), update_data.get("project_id"))

    for field, value in update_data.items():
        setattr(cycle, field, value)

    await db.commit()
    await db.refresh(cycle)
    return cycle
