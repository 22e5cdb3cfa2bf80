"""Store access for printers and planned cycles.

Status writes are compare-and-set updates: they only touch rows that are still
in the expected status and report whether anything changed.
"""

from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.planned_cycle import (
    CYCLE_COMPLETED,
    CYCLE_IN_PROGRESS,
    ELIGIBLE_FOR_START,
    OPEN_CYCLE_STATUSES,
    PlannedCycle,
)
from backend.app.models.printer import Printer


async def list_printers(db: AsyncSession) -> list[Printer]:
    result = await db.execute(select(Printer).order_by(Printer.id))
    return list(result.scalars().all())


async def get_printer_cycles(
    db: AsyncSession,
    printer_id: int,
    statuses: Sequence[str],
    limit: int | None = None,
) -> list[PlannedCycle]:
    """Cycles of one printer in the given statuses, earliest start first."""
    query = (
        select(PlannedCycle)
        .where(PlannedCycle.printer_id == printer_id)
        .where(PlannedCycle.status.in_(statuses))
        .order_by(PlannedCycle.start_time.asc().nulls_last(), PlannedCycle.id.asc())
    )
    if limit is not None:
        query = query.limit(limit)
    result = await db.execute(query)
    return list(result.scalars().all())


async def list_open_cycles(db: AsyncSession) -> list[PlannedCycle]:
    """All cycles that have not completed yet, across every printer."""
    result = await db.execute(
        select(PlannedCycle)
        .where(PlannedCycle.status.in_(OPEN_CYCLE_STATUSES))
        .order_by(PlannedCycle.printer_id, PlannedCycle.start_time, PlannedCycle.id)
    )
    return list(result.scalars().all())


async def set_printer_status(db: AsyncSession, printer_id: int, status: str) -> None:
    await db.execute(
        update(Printer)
        .where(Printer.id == printer_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )


async def complete_cycles(db: AsyncSession, cycle_ids: Sequence[int], now: datetime) -> int:
    """Close in_progress cycles. Returns how many rows were still in_progress."""
    if not cycle_ids:
        return 0
    result = await db.execute(
        update(PlannedCycle)
        .where(PlannedCycle.id.in_(cycle_ids))
        .where(PlannedCycle.status == CYCLE_IN_PROGRESS)
        .values(status=CYCLE_COMPLETED, end_time=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


async def activate_cycle(db: AsyncSession, cycle_id: int, now: datetime) -> bool:
    """Move a planned/scheduled cycle to in_progress, starting it now."""
    result = await db.execute(
        update(PlannedCycle)
        .where(PlannedCycle.id == cycle_id)
        .where(PlannedCycle.status.in_(ELIGIBLE_FOR_START))
        .values(status=CYCLE_IN_PROGRESS, start_time=now)
        .execution_options(synchronize_session=False)
    )
    return (result.rowcount or 0) == 1
