"""Cycle reconciler - applies printer start/finish events to planned cycles.

This is the only writer of cycle status transitions. It keeps at most one
``in_progress`` cycle per printer even when the bridge delivers events twice,
late, or not at all:

- ``started``: stale in_progress cycles are closed (a new start proves the
  previous run ended), then the earliest planned/scheduled cycle is activated.
- ``finished``: the single in_progress cycle is completed; if there is none the
  result is flagged for manual reconciliation.

Each mutation runs as its own step. A store error in one step is logged and
reported in the response, and the remaining steps still run.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.models.planned_cycle import CYCLE_IN_PROGRESS, ELIGIBLE_FOR_START
from backend.app.schemas.bambu_event import FinishedEventResponse, StartedEventResponse
from backend.app.services import cycle_store
from backend.app.services.bambu_events import (
    EventCommand,
    ExplicitGrams,
    FinishedCommand,
    FromUnits,
    PrinterNotFoundError,
    StartedCommand,
    StoreUnavailableError,
)
from backend.app.services.printer_matching import DEFAULT_MATCHERS, SerialMatcher, match_printer

logger = logging.getLogger(__name__)

PRINTER_STATUS_ACTIVE = "active"

# Returned by the lookup step of a finished event when the store failed
_LOOKUP_FAILED = object()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class StepOutcome:
    name: str
    ok: bool = True
    reason: str | None = None


@dataclass
class StepRunner:
    """Runs mutation steps one by one, committing each on its own.

    A failing step is rolled back and recorded as degraded instead of aborting
    the handler.
    """

    db: AsyncSession
    printer_id: int
    outcomes: list[StepOutcome] = field(default_factory=list)

    async def run(self, name: str, step: Callable[[], Awaitable[Any]], default: Any = None) -> Any:
        try:
            result = await step()
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning("Step %s failed for printer %s: %s", name, self.printer_id, e)
            self.outcomes.append(StepOutcome(name, ok=False, reason=str(e)))
            return default
        self.outcomes.append(StepOutcome(name))
        return result

    @property
    def degraded(self) -> list[str]:
        return [o.name for o in self.outcomes if not o.ok]


@dataclass
class SweepResult:
    completed_ids: list[int] = field(default_factory=list)
    current_ids: list[int] = field(default_factory=list)  # in_progress cycles started by a duplicate event


class CycleReconciler:
    """Applies bridge events to printers and planned cycles."""

    def __init__(
        self,
        matchers: tuple[SerialMatcher, ...] = DEFAULT_MATCHERS,
        duplicate_start_window: timedelta | None = None,
    ):
        self._matchers = matchers
        self._duplicate_start_window = duplicate_start_window
        self._locks: dict[int, asyncio.Lock] = {}

    @property
    def duplicate_start_window(self) -> timedelta:
        if self._duplicate_start_window is not None:
            return self._duplicate_start_window
        return timedelta(seconds=settings.duplicate_start_window_seconds)

    def _lock_for(self, printer_id: int) -> asyncio.Lock:
        lock = self._locks.get(printer_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[printer_id] = lock
        return lock

    async def reconcile(
        self,
        db: AsyncSession,
        command: EventCommand,
        now: datetime | None = None,
    ) -> StartedEventResponse | FinishedEventResponse:
        """Apply one event for the printer that owns ``command.serial``.

        Raises:
            StoreUnavailableError: printers could not be loaded.
            PrinterNotFoundError: no printer is registered for the serial.
        """
        try:
            printers = await cycle_store.list_printers(db)
        except SQLAlchemyError as e:
            logger.error("Error fetching printers: %s", e)
            await db.rollback()
            raise StoreUnavailableError("Failed to fetch printers", str(e)) from e

        printer = match_printer(printers, command.serial, self._matchers)
        if printer is None:
            logger.warning("No printer found for serial: %s", command.serial)
            raise PrinterNotFoundError(command.serial)

        # Plain values only from here on: a rolled-back step expires ORM instances
        printer_id = printer.id
        printer_name = printer.name
        logger.info(
            "Matched printer %s (%s) for %s event reported at %s",
            printer_name,
            printer_id,
            command.event_type,
            command.timestamp or "unknown time",
        )

        async with self._lock_for(printer_id):
            now = now or _utcnow()
            if isinstance(command, StartedCommand):
                return await self._handle_started(db, printer_id, printer_name, command, now)
            return await self._handle_finished(db, printer_id, printer_name, command, now)

    # ------------------------------------------------------------------
    # started
    # ------------------------------------------------------------------

    async def _handle_started(
        self,
        db: AsyncSession,
        printer_id: int,
        printer_name: str,
        command: StartedCommand,
        now: datetime,
    ) -> StartedEventResponse:
        steps = StepRunner(db, printer_id)

        await steps.run(
            "set_printer_active",
            lambda: cycle_store.set_printer_status(db, printer_id, PRINTER_STATUS_ACTIVE),
        )

        sweep = await steps.run("sweep_stale_cycles", lambda: self._sweep_stale_cycles(db, printer_id, now))
        if sweep is None:
            sweep = SweepResult()

        activated_id = await steps.run(
            "activate_next_cycle",
            lambda: self._activate_next_cycle(db, printer_id, now, command.cycle_hint),
        )
        if activated_id is None and not sweep.current_ids:
            logger.info("Printer %s started without a planned cycle", printer_name)

        return StartedEventResponse(
            printer_id=printer_id,
            printer_name=printer_name,
            cycle_id=activated_id,
            completed_cycle_ids=sweep.completed_ids,
            duplicate=bool(sweep.current_ids),
            degraded_steps=steps.degraded,
        )

    async def _sweep_stale_cycles(self, db: AsyncSession, printer_id: int, now: datetime) -> SweepResult:
        """Complete in_progress cycles left over from a run whose finish was missed.

        A cycle that went in_progress within the duplicate window is the run this
        same start event already opened, and is left alone.
        """
        sweep = SweepResult()
        window = self.duplicate_start_window
        stale_ids = []
        for cycle in await cycle_store.get_printer_cycles(db, printer_id, (CYCLE_IN_PROGRESS,)):
            if cycle.start_time is not None and now - cycle.start_time <= window:
                sweep.current_ids.append(cycle.id)
            else:
                stale_ids.append(cycle.id)

        if stale_ids:
            logger.info("Found %d stale in_progress cycles for printer %s, completing them", len(stale_ids), printer_id)
            closed = await cycle_store.complete_cycles(db, stale_ids, now)
            if closed != len(stale_ids):
                logger.info("Only %d of %d stale cycles were still in_progress", closed, len(stale_ids))
            sweep.completed_ids = stale_ids
        if sweep.current_ids:
            logger.info("Duplicate start for printer %s, cycle %s already in progress", printer_id, sweep.current_ids[0])
        return sweep

    async def _activate_next_cycle(
        self, db: AsyncSession, printer_id: int, now: datetime, cycle_hint: str | None
    ) -> int | None:
        # Re-read under the lock: never open a second in_progress cycle
        running = await cycle_store.get_printer_cycles(db, printer_id, (CYCLE_IN_PROGRESS,), limit=1)
        if running:
            return None

        candidates = await cycle_store.get_printer_cycles(db, printer_id, ELIGIBLE_FOR_START, limit=1)
        if not candidates:
            return None

        cycle_id = candidates[0].id
        if cycle_hint is not None and cycle_hint != str(cycle_id):
            logger.info("Event named cycle %s, activating earliest planned cycle %s instead", cycle_hint, cycle_id)

        if not await cycle_store.activate_cycle(db, cycle_id, now):
            logger.info("Cycle %s was no longer planned, another event activated it", cycle_id)
            return None

        logger.info("Marked cycle %s as in_progress on printer %s", cycle_id, printer_id)
        return cycle_id

    # ------------------------------------------------------------------
    # finished
    # ------------------------------------------------------------------

    async def _handle_finished(
        self,
        db: AsyncSession,
        printer_id: int,
        printer_name: str,
        command: FinishedCommand,
        now: datetime,
    ) -> FinishedEventResponse:
        steps = StepRunner(db, printer_id)

        grams_consumed: float | None = None
        if isinstance(command.consumption, ExplicitGrams | FromUnits):
            grams_consumed = command.consumption.grams
            if isinstance(command.consumption, FromUnits):
                logger.info("Using planned consumption: %sg", grams_consumed)

        cycle_id = None
        needs_manual_reconcile = False

        found = await steps.run(
            "find_in_progress_cycle",
            lambda: self._find_in_progress(db, printer_id),
            default=_LOOKUP_FAILED,
        )
        if found is _LOOKUP_FAILED:
            needs_manual_reconcile = True
        elif found is None:
            logger.warning("No in_progress cycle found for printer %s", printer_name)
            needs_manual_reconcile = True
        else:
            cycle_id, grams_planned = found
            if grams_consumed is None and grams_planned:
                grams_consumed = grams_planned
                logger.info("Using cycle planned grams: %sg", grams_consumed)

            completed = await steps.run(
                "complete_cycle",
                lambda: cycle_store.complete_cycles(db, [cycle_id], now),
                default=0,
            )
            if completed:
                logger.info("Marked cycle %s as completed on printer %s", cycle_id, printer_id)
            else:
                logger.warning("Cycle %s could not be completed, flagging for manual reconcile", cycle_id)
                needs_manual_reconcile = True

        await steps.run(
            "set_printer_active",
            lambda: cycle_store.set_printer_status(db, printer_id, PRINTER_STATUS_ACTIVE),
        )

        return FinishedEventResponse(
            printer_id=printer_id,
            printer_name=printer_name,
            cycle_id=cycle_id,
            grams_consumed=grams_consumed or 0,
            needs_manual_reconcile=needs_manual_reconcile,
            degraded_steps=steps.degraded,
        )

    async def _find_in_progress(self, db: AsyncSession, printer_id: int) -> tuple[int, float] | None:
        cycles = await cycle_store.get_printer_cycles(db, printer_id, (CYCLE_IN_PROGRESS,), limit=1)
        if not cycles:
            return None
        return cycles[0].id, cycles[0].grams_planned


# Global reconciler instance
cycle_reconciler = CycleReconciler()
