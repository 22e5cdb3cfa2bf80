"""Night preload planning.

Works out, for the coming night, which planned cycles will run unattended on
each printer and how many plates the operator has to stage before leaving.

The night window runs from the end of the work shift to the start of the next
workday (see ``get_night_window``). A cycle takes a pre-staged plate when it
*starts* inside the window; a cycle already running when the window opens was
loaded by hand. Plates are then shared out round-robin under a per-printer
capacity and a farm-wide inventory.

``compute_night_plan`` is pure: it only looks at the snapshots it is given.
``load_night_plan`` reads the snapshot from the database and enriches the
result for display.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import DaySchedule, settings
from backend.app.models.planned_cycle import OPEN_CYCLE_STATUSES, PlannedCycle
from backend.app.models.printer import Printer
from backend.app.models.project import Project
from backend.app.services import cycle_store

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# How far to look for the previous/next workday
MAX_DAYS_SEARCH = 14

MODE_NONE = "none"
MODE_ONE_CYCLE = "one_cycle_end_of_day"
MODE_FULL = "full_automation"


@dataclass
class NightWindow:
    start: datetime | None  # naive UTC
    end: datetime | None  # naive UTC
    total_hours: float
    mode: str

    def contains(self, moment: datetime) -> bool:
        if self.start is None or self.end is None:
            return False
        return self.start <= moment < self.end


@dataclass
class NightCycleEntry:
    cycle_id: int
    project_id: int | None
    project_name: str | None
    color: str | None
    start_time: datetime
    cycle_hours: float  # Hours of this cycle inside the night window
    grams_needed: float | None
    starts_unattended: bool


@dataclass
class PrinterNightPlan:
    printer_id: int
    printer_name: str
    required_plates: int
    allocated_plates: int
    deferred_cycles: int
    night_cycle_count: int
    total_night_hours: float
    total_grams_needed: float | None
    night_window: NightWindow
    cycles: list[NightCycleEntry] = field(default_factory=list)


@dataclass
class NightPreloadSummary:
    reference_time: datetime
    night_window: NightWindow
    printers: list[PrinterNightPlan] = field(default_factory=list)
    total_plates_needed: int = 0
    total_plates_allocated: int = 0
    total_cycles_deferred: int = 0
    global_plate_inventory: int = 0
    is_globally_constrained: bool = False

    @property
    def has_night_work(self) -> bool:
        return any(p.night_cycle_count > 0 for p in self.printers)


# ============================================================================
# Night window
# ============================================================================


def _factory_tz(name: str) -> tzinfo:
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def _to_naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def _day_schedule(schedule: Mapping[str, DaySchedule], day: date) -> DaySchedule | None:
    entry = schedule.get(WEEKDAYS[day.weekday()])
    if entry is None or not entry.enabled:
        return None
    return entry


def _at(day: date, hhmm: str, tz: tzinfo) -> datetime:
    local = datetime.combine(day, _parse_hhmm(hhmm), tzinfo=tz)
    return _to_naive_utc(local)


def _shift_end_on_or_before(schedule: Mapping[str, DaySchedule], day: date, tz: tzinfo) -> datetime | None:
    for offset in range(MAX_DAYS_SEARCH):
        check = day - timedelta(days=offset)
        entry = _day_schedule(schedule, check)
        if entry:
            return _at(check, entry.end, tz)
    return None


def _shift_start_after(schedule: Mapping[str, DaySchedule], day: date, tz: tzinfo) -> datetime | None:
    for offset in range(1, MAX_DAYS_SEARCH + 1):
        check = day + timedelta(days=offset)
        entry = _day_schedule(schedule, check)
        if entry:
            return _at(check, entry.start, tz)
    return None


def get_night_window(
    reference: datetime,
    schedule: Mapping[str, DaySchedule] | None = None,
    behavior: str | None = None,
    tz_name: str | None = None,
) -> NightWindow:
    """Night window for the night following ``reference``.

    The window opens when the work shift of the reference day ends (or the last
    shift before it, on a day off) and closes when the next workday starts. A
    reference before today's shift has started still belongs to last night.

    Args:
        reference: Naive UTC or timezone-aware instant.
        schedule: Work hours per weekday name; defaults to settings.
        behavior: After-hours behaviour; ``none`` disables night work.
        tz_name: Factory time zone the schedule is written in.
    """
    schedule = settings.weekly_schedule if schedule is None else schedule
    behavior = behavior or settings.after_hours_behavior
    tz = _factory_tz(tz_name or settings.factory_timezone)

    if behavior == MODE_NONE:
        return NightWindow(start=None, end=None, total_hours=0.0, mode=MODE_NONE)

    ref_utc = _to_naive_utc(reference)
    ref_local = ref_utc.replace(tzinfo=timezone.utc).astimezone(tz)
    day = ref_local.date()

    today = _day_schedule(schedule, day)
    if today and ref_utc < _at(day, today.start, tz):
        day = day - timedelta(days=1)

    start = _shift_end_on_or_before(schedule, day, tz)
    end = _shift_start_after(schedule, day, tz)
    if start is None or end is None or end <= start:
        logger.warning("No work schedule around %s, night window disabled", ref_local.date())
        return NightWindow(start=None, end=None, total_hours=0.0, mode=MODE_NONE)

    return NightWindow(start=start, end=end, total_hours=(end - start).total_seconds() / 3600, mode=behavior)


# ============================================================================
# Plate allocation
# ============================================================================


def allocate_plates_round_robin(
    demands: Mapping[int, int],
    capacity_per_printer: int,
    global_limit: int,
) -> dict[int, int]:
    """Give each printer one plate per round until demand, capacity or stock runs out."""
    allocations = {printer_id: 0 for printer_id in demands}
    total = 0
    changed = True

    while changed and total < global_limit:
        changed = False
        for printer_id, demand in demands.items():
            if total >= global_limit:
                break
            current = allocations[printer_id]
            if current < demand and current < capacity_per_printer:
                allocations[printer_id] = current + 1
                total += 1
                changed = True

    return allocations


# ============================================================================
# Plan computation
# ============================================================================


def _planned_end(cycle: PlannedCycle, default_cycle_hours: float) -> datetime:
    if cycle.end_time is not None and cycle.end_time > cycle.start_time:
        return cycle.end_time
    hours = cycle.cycle_hours if cycle.cycle_hours else default_cycle_hours
    return cycle.start_time + timedelta(hours=hours)


def _hours_inside(start: datetime, end: datetime, window: NightWindow) -> float:
    clipped_start = max(start, window.start)
    clipped_end = min(end, window.end)
    return max(0.0, (clipped_end - clipped_start).total_seconds() / 3600)


def _night_entries(
    cycles: list[PlannedCycle], window: NightWindow, default_cycle_hours: float
) -> list[NightCycleEntry]:
    entries = []
    unattended_starts = 0
    for cycle in sorted(cycles, key=lambda c: (c.start_time, c.id)):
        end = _planned_end(cycle, default_cycle_hours)
        if cycle.start_time >= window.end or end <= window.start:
            continue

        starts_unattended = window.contains(cycle.start_time)
        if starts_unattended:
            # Only the end-of-day cycle may start on its own in one-cycle mode
            if window.mode == MODE_ONE_CYCLE and unattended_starts >= 1:
                continue
            unattended_starts += 1

        entries.append(
            NightCycleEntry(
                cycle_id=cycle.id,
                project_id=cycle.project_id,
                project_name=str(cycle.project_id) if cycle.project_id is not None else None,
                color=None,
                start_time=cycle.start_time,
                cycle_hours=_hours_inside(cycle.start_time, end, window),
                grams_needed=cycle.grams_planned if cycle.grams_planned else None,
                starts_unattended=starts_unattended,
            )
        )
    return entries


def compute_night_plan(
    reference: datetime,
    cycles: Iterable[PlannedCycle],
    printers: Iterable[Printer],
    window: NightWindow | None = None,
    *,
    default_cycle_hours: float | None = None,
    plate_capacity_per_printer: int | None = None,
    global_plate_inventory: int | None = None,
) -> NightPreloadSummary:
    """Compute the night preload plan from a snapshot of printers and cycles.

    Only active printers and open cycles with a start time are considered.
    With no night work the summary has an empty printer list.
    """
    window = window or get_night_window(reference)
    default_cycle_hours = default_cycle_hours or settings.default_cycle_hours
    capacity = plate_capacity_per_printer if plate_capacity_per_printer is not None else settings.plate_capacity_per_printer
    inventory = global_plate_inventory if global_plate_inventory is not None else settings.global_plate_inventory

    summary = NightPreloadSummary(
        reference_time=_to_naive_utc(reference),
        night_window=window,
        global_plate_inventory=inventory,
    )
    if window.mode == MODE_NONE:
        return summary

    by_printer: dict[int, list[PlannedCycle]] = {}
    for cycle in cycles:
        if cycle.start_time is None or cycle.status not in OPEN_CYCLE_STATUSES:
            continue
        by_printer.setdefault(cycle.printer_id, []).append(cycle)

    plans: list[PrinterNightPlan] = []
    for printer in printers:
        if printer.status != "active":
            continue
        entries = _night_entries(by_printer.get(printer.id, []), window, default_cycle_hours)
        if not entries:
            continue

        grams = [e.grams_needed for e in entries]
        plans.append(
            PrinterNightPlan(
                printer_id=printer.id,
                printer_name=printer.name,
                required_plates=sum(1 for e in entries if e.starts_unattended),
                allocated_plates=0,
                deferred_cycles=0,
                night_cycle_count=len(entries),
                total_night_hours=sum(e.cycle_hours for e in entries),
                # Only report grams when every cycle has a planned weight
                total_grams_needed=sum(grams) if all(g is not None for g in grams) else None,
                night_window=window,
                cycles=entries,
            )
        )

    demands = {p.printer_id: p.required_plates for p in plans if p.required_plates > 0}
    allocations = allocate_plates_round_robin(demands, capacity, inventory)
    for plan in plans:
        plan.allocated_plates = allocations.get(plan.printer_id, 0)
        plan.deferred_cycles = plan.required_plates - plan.allocated_plates

    summary.printers = plans
    summary.total_plates_needed = sum(p.required_plates for p in plans)
    summary.total_plates_allocated = sum(p.allocated_plates for p in plans)
    summary.total_cycles_deferred = sum(p.deferred_cycles for p in plans)
    summary.is_globally_constrained = summary.total_plates_needed > inventory

    logger.info(
        "Night plan %s - %s: %d printers, %d plates needed, %d allocated, %d deferred",
        window.start,
        window.end,
        len(plans),
        summary.total_plates_needed,
        summary.total_plates_allocated,
        summary.total_cycles_deferred,
    )
    return summary


def enrich_plan(summary: NightPreloadSummary, projects: Mapping[int, Project]) -> NightPreloadSummary:
    """Fill project names and colors; unknown projects keep their raw id and no color."""
    for plan in summary.printers:
        for entry in plan.cycles:
            project = projects.get(entry.project_id) if entry.project_id is not None else None
            if project is None:
                continue
            entry.project_name = project.name
            entry.color = project.color
    return summary


async def load_night_plan(db: AsyncSession, reference: datetime) -> NightPreloadSummary:
    """Read printers, open cycles and projects, then compute and enrich the plan."""
    printers = await cycle_store.list_printers(db)
    cycles = await cycle_store.list_open_cycles(db)
    result = await db.execute(select(Project))
    projects = {p.id: p for p in result.scalars().all()}

    summary = compute_night_plan(reference, cycles, printers)
    return enrich_plan(summary, projects)
