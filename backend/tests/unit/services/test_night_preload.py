"""Unit tests for the night preload plan."""

from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from backend.app.services.night_preload import (
    NightWindow,
    allocate_plates_round_robin,
    compute_night_plan,
    enrich_plan,
    load_night_plan,
)

REFERENCE = datetime(2026, 1, 5, 12, 0)
WINDOW_START = datetime(2026, 1, 5, 17, 30)
WINDOW_END = datetime(2026, 1, 6, 8, 30)


def _window(mode="full_automation"):
    return NightWindow(start=WINDOW_START, end=WINDOW_END, total_hours=15, mode=mode)


def _printer(id, status="active"):
    return SimpleNamespace(id=id, name=f"Printer {id}", status=status)


_ids = iter(range(1, 10_000))


def _cycle(printer_id, start_time, **kwargs):
    defaults = {
        "id": next(_ids),
        "printer_id": printer_id,
        "project_id": None,
        "status": "planned",
        "start_time": start_time,
        "end_time": None,
        "cycle_hours": 3.0,
        "grams_planned": 0.0,
    }
    defaults.update(kwargs)
    return SimpleNamespace(**defaults)


def _plan(cycles, printers, mode="full_automation", capacity=8, inventory=50):
    return compute_night_plan(
        REFERENCE,
        cycles,
        printers,
        _window(mode),
        default_cycle_hours=3.0,
        plate_capacity_per_printer=capacity,
        global_plate_inventory=inventory,
    )


class TestNightCycles:
    """Which cycles belong to the night and how much of them."""

    def test_cycle_starting_in_window_needs_plate(self):
        cycle = _cycle(1, WINDOW_START + timedelta(minutes=30))

        summary = _plan([cycle], [_printer(1)])

        plan = summary.printers[0]
        assert plan.required_plates == 1
        assert plan.night_cycle_count == 1
        assert plan.total_night_hours == 3
        assert plan.cycles[0].starts_unattended is True

    def test_running_cycle_counts_hours_not_plates(self):
        """A cycle loaded before the window opens overlaps but takes no staged plate."""
        cycle = _cycle(1, WINDOW_START - timedelta(hours=1, minutes=30), status="in_progress")

        summary = _plan([cycle], [_printer(1)])

        plan = summary.printers[0]
        assert plan.required_plates == 0
        assert plan.night_cycle_count == 1
        assert plan.total_night_hours == 1.5
        assert plan.cycles[0].starts_unattended is False

    def test_start_at_window_open_is_unattended(self):
        summary = _plan([_cycle(1, WINDOW_START)], [_printer(1)])
        assert summary.printers[0].required_plates == 1

    def test_start_at_window_close_is_excluded(self):
        summary = _plan([_cycle(1, WINDOW_END)], [_printer(1)])
        assert summary.printers == []

    def test_cycle_ending_at_window_open_is_excluded(self):
        summary = _plan([_cycle(1, WINDOW_START - timedelta(hours=3))], [_printer(1)])
        assert summary.printers == []

    def test_hours_clipped_to_window_end(self):
        cycle = _cycle(1, WINDOW_END - timedelta(hours=1, minutes=30))

        summary = _plan([cycle], [_printer(1)])

        assert summary.printers[0].cycles[0].cycle_hours == 1.5

    def test_planned_end_time_wins_over_cycle_hours(self):
        start = WINDOW_START + timedelta(hours=1)
        cycle = _cycle(1, start, end_time=start + timedelta(hours=5), cycle_hours=2.0)

        summary = _plan([cycle], [_printer(1)])

        assert summary.printers[0].total_night_hours == 5

    def test_default_cycle_hours(self):
        cycle = _cycle(1, WINDOW_START + timedelta(hours=1), cycle_hours=None)

        summary = _plan([cycle], [_printer(1)])

        assert summary.printers[0].total_night_hours == 3

    def test_closed_and_unscheduled_cycles_ignored(self):
        cycles = [
            _cycle(1, WINDOW_START + timedelta(hours=1), status="completed"),
            _cycle(1, None),
        ]
        summary = _plan(cycles, [_printer(1)])
        assert summary.printers == []

    def test_inactive_printer_ignored(self):
        cycle = _cycle(1, WINDOW_START + timedelta(hours=1))
        summary = _plan([cycle], [_printer(1, status="maintenance")])
        assert summary.printers == []

    def test_grams_reported_only_when_all_known(self):
        known = [
            _cycle(1, WINDOW_START + timedelta(hours=1), grams_planned=100),
            _cycle(1, WINDOW_START + timedelta(hours=4), grams_planned=150),
        ]
        partly = [
            _cycle(2, WINDOW_START + timedelta(hours=1), grams_planned=100),
            _cycle(2, WINDOW_START + timedelta(hours=4), grams_planned=0),
        ]

        summary = _plan(known + partly, [_printer(1), _printer(2)])

        by_id = {p.printer_id: p for p in summary.printers}
        assert by_id[1].total_grams_needed == 250
        assert by_id[2].total_grams_needed is None


class TestAfterHoursModes:
    def test_one_cycle_mode_allows_single_unattended_start(self):
        running = _cycle(1, WINDOW_START - timedelta(hours=1), status="in_progress")
        first = _cycle(1, WINDOW_START + timedelta(minutes=30))
        second = _cycle(1, WINDOW_START + timedelta(hours=4))

        summary = _plan([running, first, second], [_printer(1)], mode="one_cycle_end_of_day")

        plan = summary.printers[0]
        assert [e.cycle_id for e in plan.cycles] == [running.id, first.id]
        assert plan.required_plates == 1

    def test_full_automation_counts_every_start(self):
        cycles = [_cycle(1, WINDOW_START + timedelta(hours=h)) for h in (0, 3, 6)]

        summary = _plan(cycles, [_printer(1)])

        assert summary.printers[0].required_plates == 3

    def test_mode_none_has_no_night_work(self):
        disabled = NightWindow(start=None, end=None, total_hours=0, mode="none")

        summary = compute_night_plan(
            REFERENCE, [_cycle(1, WINDOW_START)], [_printer(1)], disabled, default_cycle_hours=3.0
        )

        assert summary.printers == []
        assert summary.total_plates_needed == 0
        assert summary.has_night_work is False


class TestPlateAllocation:
    def test_totals_aggregate_across_printers(self):
        cycles = [_cycle(1, WINDOW_START + timedelta(hours=h)) for h in (0, 3)]
        cycles += [_cycle(2, WINDOW_START + timedelta(hours=h)) for h in (0, 3, 6)]

        summary = _plan(cycles, [_printer(1), _printer(2)])

        assert summary.total_plates_needed == 5
        assert summary.total_plates_allocated == 5
        assert summary.total_cycles_deferred == 0
        assert summary.is_globally_constrained is False
        assert summary.has_night_work is True

    def test_printer_capacity_defers_extra_cycles(self):
        cycles = [_cycle(1, WINDOW_START + timedelta(hours=h)) for h in range(10)]

        summary = _plan(cycles, [_printer(1)], capacity=8)

        plan = summary.printers[0]
        assert plan.required_plates == 10
        assert plan.allocated_plates == 8
        assert plan.deferred_cycles == 2

    def test_global_inventory_shared_round_robin(self):
        cycles = [_cycle(1, WINDOW_START + timedelta(hours=h)) for h in (0, 3)]
        cycles += [_cycle(2, WINDOW_START + timedelta(hours=h)) for h in (0, 3, 6)]

        summary = _plan(cycles, [_printer(1), _printer(2)], inventory=3)

        by_id = {p.printer_id: p for p in summary.printers}
        assert by_id[1].allocated_plates == 2
        assert by_id[2].allocated_plates == 1
        assert summary.total_plates_allocated == 3
        assert summary.total_cycles_deferred == 2
        assert summary.is_globally_constrained is True


class TestAllocatePlatesRoundRobin:
    def test_demand_below_limits(self):
        assert allocate_plates_round_robin({1: 2, 2: 3}, 8, 50) == {1: 2, 2: 3}

    def test_one_plate_per_printer_per_round(self):
        assert allocate_plates_round_robin({1: 5, 2: 5, 3: 5}, 8, 7) == {1: 3, 2: 2, 3: 2}

    def test_capacity_caps_each_printer(self):
        assert allocate_plates_round_robin({1: 12, 2: 1}, 8, 50) == {1: 8, 2: 1}

    def test_empty(self):
        assert allocate_plates_round_robin({}, 8, 50) == {}


class TestEnrichPlan:
    def test_project_name_and_color(self):
        cycle = _cycle(1, WINDOW_START, project_id=7)
        summary = _plan([cycle], [_printer(1)])

        enrich_plan(summary, {7: SimpleNamespace(id=7, name="Phone stands", color="Orange")})

        entry = summary.printers[0].cycles[0]
        assert entry.project_name == "Phone stands"
        assert entry.color == "Orange"

    def test_unknown_project_keeps_raw_id(self):
        cycle = _cycle(1, WINDOW_START, project_id=99)
        summary = _plan([cycle], [_printer(1)])

        enrich_plan(summary, {})

        entry = summary.printers[0].cycles[0]
        assert entry.project_name == "99"
        assert entry.color is None


class TestLoadNightPlan:
    @pytest.mark.asyncio
    async def test_reads_store_and_enriches(self, db_session, printer_factory, project_factory, cycle_factory):
        printer = await printer_factory()
        project = await project_factory(name="Cable clips", color="White")
        await cycle_factory(
            printer.id, project_id=project.id, start_time=WINDOW_START + timedelta(hours=1), cycle_hours=4.0
        )
        await cycle_factory(printer.id, status="completed", start_time=WINDOW_START + timedelta(hours=2))

        summary = await load_night_plan(db_session, REFERENCE)

        assert summary.night_window.start == WINDOW_START
        assert summary.night_window.end == WINDOW_END
        assert summary.total_plates_needed == 1
        entry = summary.printers[0].cycles[0]
        assert entry.project_name == "Cable clips"
        assert entry.color == "White"
        assert entry.cycle_hours == 4
