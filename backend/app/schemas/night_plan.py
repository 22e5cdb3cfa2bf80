from pydantic import BaseModel, ConfigDict

from backend.app.schemas.cycle import UTCDatetime


class NightWindowResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    start: UTCDatetime
    end: UTCDatetime
    total_hours: float
    mode: str


class NightCycleEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    cycle_id: int
    project_id: int | None
    project_name: str | None
    color: str | None
    start_time: UTCDatetime
    cycle_hours: float
    grams_needed: float | None
    starts_unattended: bool


class PrinterNightPlanResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    printer_id: int
    printer_name: str
    required_plates: int
    allocated_plates: int
    deferred_cycles: int
    night_cycle_count: int
    total_night_hours: float
    total_grams_needed: float | None
    night_window: NightWindowResponse
    cycles: list[NightCycleEntryResponse]


class NightPreloadSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reference_time: UTCDatetime
    night_window: NightWindowResponse
    printers: list[PrinterNightPlanResponse]
    total_plates_needed: int
    total_plates_allocated: int
    total_cycles_deferred: int
    global_plate_inventory: int
    is_globally_constrained: bool
    has_night_work: bool
