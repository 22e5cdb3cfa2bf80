from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class BambuEventPayload(BaseModel):
    """Raw body posted by the local Bambu bridge.

    Every field is optional here; required-field and event-type checks are done
    when the payload is resolved into a command so the error messages match the
    bridge contract.
    """

    model_config = ConfigDict(extra="ignore")

    # Checked against the known event types when the command is resolved
    event_type: Any = None
    bambu_serial: str | None = None
    timestamp: str | None = None
    # For finished events
    grams_consumed: float | None = Field(None, ge=0, allow_inf_nan=False)
    # Optional hint for matching a specific cycle
    cycle_id: str | int | None = None
    # Planned consumption if actual grams are not available
    planned_units: float | None = Field(None, ge=0, allow_inf_nan=False)
    grams_per_unit: float | None = Field(None, ge=0, allow_inf_nan=False)


class StartedEventResponse(BaseModel):
    success: bool = True
    event: str = "started"
    printer_id: int
    printer_name: str
    cycle_id: int | None = None  # Cycle activated by this event
    completed_cycle_ids: list[int] = []  # Stale in_progress cycles closed by this event
    duplicate: bool = False
    degraded_steps: list[str] = []


class FinishedEventResponse(BaseModel):
    success: bool = True
    event: str = "finished"
    printer_id: int
    printer_name: str
    cycle_id: int | None = None
    grams_consumed: float = 0
    needs_manual_reconcile: bool = False
    degraded_steps: list[str] = []
