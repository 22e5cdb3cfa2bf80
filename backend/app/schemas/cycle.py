from datetime import datetime, timezone
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, field_validator


# Custom serializer to ensure UTC datetimes have Z suffix
def serialize_utc_datetime(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    # Add Z suffix to indicate UTC
    return dt.isoformat() + "Z"


UTCDatetime = Annotated[datetime | None, PlainSerializer(serialize_utc_datetime)]


def to_naive_utc(dt: datetime | None) -> datetime | None:
    """Cycle times are stored as naive UTC."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class PlannedCycleCreate(BaseModel):
    printer_id: int
    project_id: int | None = None
    # New cycles enter the plan; only hardware events move them further
    status: Literal["planned", "scheduled"] = "planned"
    start_time: datetime | None = None
    end_time: datetime | None = None  # Planned end
    cycle_hours: float | None = Field(None, gt=0)
    grams_planned: float = Field(0.0, ge=0)
    units_planned: int = Field(0, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)


class PlannedCycleUpdate(BaseModel):
    """Planning fields only - status transitions are driven by printer events."""

    printer_id: int | None = None
    project_id: int | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    cycle_hours: float | None = Field(None, gt=0)
    grams_planned: float | None = Field(None, ge=0)
    units_planned: int | None = Field(None, ge=0)

    @field_validator("start_time", "end_time")
    @classmethod
    def normalize_times(cls, v: datetime | None) -> datetime | None:
        return to_naive_utc(v)

    @field_validator("printer_id", "grams_planned", "units_planned")
    @classmethod
    def reject_null(cls, v):
        # Omit the field to keep the current value; these columns are required
        if v is None:
            raise ValueError("may be omitted but not null")
        return v


class PlannedCycleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    printer_id: int
    project_id: int | None
    status: str
    start_time: UTCDatetime
    end_time: UTCDatetime
    cycle_hours: float | None
    grams_planned: float
    units_planned: int
    created_at: UTCDatetime
    updated_at: UTCDatetime
