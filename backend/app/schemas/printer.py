from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PrinterBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    bambu_serial: str | None = Field(None, min_length=1, max_length=50)
    notes: str | None = None  # May carry a legacy "bambu:<serial>" token
    model: str | None = None


class PrinterCreate(PrinterBase):
    pass


class PrinterUpdate(BaseModel):
    name: str | None = None
    bambu_serial: str | None = None
    notes: str | None = None
    model: str | None = None

    @field_validator("name")
    @classmethod
    def name_not_null(cls, v: str | None) -> str:
        if v is None or not v.strip():
            raise ValueError("name cannot be empty")
        return v


class PrinterResponse(PrinterBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    created_at: datetime
    updated_at: datetime
