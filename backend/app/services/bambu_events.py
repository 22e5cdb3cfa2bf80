"""Bambu bridge events: validation, typed commands and domain errors.

The bridge posts a loosely-typed JSON body. It is resolved exactly once into a
``StartedCommand`` or ``FinishedCommand`` so the reconciler never has to look at
optional payload fields again.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from backend.app.schemas.bambu_event import BambuEventPayload

VALID_EVENT_TYPES = ("started", "finished")

PRINTER_NOT_FOUND_HINT = 'Add bambu_serial to printer or add "bambu:SERIAL" to notes'


class BambuEventError(Exception):
    """Base class for errors that end event handling with a non-200 response."""

    status_code = 500

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self)}


class InvalidEventError(BambuEventError):
    """Malformed event - rejected before any store access."""

    status_code = 400


class PrinterNotFoundError(BambuEventError):
    """No printer is registered for the reported serial."""

    status_code = 404

    def __init__(self, serial: str):
        super().__init__("Printer not found")
        self.serial = serial

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "bambu_serial": self.serial, "hint": PRINTER_NOT_FOUND_HINT}


class StoreUnavailableError(BambuEventError):
    """The store could not be read at the printer lookup stage."""

    status_code = 500

    def __init__(self, message: str, details: str):
        super().__init__(message)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "details": self.details}


# ============================================================================
# Consumption variants for finished events
# ============================================================================


@dataclass(frozen=True)
class ExplicitGrams:
    grams: float


@dataclass(frozen=True)
class FromUnits:
    units: float
    grams_per_unit: float

    @property
    def grams(self) -> float:
        return self.units * self.grams_per_unit


@dataclass(frozen=True)
class UnknownConsumption:
    pass


Consumption = ExplicitGrams | FromUnits | UnknownConsumption


# ============================================================================
# Commands
# ============================================================================


@dataclass(frozen=True)
class StartedCommand:
    serial: str
    timestamp: str | None = None
    cycle_hint: str | None = None

    event_type = "started"


@dataclass(frozen=True)
class FinishedCommand:
    serial: str
    timestamp: str | None = None
    cycle_hint: str | None = None
    consumption: Consumption = field(default_factory=UnknownConsumption)

    event_type = "finished"


EventCommand = StartedCommand | FinishedCommand


def _resolve_consumption(payload: BambuEventPayload) -> Consumption:
    # Zero or missing values count as "not reported", same as the bridge sends them
    if payload.grams_consumed:
        return ExplicitGrams(payload.grams_consumed)
    if payload.planned_units and payload.grams_per_unit:
        return FromUnits(payload.planned_units, payload.grams_per_unit)
    return UnknownConsumption()


def parse_event(body: Any) -> EventCommand:
    """Validate a decoded JSON body and turn it into a typed command.

    Raises:
        InvalidEventError: if the body is not an object, a field has the wrong
            type, a required field is missing or the event type is unknown.
    """
    if not isinstance(body, dict):
        raise InvalidEventError("Event body must be a JSON object")

    try:
        payload = BambuEventPayload.model_validate(body)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise InvalidEventError(f"Invalid field {location}: {first.get('msg')}") from e

    serial = (payload.bambu_serial or "").strip()
    if not payload.event_type or not serial:
        raise InvalidEventError("Missing event_type or bambu_serial")

    if payload.event_type not in VALID_EVENT_TYPES:
        raise InvalidEventError('event_type must be "started" or "finished"')

    cycle_hint = str(payload.cycle_id) if payload.cycle_id is not None else None

    if payload.event_type == "started":
        return StartedCommand(serial=serial, timestamp=payload.timestamp, cycle_hint=cycle_hint)

    return FinishedCommand(
        serial=serial,
        timestamp=payload.timestamp,
        cycle_hint=cycle_hint,
        consumption=_resolve_consumption(payload),
    )
