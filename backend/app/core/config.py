import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

# Application version - single source of truth
APP_VERSION = "0.3.0"

# Base directory for path calculations
_base_dir = Path(__file__).resolve().parent.parent.parent.parent


def _resolve_database_path() -> Path:
    """Use the legacy database file name if it is the only one present."""
    old_db = _base_dir / "printfarm.db"
    new_db = _base_dir / "cyclekeeper.db"

    if old_db.exists() and not new_db.exists():
        logging.info(f"Using legacy database file: {old_db}")
        return old_db
    return new_db


class DaySchedule(BaseModel):
    """Work hours for one weekday, as "HH:MM" strings in the factory time zone."""

    enabled: bool = True
    start: str = "08:30"
    end: str = "17:30"


def default_weekly_schedule() -> dict[str, DaySchedule]:
    return {
        "sunday": DaySchedule(enabled=True, start="08:30", end="17:30"),
        "monday": DaySchedule(enabled=True, start="08:30", end="17:30"),
        "tuesday": DaySchedule(enabled=True, start="08:30", end="17:30"),
        "wednesday": DaySchedule(enabled=True, start="08:30", end="17:30"),
        "thursday": DaySchedule(enabled=True, start="08:30", end="17:30"),
        "friday": DaySchedule(enabled=True, start="09:00", end="14:00"),
        "saturday": DaySchedule(enabled=False, start="09:00", end="14:00"),
    }


AfterHoursBehavior = Literal["none", "one_cycle_end_of_day", "full_automation"]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "CycleKeeper"
    debug: bool = False  # Default to production mode

    # Paths
    base_dir: Path = _base_dir
    log_dir: Path = base_dir / "logs"
    database_url: str = f"sqlite+aiosqlite:///{_resolve_database_path()}"

    # Logging
    log_level: str = "INFO"  # Override with LOG_LEVEL env var or DEBUG=true
    log_to_file: bool = True  # Set to false to disable file logging

    # API
    api_prefix: str = "/api/v1"
    cors_allow_headers: list[str] = ["authorization", "x-client-info", "apikey", "content-type"]

    # Factory work schedule (night window is derived from it)
    factory_timezone: str = "UTC"
    weekly_schedule: dict[str, DaySchedule] = default_weekly_schedule()
    after_hours_behavior: AfterHoursBehavior = "full_automation"

    # Night preload planning
    default_cycle_hours: float = 3.0  # Used when a cycle has neither end_time nor cycle_hours
    plate_capacity_per_printer: int = 8  # Physical plate slots per printer
    global_plate_inventory: int = 50  # Plates available across the whole farm

    # Event reconciliation
    duplicate_start_window_seconds: int = 120


settings = Settings()

# Ensure directories exist
if settings.log_to_file:
    settings.log_dir.mkdir(exist_ok=True)
