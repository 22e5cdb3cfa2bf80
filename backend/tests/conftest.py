"""Shared test fixtures for CycleKeeper backend tests."""

import logging
import os
from collections.abc import AsyncGenerator
from datetime import datetime
from unittest.mock import patch

import pytest

# IMPORTANT: Set environment variables BEFORE any app imports
# This must happen before settings/config are loaded
os.environ["LOG_TO_FILE"] = "false"
os.environ["DEBUG"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

# Ensure settings use our env vars - import and override before database import
from backend.app.core.config import settings  # noqa: E402

settings.log_to_file = False
# Tests pin the schedule they rely on instead of picking up a local .env
settings.factory_timezone = "UTC"
settings.after_hours_behavior = "full_automation"

from backend.app.core.database import Base  # noqa: E402

# Use in-memory SQLite for tests, one connection shared by every session
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # Import all models to register them
    from backend.app.models import planned_cycle, printer, project  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async_session_maker = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with async_session_maker() as session:
        yield session


@pytest.fixture
def session_maker(test_engine):
    """Session factory bound to the test engine, for tests that need several sessions."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def async_client(test_engine, db_session) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client."""
    from backend.app.core.database import get_db
    from backend.app.main import app

    # Create a new session maker for the test engine
    test_async_session = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)

    async def override_get_db():
        async with test_async_session() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db

    with patch("backend.app.core.database.async_session", test_async_session):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client

    app.dependency_overrides.clear()


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def printer_factory(db_session):
    """Factory to create test printers."""
    _counter = [0]  # Use list to allow mutation in nested function

    async def _create_printer(**kwargs):
        from backend.app.models.printer import Printer

        _counter[0] += 1
        counter = _counter[0]

        defaults = {
            "name": f"Printer {counter}",
            "bambu_serial": f"01P00A{counter:09d}",  # Unique serial per printer
            "model": "P1S",
            "status": "active",
        }
        defaults.update(kwargs)

        printer = Printer(**defaults)
        db_session.add(printer)
        await db_session.commit()
        await db_session.refresh(printer)
        return printer

    return _create_printer


@pytest.fixture
def project_factory(db_session):
    """Factory to create test projects."""

    async def _create_project(**kwargs):
        from backend.app.models.project import Project

        defaults = {
            "name": "Test Project",
            "color": "Black",
        }
        defaults.update(kwargs)

        project = Project(**defaults)
        db_session.add(project)
        await db_session.commit()
        await db_session.refresh(project)
        return project

    return _create_project


@pytest.fixture
def cycle_factory(db_session):
    """Factory to create planned cycles."""

    async def _create_cycle(printer_id: int, **kwargs):
        from backend.app.models.planned_cycle import PlannedCycle

        defaults = {
            "printer_id": printer_id,
            "status": "planned",
            "start_time": datetime(2026, 1, 5, 8, 0),
            "grams_planned": 0.0,
            "units_planned": 0,
        }
        defaults.update(kwargs)

        cycle = PlannedCycle(**defaults)
        db_session.add(cycle)
        await db_session.commit()
        await db_session.refresh(cycle)
        return cycle

    return _create_cycle


@pytest.fixture
def reconciler():
    """A fresh reconciler, so per-printer locks never outlive a test's event loop."""
    from backend.app.services.cycle_reconciler import CycleReconciler

    return CycleReconciler()


# ============================================================================
# Log capture
# ============================================================================


class LogCapture(logging.Handler):
    """Handler that captures log records for testing."""

    def __init__(self):
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord):
        self.records.append(record)

    def clear(self):
        self.records.clear()

    def get_errors(self) -> list[logging.LogRecord]:
        """Get all ERROR and CRITICAL level records."""
        return [r for r in self.records if r.levelno >= logging.ERROR]

    def get_warnings(self) -> list[logging.LogRecord]:
        """Get all WARNING level records."""
        return [r for r in self.records if r.levelno == logging.WARNING]

    def has_errors(self) -> bool:
        """Check if any errors were logged."""
        return len(self.get_errors()) > 0

    def format_errors(self) -> str:
        """Format all errors as a string for assertion messages."""
        errors = self.get_errors()
        if not errors:
            return "No errors"
        formatter = logging.Formatter("%(name)s - %(levelname)s - %(message)s")
        return "\n".join(formatter.format(r) for r in errors)


@pytest.fixture
def capture_logs():
    """Fixture that captures log output during a test.

    Usage:
        def test_something(capture_logs):
            some_function()
            assert not capture_logs.has_errors(), capture_logs.format_errors()
    """
    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    # Attach to root logger to capture all logs
    root_logger = logging.getLogger()
    previous_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler

    root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)
