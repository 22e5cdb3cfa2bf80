from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from backend.app.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncSession:
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db():
    # Import models to register them with SQLAlchemy
    from backend.app.models import planned_cycle, printer, project  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

        # Run migrations for new columns (SQLite doesn't auto-add columns)
        await run_migrations(conn)


async def run_migrations(conn):
    """Add new columns to existing tables if they don't exist."""
    from sqlalchemy import text

    # Migration: Add dedicated bambu_serial column to printers
    # (older databases only carried the "bambu:<serial>" token in notes)
    try:
        await conn.execute(text("ALTER TABLE printers ADD COLUMN bambu_serial VARCHAR(50)"))
    except Exception:
        # Column already exists
        pass

    # Migration: Add notes column to printers
    try:
        await conn.execute(text("ALTER TABLE printers ADD COLUMN notes TEXT"))
    except Exception:
        # Column already exists
        pass

    # Migration: Add cycle_hours column to planned_cycles
    try:
        await conn.execute(text("ALTER TABLE planned_cycles ADD COLUMN cycle_hours REAL"))
    except Exception:
        # Column already exists
        pass

    # Migration: Add color column to projects
    try:
        await conn.execute(text("ALTER TABLE projects ADD COLUMN color VARCHAR(50)"))
    except Exception:
        # Column already exists
        pass
