from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base

# Cycle statuses. Only the cycle reconciler moves a cycle between them.
CYCLE_PLANNED = "planned"
CYCLE_SCHEDULED = "scheduled"
CYCLE_IN_PROGRESS = "in_progress"
CYCLE_COMPLETED = "completed"

ELIGIBLE_FOR_START = (CYCLE_PLANNED, CYCLE_SCHEDULED)
OPEN_CYCLE_STATUSES = (CYCLE_PLANNED, CYCLE_SCHEDULED, CYCLE_IN_PROGRESS)


class PlannedCycle(Base):
    """One plate-load production run planned for a printer."""

    __tablename__ = "planned_cycles"

    id: Mapped[int] = mapped_column(primary_key=True)

    # Links
    printer_id: Mapped[int] = mapped_column(ForeignKey("printers.id", ondelete="CASCADE"))
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)

    # Status: planned, scheduled, in_progress, completed
    status: Mapped[str] = mapped_column(String(20), default=CYCLE_PLANNED)

    # Timing (naive UTC). end_time is the planned end until the cycle completes,
    # then the actual end.
    start_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cycle_hours: Mapped[float | None] = mapped_column(Float, nullable=True)  # Planned runtime

    # Planned output, used as fallback consumption figures
    grams_planned: Mapped[float] = mapped_column(Float, default=0.0)
    units_planned: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    printer: Mapped["Printer"] = relationship(back_populates="cycles")
    project: Mapped["Project | None"] = relationship(back_populates="cycles")


Index("ix_planned_cycles_printer_status", PlannedCycle.printer_id, PlannedCycle.status)


from backend.app.models.printer import Printer  # noqa: E402
from backend.app.models.project import Project  # noqa: E402
