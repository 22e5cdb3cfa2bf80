from datetime import datetime

from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


class Project(Base):
    """A production order; planned cycles print plates for it."""

    __tablename__ = "projects"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    color: Mapped[str | None] = mapped_column(String(50))  # Filament color shown next to the project
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    cycles: Mapped[list["PlannedCycle"]] = relationship(back_populates="project")


from backend.app.models.planned_cycle import PlannedCycle  # noqa: E402
