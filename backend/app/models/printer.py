from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.core.database import Base


class Printer(Base):
    __tablename__ = "printers"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))
    # Serial reported by the Bambu bridge; older rows keep it as "bambu:<serial>" in notes
    bambu_serial: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    model: Mapped[str | None] = mapped_column(String(50))
    status: Mapped[str] = mapped_column(String(20), default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    # Relationships
    cycles: Mapped[list["PlannedCycle"]] = relationship(
        back_populates="printer", cascade="all, delete-orphan"
    )


from backend.app.models.planned_cycle import PlannedCycle  # noqa: E402
