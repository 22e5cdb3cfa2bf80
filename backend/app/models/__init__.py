from backend.app.models.printer import Printer
from backend.app.models.project import Project
from backend.app.models.planned_cycle import PlannedCycle

__all__ = [
    "Printer",
    "Project",
    "PlannedCycle",
]
