# src/PACE/db/models/__init__.py
# Import every model so Base.metadata is complete for Alembic and create_all.
from .users import User
from .groups import Group
from .persons import Person
from .milestones import MilestoneDefinition
from .progress_records import ProgressRecord
from .attendance_records import AttendanceRecord
from .activity_logs import ActivityLog

__all__ = [
    "User",
    "Group",
    "Person",
    "MilestoneDefinition",
    "ProgressRecord",
    "AttendanceRecord",
    "ActivityLog",
]
