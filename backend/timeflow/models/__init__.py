"""
Database models.
Import all models here to ensure they're registered with Base.
"""

from timeflow.models.user import User, UserRole
from timeflow.models.project import Project
from timeflow.models.timesheet import (
    Timesheet,
    TimeEntry,
    TimesheetStatus,
    EntryCategory,
    EntryType,
    LeaveSession,
)
from timeflow.models.project_approval import (
    ProjectApproval,
    ApprovalHistory,
    ApprovalStatus,
    ApprovalAction,
)

__all__ = [
    "User",
    "UserRole",
    "Project",
    "Timesheet",
    "TimeEntry",
    "TimesheetStatus",
    "EntryCategory",
    "EntryType",
    "LeaveSession",
    "ProjectApproval",
    "ApprovalHistory",
    "ApprovalStatus",
    "ApprovalAction",
]
