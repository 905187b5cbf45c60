"""
Timesheet models for weekly time entry.
"""

from sqlalchemy import (
    Column,
    String,
    Date,
    ForeignKey,
    Numeric,
    Integer,
    Boolean,
    DateTime,
    Uuid,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
import enum

from timeflow.db.base import Base, utcnow


class TimesheetStatus(str, enum.Enum):
    """Timesheet status enumeration."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    LEAD_APPROVED = "lead_approved"
    LEAD_REJECTED = "lead_rejected"
    MANAGER_APPROVED = "manager_approved"
    MANAGER_REJECTED = "manager_rejected"
    FROZEN = "frozen"
    BILLED = "billed"


class EntryCategory(str, enum.Enum):
    """What kind of time an entry records."""
    PROJECT = "project"
    LEAVE = "leave"
    TRAINING = "training"
    MISCELLANEOUS = "miscellaneous"


class EntryType(str, enum.Enum):
    """How a project entry names its work."""
    PROJECT_TASK = "project_task"
    CUSTOM_TASK = "custom_task"


class LeaveSession(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    FULL_DAY = "full_day"


class Timesheet(Base):
    """Timesheet model - one per user per week."""

    __tablename__ = "timesheets"
    __table_args__ = (
        UniqueConstraint("user_id", "week_start_date", name="uq_timesheet_user_week"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    week_start_date = Column(Date, nullable=False, index=True)  # Monday of the week
    status = Column(SQLEnum(TimesheetStatus), nullable=False, default=TimesheetStatus.DRAFT, index=True)
    version = Column(Integer, nullable=False)
    submitted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User")
    entries = relationship(
        "TimeEntry",
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimeEntry.row_order",
    )
    project_approvals = relationship(
        "ProjectApproval",
        back_populates="timesheet",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}


class TimeEntry(Base):
    """Single time entry - one day, one unit of work."""

    __tablename__ = "time_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    timesheet_id = Column(Uuid, ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    row_order = Column(Integer, nullable=False, default=0)

    entry_category = Column(SQLEnum(EntryCategory), nullable=False, default=EntryCategory.PROJECT)
    entry_type = Column(SQLEnum(EntryType), nullable=True, default=EntryType.PROJECT_TASK)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=True, index=True)
    task_id = Column(Uuid, nullable=True)
    custom_task_description = Column(String(500), nullable=True)
    description = Column(String(500), nullable=True)
    date = Column(Date, nullable=False)
    hours = Column(Numeric(5, 2), nullable=False)
    is_billable = Column(Boolean, nullable=False, default=False)
    leave_session = Column(SQLEnum(LeaveSession), nullable=True)
    rejection_reason = Column(String(1000), nullable=True)

    # Relationships
    timesheet = relationship("Timesheet", back_populates="entries")
    project = relationship("Project")
