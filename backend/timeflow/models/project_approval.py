"""
Per-project approval records and the approval audit trail.
"""

from sqlalchemy import (
    Column,
    String,
    ForeignKey,
    Numeric,
    Integer,
    DateTime,
    Uuid,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
import uuid
import enum

from timeflow.db.base import Base, utcnow
from timeflow.models.timesheet import TimesheetStatus


class ApprovalStatus(str, enum.Enum):
    """Status of a single review stage (lead or manager) for one project."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    NOT_REQUIRED = "not_required"


class ApprovalAction(str, enum.Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    VERIFIED = "verified"
    BILLED = "billed"


class ProjectApproval(Base):
    """Review state of one project inside one timesheet."""

    __tablename__ = "project_approvals"
    __table_args__ = (
        UniqueConstraint("timesheet_id", "project_id", name="uq_project_approval_timesheet_project"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    timesheet_id = Column(Uuid, ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=False, index=True)

    lead_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    lead_status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    lead_rejection_reason = Column(String(1000), nullable=True)
    lead_actioned_at = Column(DateTime, nullable=True)

    manager_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    manager_status = Column(SQLEnum(ApprovalStatus), nullable=False, default=ApprovalStatus.PENDING)
    manager_rejection_reason = Column(String(1000), nullable=True)
    manager_actioned_at = Column(DateTime, nullable=True)

    entries_count = Column(Integer, nullable=False, default=0)
    total_hours = Column(Numeric(6, 2), nullable=False, default=0)

    # Relationships
    timesheet = relationship("Timesheet", back_populates="project_approvals")
    project = relationship("Project")


class ApprovalHistory(Base):
    """Append-only audit record of a workflow action."""

    __tablename__ = "approval_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4, index=True)
    timesheet_id = Column(Uuid, ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    project_id = Column(Uuid, ForeignKey("projects.id"), nullable=True, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    approver_id = Column(Uuid, ForeignKey("users.id"), nullable=True, index=True)
    approver_role = Column(String(50), nullable=True)
    action = Column(SQLEnum(ApprovalAction), nullable=False)
    status_before = Column(SQLEnum(TimesheetStatus), nullable=True)
    status_after = Column(SQLEnum(TimesheetStatus), nullable=False)
    reason = Column(String(1000), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    approver = relationship("User", foreign_keys=[approver_id])
    project = relationship("Project")
