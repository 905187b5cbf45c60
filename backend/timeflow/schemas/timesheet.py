"""
Timesheet Pydantic schemas for request/response validation.
"""

import datetime
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from uuid import UUID
from decimal import Decimal

from timeflow.models.timesheet import TimesheetStatus, EntryCategory, EntryType, LeaveSession
from timeflow.models.project_approval import ApprovalStatus, ApprovalAction
from timeflow.workflow.lock_policy import EditMode


class TimeEntryInput(BaseModel):
    """Create or update schema for a time entry (id present = update)."""
    id: Optional[UUID] = None
    entry_category: EntryCategory = EntryCategory.PROJECT
    entry_type: Optional[EntryType] = EntryType.PROJECT_TASK
    project_id: Optional[UUID] = None
    task_id: Optional[UUID] = None
    custom_task_description: Optional[str] = None
    description: Optional[str] = None
    date: datetime.date
    hours: Decimal = Field(..., ge=0, max_digits=5, decimal_places=2)
    is_billable: bool = False
    leave_session: Optional[LeaveSession] = None


class SaveEntriesRequest(BaseModel):
    """Full replacement of a timesheet's entries."""
    entries: List[TimeEntryInput] = []
    expected_version: Optional[int] = None


class ValidateEntriesRequest(BaseModel):
    """Unsaved entries to preview; omitted means the persisted entries."""
    entries: Optional[List[TimeEntryInput]] = None


class WorkflowActionRequest(BaseModel):
    expected_version: Optional[int] = None


class RejectProjectRequest(WorkflowActionRequest):
    reason: Optional[str] = Field(None, max_length=1000)


class TimeEntryResponse(BaseModel):
    """Response schema for a time entry with its derived permissions."""
    id: UUID
    row_order: int
    entry_category: EntryCategory
    entry_type: Optional[EntryType] = None
    project_id: Optional[UUID] = None
    project_name: Optional[str] = None
    task_id: Optional[UUID] = None
    custom_task_description: Optional[str] = None
    description: Optional[str] = None
    date: datetime.date
    hours: Decimal
    is_billable: bool
    leave_session: Optional[LeaveSession] = None
    rejection_reason: Optional[str] = None
    is_editable: bool = False
    can_copy: bool = False
    can_remove: bool = False

    class Config:
        from_attributes = True


class ProjectApprovalResponse(BaseModel):
    project_id: UUID
    project_name: Optional[str] = None
    lead_id: Optional[UUID] = None
    lead_status: ApprovalStatus
    lead_rejection_reason: Optional[str] = None
    lead_actioned_at: Optional[datetime.datetime] = None
    manager_id: Optional[UUID] = None
    manager_status: ApprovalStatus
    manager_rejection_reason: Optional[str] = None
    manager_actioned_at: Optional[datetime.datetime] = None
    entries_count: int
    total_hours: Decimal

    class Config:
        from_attributes = True


class ValidationResponse(BaseModel):
    """Outcome of running the entry rules over a week."""
    blocking_errors: List[str] = []
    warnings: List[str] = []
    field_errors: Dict[int, Dict[str, str]] = {}
    daily_totals: Dict[datetime.date, Decimal] = {}
    weekly_total: Decimal = Decimal("0")
    is_blocked: bool = False


class TimesheetResponse(BaseModel):
    """Response schema for a timesheet as seen in one edit mode."""
    id: UUID
    user_id: UUID
    user_name: Optional[str] = None
    week_start_date: datetime.date
    status: TimesheetStatus
    version: int
    submitted_at: Optional[datetime.datetime] = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    mode: EditMode
    entries: List[TimeEntryResponse] = []
    project_approvals: List[ProjectApprovalResponse] = []
    daily_totals: Dict[datetime.date, Decimal] = {}
    weekly_total: Decimal = Decimal("0")
    is_partial_rejection: bool = False
    can_add_entry: bool = False
    rejected_project_ids: List[UUID] = []
    validation: Optional[ValidationResponse] = None


class PendingReviewResponse(BaseModel):
    """One review a user still owes on someone else's timesheet."""
    timesheet_id: UUID
    week_start_date: datetime.date
    project_id: UUID
    project_name: str
    employee_id: UUID
    employee_name: str
    stage: str


class PendingReviewListResponse(BaseModel):
    items: List[PendingReviewResponse]
    total: int


class CanSubmitResponse(BaseModel):
    allowed: bool
    reason: Optional[str] = None
    pending_reviews: List[PendingReviewResponse] = []


class ApprovalHistoryResponse(BaseModel):
    """Response schema for one audit trail record."""
    id: UUID
    timesheet_id: UUID
    project_id: Optional[UUID] = None
    project_name: Optional[str] = None
    user_id: UUID
    approver_id: Optional[UUID] = None
    approver_name: Optional[str] = None
    approver_role: Optional[str] = None
    action: ApprovalAction
    status_before: Optional[TimesheetStatus] = None
    status_after: TimesheetStatus
    reason: Optional[str] = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True
