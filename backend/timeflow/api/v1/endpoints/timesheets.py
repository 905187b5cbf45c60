"""
Timesheet API endpoints.
"""

from datetime import date
from typing import Optional, List
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from timeflow.db.session import get_db
from timeflow.api.v1.middleware import require_authentication
from timeflow.controllers.timesheet_controller import TimesheetController
from timeflow.core.rate_limit import limiter, WORKFLOW_ACTION_LIMIT
from timeflow.deps.di_container import get_container
from timeflow.models.user import User
from timeflow.schemas.timesheet import (
    ApprovalHistoryResponse,
    CanSubmitResponse,
    PendingReviewListResponse,
    RejectProjectRequest,
    SaveEntriesRequest,
    TimesheetResponse,
    ValidateEntriesRequest,
    ValidationResponse,
    WorkflowActionRequest,
)
from timeflow.services.timesheet_service import current_week_start
from timeflow.workflow.lock_policy import EditMode

router = APIRouter()


def _controller(db: AsyncSession) -> TimesheetController:
    container = get_container()
    return TimesheetController(
        db,
        notification_service=container.notification_service(),
        rules_factory=container.validation_rules,
    )


def _expected_version(body: Optional[WorkflowActionRequest]) -> Optional[int]:
    return body.expected_version if body else None


@router.get("/me", response_model=TimesheetResponse)
async def get_my_timesheet_for_week(
    week: Optional[date] = Query(None, description="Week start date YYYY-MM-DD (Monday)"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Get or create the current user's timesheet for a week. Defaults to the current week."""
    week_start = week or current_week_start()
    return await _controller(db).get_or_create_timesheet(current_user, week_start)


@router.get("/approvals/pending", response_model=PendingReviewListResponse)
async def list_pending_approvals(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """List project reviews waiting on the current user."""
    return await _controller(db).list_pending_approvals(current_user)


@router.get("/{timesheet_id}", response_model=TimesheetResponse)
async def get_timesheet(
    timesheet_id: UUID,
    mode: Optional[EditMode] = Query(None, description="create, edit or view"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Get timesheet by ID with per-entry permissions."""
    return await _controller(db).get_timesheet(timesheet_id, current_user, mode)


@router.put("/{timesheet_id}/entries", response_model=TimesheetResponse)
async def save_timesheet_entries(
    timesheet_id: UUID,
    body: SaveEntriesRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Save timesheet entries."""
    return await _controller(db).save_entries(timesheet_id, current_user, body)


@router.post("/{timesheet_id}/validate", response_model=ValidationResponse)
async def validate_timesheet_entries(
    timesheet_id: UUID,
    body: Optional[ValidateEntriesRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Preview validation of the given entries, or of the saved ones."""
    entries = body.entries if body else None
    return await _controller(db).validate_entries(timesheet_id, current_user, entries)


@router.get("/{timesheet_id}/can-submit", response_model=CanSubmitResponse)
async def can_submit_timesheet(
    timesheet_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Check whether the current user may submit this timesheet now."""
    return await _controller(db).can_submit(timesheet_id, current_user)


@router.post("/{timesheet_id}/submit", response_model=TimesheetResponse)
@limiter.limit(WORKFLOW_ACTION_LIMIT)
async def submit_timesheet(
    request: Request,
    timesheet_id: UUID,
    body: Optional[WorkflowActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Submit timesheet for approval."""
    return await _controller(db).submit_timesheet(timesheet_id, current_user, _expected_version(body))


@router.post("/{timesheet_id}/projects/{project_id}/approve", response_model=TimesheetResponse)
async def approve_project(
    timesheet_id: UUID,
    project_id: UUID,
    body: Optional[WorkflowActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Approve the current user's review stage for one project."""
    return await _controller(db).approve_project(
        timesheet_id, project_id, current_user, _expected_version(body)
    )


@router.post("/{timesheet_id}/projects/{project_id}/reject", response_model=TimesheetResponse)
async def reject_project(
    timesheet_id: UUID,
    project_id: UUID,
    body: RejectProjectRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Reject the current user's review stage for one project. A reason is required."""
    return await _controller(db).reject_project(
        timesheet_id, project_id, current_user, body.reason, body.expected_version
    )


@router.post("/{timesheet_id}/freeze", response_model=TimesheetResponse)
async def freeze_timesheet(
    timesheet_id: UUID,
    body: Optional[WorkflowActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Verify a manager-approved timesheet."""
    return await _controller(db).freeze_timesheet(timesheet_id, current_user, _expected_version(body))


@router.post("/{timesheet_id}/bill", response_model=TimesheetResponse)
async def bill_timesheet(
    timesheet_id: UUID,
    body: Optional[WorkflowActionRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Mark timesheet as billed."""
    return await _controller(db).bill_timesheet(timesheet_id, current_user, _expected_version(body))


@router.get("/{timesheet_id}/history", response_model=List[ApprovalHistoryResponse])
async def get_timesheet_history(
    timesheet_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(require_authentication),
):
    """Approval history, newest first."""
    return await _controller(db).get_history(timesheet_id, current_user)
