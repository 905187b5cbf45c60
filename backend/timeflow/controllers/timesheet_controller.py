"""
Timesheet controller - coordinates service calls.
"""

from datetime import date
from typing import Optional, List
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timeflow.controllers.base_controller import BaseController
from timeflow.core.config import Settings, settings
from timeflow.models.user import User
from timeflow.services.notification_service import NotificationService
from timeflow.services.submission_gate import SubmissionGate
from timeflow.services.timesheet_service import TimesheetService
from timeflow.services.timesheet_approval_service import TimesheetApprovalService
from timeflow.schemas.timesheet import (
    ApprovalHistoryResponse,
    CanSubmitResponse,
    PendingReviewListResponse,
    SaveEntriesRequest,
    TimeEntryInput,
    TimesheetResponse,
    ValidationResponse,
)
from timeflow.workflow.lock_policy import EditMode


class TimesheetController(BaseController):
    """Controller for timesheet operations."""

    def __init__(
        self,
        session: AsyncSession,
        notification_service: Optional[NotificationService] = None,
        rules_factory=None,
        app_settings: Settings = settings,
    ):
        self.timesheet_service = TimesheetService(session, app_settings, rules_factory)
        self.approval_service = TimesheetApprovalService(
            session, notification_service, app_settings, self.timesheet_service
        )
        self.submission_gate = SubmissionGate(
            session, notification_service, app_settings, self.timesheet_service
        )

    async def get_or_create_timesheet(self, user: User, week_start_date: date) -> TimesheetResponse:
        return await self.timesheet_service.get_or_create_timesheet(user, week_start_date)

    async def get_timesheet(
        self,
        timesheet_id: UUID,
        user: User,
        mode: Optional[EditMode] = None,
    ) -> TimesheetResponse:
        return await self.timesheet_service.get_timesheet(timesheet_id, user, mode)

    async def save_entries(
        self,
        timesheet_id: UUID,
        user: User,
        request: SaveEntriesRequest,
    ) -> TimesheetResponse:
        return await self.timesheet_service.save_entries(timesheet_id, user, request)

    async def validate_entries(
        self,
        timesheet_id: UUID,
        user: User,
        entries: Optional[List[TimeEntryInput]] = None,
    ) -> ValidationResponse:
        return await self.timesheet_service.validate_entries(timesheet_id, user, entries)

    async def can_submit(self, timesheet_id: UUID, user: User) -> CanSubmitResponse:
        return await self.submission_gate.can_submit(timesheet_id, user)

    async def submit_timesheet(
        self,
        timesheet_id: UUID,
        user: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        return await self.submission_gate.submit(timesheet_id, user, expected_version)

    async def approve_project(
        self,
        timesheet_id: UUID,
        project_id: UUID,
        reviewer: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        return await self.approval_service.approve_project(
            timesheet_id, project_id, reviewer, expected_version
        )

    async def reject_project(
        self,
        timesheet_id: UUID,
        project_id: UUID,
        reviewer: User,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        return await self.approval_service.reject_project(
            timesheet_id, project_id, reviewer, reason, expected_version
        )

    async def freeze_timesheet(
        self,
        timesheet_id: UUID,
        actor: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        return await self.approval_service.freeze(timesheet_id, actor, expected_version)

    async def bill_timesheet(
        self,
        timesheet_id: UUID,
        actor: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        return await self.approval_service.bill(timesheet_id, actor, expected_version)

    async def get_history(self, timesheet_id: UUID, user: User) -> List[ApprovalHistoryResponse]:
        return await self.timesheet_service.get_history(timesheet_id, user)

    async def list_pending_approvals(self, reviewer: User) -> PendingReviewListResponse:
        return await self.approval_service.list_pending_approvals(reviewer)
