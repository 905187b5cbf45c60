"""
Timesheet approval service - per-project approve/reject, freeze, bill.
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timeflow.core.config import Settings, settings
from timeflow.core.exceptions import NotFoundError, PermissionDeniedError
from timeflow.db.base import utcnow
from timeflow.db.repositories.approval_history_repository import ApprovalHistoryRepository
from timeflow.models.project_approval import ApprovalAction, ApprovalStatus, ProjectApproval
from timeflow.models.timesheet import EntryCategory, Timesheet, TimesheetStatus
from timeflow.models.user import User
from timeflow.schemas.timesheet import PendingReviewListResponse, TimesheetResponse
from timeflow.services.base_service import BaseService
from timeflow.services.identity_service import IdentityService
from timeflow.services.notification_service import NotificationService
from timeflow.services.timesheet_service import (
    TimesheetService,
    apply_state,
    check_version,
    flush_or_conflict,
)
from timeflow.workflow import approval_state_machine as sm
from timeflow.workflow.lock_policy import EditMode

logger = logging.getLogger(__name__)


class TimesheetApprovalService(BaseService):
    """Service for timesheet approval operations."""

    def __init__(
        self,
        session: AsyncSession,
        notification_service: Optional[NotificationService] = None,
        app_settings: Settings = settings,
        timesheet_service: Optional[TimesheetService] = None,
    ):
        self.session = session
        self.settings = app_settings
        self.notification_service = notification_service or NotificationService()
        self.timesheet_service = timesheet_service or TimesheetService(session, app_settings)
        self.identity_service = IdentityService(session)
        self.history_repo = ApprovalHistoryRepository(session)

    def _stage_for(self, approval: ProjectApproval, reviewer: User) -> sm.ReviewStage:
        """The stage the reviewer acts on; a user holding both roles acts on the open one."""
        is_lead = approval.lead_id is not None and approval.lead_id == reviewer.id
        is_manager = approval.manager_id is not None and approval.manager_id == reviewer.id
        if is_lead and (approval.lead_status == ApprovalStatus.PENDING or not is_manager):
            return sm.ReviewStage.LEAD
        if is_manager:
            return sm.ReviewStage.MANAGER
        raise PermissionDeniedError(
            "Only the project's lead or manager can review it",
            {"project_id": str(approval.project_id)},
        )

    async def _load_for_review(
        self,
        timesheet_id: UUID,
        project_id: UUID,
        reviewer: User,
        expected_version: Optional[int],
    ) -> tuple:
        timesheet = await self.timesheet_service.load(timesheet_id)
        if timesheet.user_id == reviewer.id:
            raise PermissionDeniedError("You cannot review your own timesheet")
        approval = next((a for a in timesheet.project_approvals if a.project_id == project_id), None)
        if approval is None:
            raise NotFoundError(
                "Project is not part of this timesheet",
                {"timesheet_id": str(timesheet_id), "project_id": str(project_id)},
            )
        stage = self._stage_for(approval, reviewer)
        sm.ensure_reviewable(timesheet.status)
        check_version(timesheet, expected_version)
        return timesheet, approval, stage

    async def _commit(
        self,
        timesheet: Timesheet,
        action: ApprovalAction,
        actor: User,
        role: str,
        status_before: TimesheetStatus,
        project_id: Optional[UUID] = None,
        reason: Optional[str] = None,
    ) -> TimesheetResponse:
        """Persist the transition with its history record, then notify."""
        await flush_or_conflict(self.session, timesheet)
        event = await self.history_repo.create(
            timesheet_id=timesheet.id,
            project_id=project_id,
            user_id=timesheet.user_id,
            approver_id=actor.id,
            approver_role=role,
            action=action,
            status_before=status_before,
            status_after=timesheet.status,
            reason=reason,
            created_at=utcnow(),
        )
        await self.session.commit()
        await self.notification_service.publish([event])
        timesheet = await self.timesheet_service.load(timesheet.id)
        return self.timesheet_service.to_response(timesheet, EditMode.VIEW)

    def _apply_rollup(self, timesheet: Timesheet) -> sm.RollupResult:
        rollup = sm.compute_rollup(timesheet.project_approvals, timesheet.status)
        timesheet.status = rollup.status
        return rollup

    async def approve_project(
        self,
        timesheet_id: UUID,
        project_id: UUID,
        reviewer: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        """Approve the reviewer's stage of one project and roll the result up."""
        timesheet, approval, stage = await self._load_for_review(
            timesheet_id, project_id, reviewer, expected_version
        )
        before = sm.ProjectApprovalState.of(approval)
        after = sm.approve(
            before,
            stage,
            auto_escalate=bool(approval.project and approval.project.lead_approval_auto_escalates),
            allow_lead_bypass=self.settings.ALLOW_MANAGER_LEAD_BYPASS,
        )
        apply_state(approval, after)
        now = utcnow()
        if before.lead_status != after.lead_status:
            approval.lead_actioned_at = now
        if before.manager_status != after.manager_status:
            approval.manager_actioned_at = now

        status_before = timesheet.status
        rollup = self._apply_rollup(timesheet)
        logger.info(
            f"Project {project_id} approved by {stage.value} on timesheet {timesheet_id}: "
            f"{status_before.value} -> {rollup.status.value}",
            extra={
                "timesheet_id": str(timesheet_id),
                "project_id": str(project_id),
                "reviewer_id": str(reviewer.id),
                "pending_projects": len(rollup.pending_project_ids),
            },
        )
        return await self._commit(
            timesheet, ApprovalAction.APPROVED, reviewer, stage.value, status_before, project_id
        )

    async def reject_project(
        self,
        timesheet_id: UUID,
        project_id: UUID,
        reviewer: User,
        reason: Optional[str],
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        """Reject the reviewer's stage of one project; the other projects are untouched."""
        timesheet, approval, stage = await self._load_for_review(
            timesheet_id, project_id, reviewer, expected_version
        )
        before = sm.ProjectApprovalState.of(approval)
        after = sm.reject(
            before,
            stage,
            reason,
            allow_lead_bypass=self.settings.ALLOW_MANAGER_LEAD_BYPASS,
        )
        apply_state(approval, after)
        now = utcnow()
        if stage == sm.ReviewStage.LEAD:
            approval.lead_actioned_at = now
            reason = after.lead_rejection_reason
        else:
            approval.manager_actioned_at = now
            reason = after.manager_rejection_reason

        for entry in timesheet.entries:
            if entry.entry_category == EntryCategory.PROJECT and entry.project_id == project_id:
                entry.rejection_reason = reason

        status_before = timesheet.status
        rollup = self._apply_rollup(timesheet)
        logger.info(
            f"Project {project_id} rejected by {stage.value} on timesheet {timesheet_id}: "
            f"{status_before.value} -> {rollup.status.value}",
            extra={
                "timesheet_id": str(timesheet_id),
                "project_id": str(project_id),
                "reviewer_id": str(reviewer.id),
                "rejected_projects": len(rollup.rejected_project_ids),
            },
        )
        return await self._commit(
            timesheet, ApprovalAction.REJECTED, reviewer, stage.value, status_before, project_id, reason
        )

    async def _finance_transition(
        self,
        timesheet_id: UUID,
        actor: User,
        event_name: sm.TimesheetEvent,
        action: ApprovalAction,
        expected_version: Optional[int],
    ) -> TimesheetResponse:
        if not self.identity_service.has_role(actor, self.settings.FINANCE_ROLES):
            raise PermissionDeniedError(f"Your role cannot {event_name.value} timesheets")
        timesheet = await self.timesheet_service.load(timesheet_id)
        check_version(timesheet, expected_version)
        status_before = timesheet.status
        timesheet.status = sm.transition_timesheet(status_before, event_name)
        logger.info(
            f"Timesheet {timesheet_id} {status_before.value} -> {timesheet.status.value}",
            extra={"timesheet_id": str(timesheet_id), "actor_id": str(actor.id)},
        )
        return await self._commit(timesheet, action, actor, actor.role.value, status_before)

    async def freeze(
        self,
        timesheet_id: UUID,
        actor: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        """Verify a manager-approved timesheet for finance."""
        return await self._finance_transition(
            timesheet_id, actor, sm.TimesheetEvent.FREEZE, ApprovalAction.VERIFIED, expected_version
        )

    async def bill(
        self,
        timesheet_id: UUID,
        actor: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        """Mark an approved or frozen timesheet as billed."""
        return await self._finance_transition(
            timesheet_id, actor, sm.TimesheetEvent.BILL, ApprovalAction.BILLED, expected_version
        )

    async def list_pending_approvals(self, reviewer: User) -> PendingReviewListResponse:
        reviews = await self.identity_service.list_pending_reviews(reviewer.id)
        return PendingReviewListResponse(items=reviews, total=len(reviews))
