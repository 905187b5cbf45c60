"""
Submission gate: eligibility pre-check, validation and the submit transition.

A submission runs, in order: ownership and status checks, the stale-version
check, the outstanding-review check for reviewers, the entry rules, billable
coercion, approval chain reset for rejected projects, and finally the state
transition with its history record. Any refusal leaves the timesheet as it was.
"""

import logging
from dataclasses import replace
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timeflow.core.config import Settings, settings
from timeflow.core.exceptions import (
    EligibilityError,
    MissingApproverError,
    PermissionDeniedError,
    SubmissionValidationError,
)
from timeflow.db.base import utcnow
from timeflow.db.repositories.approval_history_repository import ApprovalHistoryRepository
from timeflow.db.repositories.project_repository import ProjectRepository
from timeflow.models.project_approval import ApprovalAction, ApprovalStatus
from timeflow.models.timesheet import EntryCategory, Timesheet
from timeflow.models.user import User
from timeflow.schemas.timesheet import CanSubmitResponse, TimesheetResponse
from timeflow.services.base_service import BaseService
from timeflow.services.identity_service import IdentityService
from timeflow.services.notification_service import NotificationService
from timeflow.services.timesheet_service import (
    TimesheetService,
    apply_state,
    check_version,
    default_mode,
    flush_or_conflict,
    sync_project_approvals,
)
from timeflow.workflow import approval_state_machine as sm
from timeflow.workflow.entry_validator import resolve_billable

logger = logging.getLogger(__name__)


def _pending_message(count: int) -> str:
    noun = "review" if count == 1 else "reviews"
    return f"You have {count} pending {noun} to complete before submitting your timesheet"


class SubmissionGate(BaseService):
    """Decides whether a timesheet may be submitted and submits it."""

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
        self.project_repo = ProjectRepository(session)
        self.history_repo = ApprovalHistoryRepository(session)

    def _refusal(self, timesheet: Timesheet, submitter: User) -> Optional[str]:
        if timesheet.user_id != submitter.id:
            return "Only the timesheet owner can submit it"
        if timesheet.status not in sm.OWNER_EDITABLE_STATUSES:
            return f"Timesheet in status {timesheet.status.value} cannot be submitted"
        return None

    async def can_submit(self, timesheet_id: UUID, submitter: User) -> CanSubmitResponse:
        """
        Pre-submit eligibility check.

        Reviewers (REVIEWER_ROLES) may not submit while reviews they owe on
        other users' timesheets are outstanding; the full list is returned.
        """
        timesheet = await self.timesheet_service.load(timesheet_id)
        reason = self._refusal(timesheet, submitter)
        if reason:
            return CanSubmitResponse(allowed=False, reason=reason)

        if self.identity_service.has_role(submitter, self.settings.REVIEWER_ROLES):
            pending = await self.identity_service.list_pending_reviews(submitter.id)
            if pending:
                return CanSubmitResponse(
                    allowed=False,
                    reason=_pending_message(len(pending)),
                    pending_reviews=pending,
                )
        return CanSubmitResponse(allowed=True)

    async def submit(
        self,
        timesheet_id: UUID,
        submitter: User,
        expected_version: Optional[int] = None,
    ) -> TimesheetResponse:
        """Submit or resubmit a timesheet for review."""
        timesheet = await self.timesheet_service.load(timesheet_id)
        if timesheet.user_id != submitter.id:
            raise PermissionDeniedError("Only the timesheet owner can submit it")
        check_version(timesheet, expected_version)
        new_status = sm.transition_timesheet(timesheet.status, sm.TimesheetEvent.SUBMIT)

        eligibility = await self.can_submit(timesheet_id, submitter)
        if not eligibility.allowed:
            logger.warning(
                f"Submission of timesheet {timesheet_id} refused: {eligibility.reason}",
                extra={"timesheet_id": str(timesheet_id), "user_id": str(submitter.id)},
            )
            raise EligibilityError(
                eligibility.reason,
                [review.model_dump(mode="json") for review in eligibility.pending_reviews],
            )

        result = self.timesheet_service.validate_timesheet(timesheet)
        blocking = list(result.blocking_errors)
        if not timesheet.entries:
            blocking.insert(0, "Timesheet has no entries")
        if blocking or result.field_errors:
            logger.warning(
                f"Submission of timesheet {timesheet_id} blocked by {len(blocking)} validation error(s)",
                extra={"timesheet_id": str(timesheet_id), "blocking_errors": blocking},
            )
            raise SubmissionValidationError(blocking, result.field_errors, result.warnings)

        rules = self.timesheet_service.rules_factory()
        for entry in timesheet.entries:
            entry.is_billable = resolve_billable(entry.date, entry.entry_category, entry.is_billable, rules)

        await self._reset_review_chains(timesheet)

        status_before = timesheet.status
        timesheet.status = new_status
        rollup = sm.compute_rollup(timesheet.project_approvals, timesheet.status)
        if rollup.status != new_status:
            logger.info(
                f"Timesheet {timesheet_id} has nothing left to review at stage {new_status.value}, "
                f"rolled up to {rollup.status.value}",
                extra={"timesheet_id": str(timesheet_id)},
            )
        timesheet.status = rollup.status
        timesheet.submitted_at = utcnow()

        await flush_or_conflict(self.session, timesheet)
        event = await self.history_repo.create(
            timesheet_id=timesheet.id,
            user_id=timesheet.user_id,
            approver_id=submitter.id,
            approver_role=submitter.role.value,
            action=ApprovalAction.SUBMITTED,
            status_before=status_before,
            status_after=timesheet.status,
            created_at=utcnow(),
        )
        await self.session.commit()
        logger.info(
            f"Timesheet {timesheet_id} submitted: {status_before.value} -> {timesheet.status.value}",
            extra={
                "timesheet_id": str(timesheet_id),
                "user_id": str(submitter.id),
                "warnings": len(result.warnings),
            },
        )
        await self.notification_service.publish([event])

        timesheet = await self.timesheet_service.load(timesheet_id)
        return self.timesheet_service.to_response(timesheet, default_mode(timesheet, submitter.id))

    async def _reset_review_chains(self, timesheet: Timesheet) -> None:
        """
        Restart every chain that is rejected or not yet acted on, using the
        project's current lead and manager. Approved stages are kept.
        """
        await sync_project_approvals(self.project_repo, timesheet)
        projects = await self.project_repo.get_many(a.project_id for a in timesheet.project_approvals)

        counted = [a for a in timesheet.project_approvals if (a.entries_count or 0) > 0]
        planned = []
        for approval in counted:
            state = sm.ProjectApprovalState.of(approval)
            project = projects[approval.project_id]
            untouched = (
                state.lead_status in (ApprovalStatus.PENDING, ApprovalStatus.NOT_REQUIRED)
                and state.manager_status == ApprovalStatus.PENDING
            )
            if state.is_rejected:
                current_chain = replace(state, lead_id=project.lead_id, manager_id=project.manager_id)
                target = sm.reopen(current_chain)
            elif untouched:
                target = sm.initial_state(
                    state.project_id,
                    project.lead_id,
                    project.manager_id,
                    state.entries_count,
                    state.total_hours,
                )
            else:
                target = None
            planned.append((approval, state, target))

        # Checked against the chains about to be stored, before anything changes
        for approval, state, target in planned:
            chain = target or replace(state, manager_id=projects[approval.project_id].manager_id)
            if chain.manager_id is None and chain.manager_status == ApprovalStatus.PENDING:
                raise MissingApproverError(
                    "Project has no manager to approve it",
                    {"project_id": str(approval.project_id)},
                )

        reopened = set()
        for approval, state, target in planned:
            if target is None:
                continue
            if state.is_rejected:
                reopened.add(approval.project_id)
            apply_state(approval, target)
            approval.lead_actioned_at = None
            approval.manager_actioned_at = None

        for entry in timesheet.entries:
            if entry.entry_category == EntryCategory.PROJECT and entry.project_id in reopened:
                entry.rejection_reason = None

        if reopened:
            logger.info(
                f"Reopened {len(reopened)} rejected project(s) on timesheet {timesheet.id}",
                extra={"timesheet_id": str(timesheet.id)},
            )
