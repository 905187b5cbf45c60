"""
Timesheet service with business logic: weekly timesheets, entry saving,
validation preview and the response view shared by the workflow services.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from timeflow.core.config import Settings, settings
from timeflow.core.exceptions import (
    ConflictError,
    EntryLockedError,
    NotFoundError,
    PermissionDeniedError,
    WorkflowValidationError,
)
from timeflow.db.base import utcnow
from timeflow.db.repositories.approval_history_repository import ApprovalHistoryRepository
from timeflow.db.repositories.project_repository import ProjectRepository
from timeflow.db.repositories.timesheet_repository import TimesheetRepository
from timeflow.models.project import Project
from timeflow.models.project_approval import ProjectApproval
from timeflow.models.timesheet import EntryCategory, TimeEntry, Timesheet
from timeflow.models.user import User, UserRole
from timeflow.schemas.timesheet import (
    ApprovalHistoryResponse,
    ProjectApprovalResponse,
    SaveEntriesRequest,
    TimeEntryInput,
    TimeEntryResponse,
    TimesheetResponse,
    ValidationResponse,
)
from timeflow.services.base_service import BaseService
from timeflow.workflow import approval_state_machine as sm
from timeflow.workflow.entry_validator import (
    ValidationResult,
    ValidationRules,
    resolve_billable,
    to_hours,
    validate,
    week_dates_for,
)
from timeflow.workflow.lock_policy import EditMode, LockContext

logger = logging.getLogger(__name__)

# Entry columns the owner controls; everything else is derived
ENTRY_FIELDS = (
    "entry_category",
    "entry_type",
    "project_id",
    "task_id",
    "custom_task_description",
    "description",
    "date",
    "hours",
    "is_billable",
    "leave_session",
)


def build_validation_rules(app_settings: Settings = settings) -> ValidationRules:
    """Rules for the current day; future-dated entries are judged against today."""
    return ValidationRules.from_settings(app_settings, today=utcnow().date())


def current_week_start(today: Optional[date] = None) -> date:
    """Monday of the week containing ``today``."""
    today = today or utcnow().date()
    return today - timedelta(days=today.weekday())


def ensure_monday(week_start_date: date) -> None:
    if week_start_date.weekday() != 0:
        raise WorkflowValidationError(
            "week_start_date must be a Monday",
            {"week_start_date": week_start_date.isoformat()},
        )


def check_version(timesheet: Timesheet, expected_version: Optional[int]) -> None:
    if expected_version is not None and expected_version != timesheet.version:
        logger.warning(
            f"Stale version for timesheet {timesheet.id}: expected {expected_version}, "
            f"current {timesheet.version}",
            extra={"timesheet_id": str(timesheet.id)},
        )
        raise ConflictError(
            details={"expected_version": expected_version, "current_version": timesheet.version}
        )


def apply_state(approval: ProjectApproval, state: sm.ProjectApprovalState) -> None:
    """Copy a state machine snapshot onto the persisted approval row."""
    approval.lead_id = state.lead_id
    approval.lead_status = state.lead_status
    approval.lead_rejection_reason = state.lead_rejection_reason
    approval.manager_id = state.manager_id
    approval.manager_status = state.manager_status
    approval.manager_rejection_reason = state.manager_rejection_reason
    approval.entries_count = state.entries_count
    approval.total_hours = state.total_hours


def _project_totals(entries: Iterable[TimeEntry]) -> Dict[UUID, tuple]:
    totals: Dict[UUID, list] = {}
    for entry in entries:
        if entry.entry_category != EntryCategory.PROJECT or not entry.project_id:
            continue
        bucket = totals.setdefault(entry.project_id, [0, Decimal("0")])
        bucket[0] += 1
        bucket[1] += to_hours(entry.hours)
    return {project_id: (count, hours) for project_id, (count, hours) in totals.items()}


async def sync_project_approvals(
    project_repo: ProjectRepository,
    timesheet: Timesheet,
) -> List[ProjectApproval]:
    """
    Bring the timesheet's ProjectApproval records in line with its entries.

    New projects get a fresh review chain. Records whose entry count or hours
    changed restart their chain unless they are rejected, which they stay
    until resubmission. Records of projects no longer referenced keep a zero
    count so their history survives.
    """
    totals = _project_totals(timesheet.entries)
    by_project = {a.project_id: a for a in timesheet.project_approvals}
    projects = await project_repo.get_many(totals.keys())

    missing = [str(project_id) for project_id in totals if project_id not in projects]
    if missing:
        raise WorkflowValidationError("Unknown project", {"project_ids": missing})

    for project_id, approval in by_project.items():
        if project_id not in totals and approval.entries_count:
            approval.entries_count = 0
            approval.total_hours = Decimal("0")

    for project_id, (count, hours) in totals.items():
        project = projects[project_id]
        approval = by_project.get(project_id)
        if approval is None:
            approval = ProjectApproval(project_id=project_id)
            apply_state(approval, sm.initial_state(project_id, project.lead_id, project.manager_id, count, hours))
            timesheet.project_approvals.append(approval)
            continue

        state = sm.ProjectApprovalState.of(approval)
        if state.entries_count == count and state.total_hours == hours:
            continue
        if state.is_rejected:
            approval.entries_count = count
            approval.total_hours = hours
        else:
            apply_state(approval, sm.initial_state(project_id, project.lead_id, project.manager_id, count, hours))
            approval.lead_actioned_at = None
            approval.manager_actioned_at = None

    return list(timesheet.project_approvals)


async def flush_or_conflict(session: AsyncSession, timesheet: Timesheet) -> None:
    """Flush pending changes; a concurrent writer surfaces as ConflictError."""
    timesheet.updated_at = utcnow()
    try:
        await session.flush()
    except StaleDataError:
        await session.rollback()
        logger.warning(
            f"Concurrent update detected on timesheet {timesheet.id}",
            extra={"timesheet_id": str(timesheet.id)},
        )
        raise ConflictError(details={"timesheet_id": str(timesheet.id)})


def validation_response(result: ValidationResult) -> ValidationResponse:
    return ValidationResponse(
        blocking_errors=result.blocking_errors,
        warnings=result.warnings,
        field_errors=result.field_errors,
        daily_totals=result.daily_totals,
        weekly_total=result.weekly_total,
        is_blocked=result.is_blocked,
    )


def default_mode(timesheet: Timesheet, user_id: UUID) -> EditMode:
    if timesheet.user_id != user_id or timesheet.status not in sm.OWNER_EDITABLE_STATUSES:
        return EditMode.VIEW
    if not timesheet.entries:
        return EditMode.CREATE
    return EditMode.EDIT


class TimesheetService(BaseService):
    """Service for timesheet operations."""

    def __init__(
        self,
        session: AsyncSession,
        app_settings: Settings = settings,
        rules_factory: Optional[Callable[[], ValidationRules]] = None,
    ):
        self.session = session
        self.settings = app_settings
        self.rules_factory = rules_factory or (lambda: build_validation_rules(app_settings))
        self.timesheet_repo = TimesheetRepository(session)
        self.project_repo = ProjectRepository(session)
        self.history_repo = ApprovalHistoryRepository(session)

    async def load(self, timesheet_id: UUID) -> Timesheet:
        timesheet = await self.timesheet_repo.get(timesheet_id)
        if not timesheet:
            raise NotFoundError("Timesheet not found", {"timesheet_id": str(timesheet_id)})
        return timesheet

    def lock_context(self, timesheet: Timesheet, mode: EditMode) -> LockContext:
        return LockContext.build(
            timesheet.status,
            timesheet.project_approvals,
            mode,
            self.settings.PARTIAL_REJECTION_STATUSES,
        )

    def can_view(self, timesheet: Timesheet, user: User) -> bool:
        if timesheet.user_id == user.id or user.role == UserRole.MANAGEMENT:
            return True
        return any(user.id in (a.lead_id, a.manager_id) for a in timesheet.project_approvals)

    def validate_timesheet(self, timesheet: Timesheet, entries: Optional[List[Any]] = None) -> ValidationResult:
        """Run the entry rules over the given entries, or the persisted ones."""
        return validate(
            timesheet.entries if entries is None else entries,
            week_dates_for(timesheet.week_start_date),
            self.rules_factory(),
        )

    def to_response(self, timesheet: Timesheet, mode: EditMode) -> TimesheetResponse:
        """Timesheet view with per-entry permissions from one lock context."""
        ctx = self.lock_context(timesheet, mode)
        result = self.validate_timesheet(timesheet)

        entries = []
        for entry in timesheet.entries:
            permissions = ctx.permissions_for(entry)
            item = TimeEntryResponse.model_validate(entry)
            item.project_name = entry.project.name if entry.project else None
            item.is_editable = permissions.can_edit
            item.can_copy = permissions.can_copy
            item.can_remove = permissions.can_remove
            entries.append(item)

        approvals = []
        for approval in timesheet.project_approvals:
            item = ProjectApprovalResponse.model_validate(approval)
            item.project_name = approval.project.name if approval.project else None
            approvals.append(item)

        return TimesheetResponse(
            id=timesheet.id,
            user_id=timesheet.user_id,
            user_name=timesheet.user.full_name if timesheet.user else None,
            week_start_date=timesheet.week_start_date,
            status=timesheet.status,
            version=timesheet.version,
            submitted_at=timesheet.submitted_at,
            created_at=timesheet.created_at,
            updated_at=timesheet.updated_at,
            mode=ctx.mode,
            entries=entries,
            project_approvals=approvals,
            daily_totals=result.daily_totals,
            weekly_total=result.weekly_total,
            is_partial_rejection=ctx.partial_rejection,
            can_add_entry=ctx.can_add_entry,
            rejected_project_ids=sorted(ctx.rejected_project_ids, key=str),
            validation=validation_response(result),
        )

    async def get_or_create_timesheet(self, user: User, week_start_date: date) -> TimesheetResponse:
        """Get the user's timesheet for a week, creating an empty draft on first access."""
        ensure_monday(week_start_date)
        timesheet = await self.timesheet_repo.get_by_user_and_week(user.id, week_start_date)
        if not timesheet:
            try:
                created = await self.timesheet_repo.create(user_id=user.id, week_start_date=week_start_date)
                await self.session.commit()
                logger.info(
                    f"Created draft timesheet {created.id} for week {week_start_date}",
                    extra={"timesheet_id": str(created.id), "user_id": str(user.id)},
                )
            except IntegrityError:
                # Created concurrently by another request
                await self.session.rollback()
            timesheet = await self.timesheet_repo.get_by_user_and_week(user.id, week_start_date)
        return self.to_response(timesheet, default_mode(timesheet, user.id))

    async def get_timesheet(
        self,
        timesheet_id: UUID,
        user: User,
        mode: Optional[EditMode] = None,
    ) -> TimesheetResponse:
        """Get a timesheet; only the owner may look at it in create/edit mode."""
        timesheet = await self.load(timesheet_id)
        if not self.can_view(timesheet, user):
            raise PermissionDeniedError("You cannot view this timesheet")
        allowed = default_mode(timesheet, user.id)
        if mode is None or allowed == EditMode.VIEW:
            mode = allowed
        return self.to_response(timesheet, mode)

    def _check_locks(
        self,
        timesheet: Timesheet,
        ctx: LockContext,
        incoming: List[TimeEntryInput],
        rules: ValidationRules,
    ) -> None:
        """Refuse changes the lock context does not allow."""
        existing = {entry.id: entry for entry in timesheet.entries}
        kept_ids = {item.id for item in incoming if item.id is not None}

        for entry in timesheet.entries:
            if entry.id not in kept_ids and not ctx.is_entry_editable(entry):
                raise EntryLockedError("Locked entries cannot be removed", {"entry_id": str(entry.id)})

        for item in incoming:
            if item.id is None:
                if not ctx.can_add_entry:
                    raise EntryLockedError("New entries cannot be added while the timesheet is partially rejected")
                continue
            entry = existing[item.id]
            if not ctx.is_entry_editable(entry):
                if self._entry_changed(entry, item, rules):
                    raise EntryLockedError("Entry is locked", {"entry_id": str(entry.id)})
                continue
            if (
                ctx.partial_rejection
                and item.entry_category == EntryCategory.PROJECT
                and item.project_id not in ctx.rejected_project_ids
            ):
                raise EntryLockedError(
                    "Entries can only be moved to a rejected project",
                    {"entry_id": str(entry.id), "project_id": str(item.project_id)},
                )

        # The lock lasts until resubmission, so a rejected project must keep an entry
        if ctx.partial_rejection and not any(
            item.entry_category == EntryCategory.PROJECT and item.project_id in ctx.rejected_project_ids
            for item in incoming
        ):
            raise EntryLockedError(
                "A rejected project must keep at least one entry until the timesheet is resubmitted",
                {"rejected_project_ids": sorted(str(p) for p in ctx.rejected_project_ids)},
            )

    def _entry_values(self, item: TimeEntryInput, rules: ValidationRules) -> dict:
        values = {name: getattr(item, name) for name in ENTRY_FIELDS}
        values["is_billable"] = resolve_billable(item.date, item.entry_category, item.is_billable, rules)
        values["custom_task_description"] = (item.custom_task_description or "").strip() or None
        values["description"] = (item.description or "").strip() or None
        if item.entry_category != EntryCategory.PROJECT:
            values["entry_type"] = None
        return values

    def _entry_changed(self, entry: TimeEntry, item: TimeEntryInput, rules: ValidationRules) -> bool:
        for name, value in self._entry_values(item, rules).items():
            current = getattr(entry, name)
            if name == "hours":
                if to_hours(current) != to_hours(value):
                    return True
            elif current != value:
                return True
        return False

    async def save_entries(
        self,
        timesheet_id: UUID,
        user: User,
        request: SaveEntriesRequest,
    ) -> TimesheetResponse:
        """
        Replace the owner's entries and resynchronise the project approvals.

        Entries with an id update the stored entry; entries without one are
        created; stored entries missing from the request are removed.
        """
        timesheet = await self.load(timesheet_id)
        if timesheet.user_id != user.id:
            raise PermissionDeniedError("Only the owner can edit this timesheet")
        if timesheet.status not in sm.OWNER_EDITABLE_STATUSES:
            raise EntryLockedError(
                f"Timesheet is locked in status {timesheet.status.value}",
                {"status": timesheet.status.value},
            )
        check_version(timesheet, request.expected_version)

        existing = {entry.id: entry for entry in timesheet.entries}
        unknown = [str(item.id) for item in request.entries if item.id is not None and item.id not in existing]
        if unknown:
            raise WorkflowValidationError("Entries do not belong to this timesheet", {"entry_ids": unknown})

        rules = self.rules_factory()
        ctx = self.lock_context(timesheet, EditMode.EDIT)
        self._check_locks(timesheet, ctx, request.entries, rules)

        entries = []
        for row_order, item in enumerate(request.entries):
            values = self._entry_values(item, rules)
            if item.id is None:
                entry = TimeEntry(row_order=row_order, **values)
            else:
                entry = existing[item.id]
                entry.row_order = row_order
                for name, value in values.items():
                    setattr(entry, name, value)
            entries.append(entry)
        timesheet.entries = entries

        await sync_project_approvals(self.project_repo, timesheet)
        await flush_or_conflict(self.session, timesheet)
        await self.session.commit()

        logger.info(
            f"Saved {len(entries)} entries on timesheet {timesheet_id}",
            extra={"timesheet_id": str(timesheet_id), "user_id": str(user.id)},
        )
        timesheet = await self.load(timesheet_id)
        return self.to_response(timesheet, default_mode(timesheet, user.id))

    async def validate_entries(
        self,
        timesheet_id: UUID,
        user: User,
        entries: Optional[List[TimeEntryInput]] = None,
    ) -> ValidationResponse:
        """Preview the rules the submission gate will apply."""
        timesheet = await self.load(timesheet_id)
        if not self.can_view(timesheet, user):
            raise PermissionDeniedError("You cannot view this timesheet")
        return validation_response(self.validate_timesheet(timesheet, entries))

    async def get_history(self, timesheet_id: UUID, user: User) -> List[ApprovalHistoryResponse]:
        """Approval trail of a timesheet, newest first."""
        timesheet = await self.load(timesheet_id)
        if not self.can_view(timesheet, user):
            raise PermissionDeniedError("You cannot view this timesheet")
        records = await self.history_repo.list_by_timesheet(timesheet_id)
        history = []
        for record in records:
            item = ApprovalHistoryResponse.model_validate(record)
            item.project_name = record.project.name if record.project else None
            item.approver_name = record.approver.full_name if record.approver else None
            history.append(item)
        return history
