"""
Entry editability derived from approval state.

``LockContext`` is built once per request from the timesheet status, its
project approvals and the view mode, and answers every edit/copy/remove/add
question for that request.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence

from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.timesheet import EntryCategory, TimesheetStatus

DEFAULT_PARTIAL_REJECTION_STATUSES = frozenset({TimesheetStatus.LEAD_REJECTED})


class EditMode(str, enum.Enum):
    CREATE = "create"
    EDIT = "edit"
    VIEW = "view"


def _counted(approvals: Iterable[Any]) -> list:
    return [a for a in approvals if (getattr(a, "entries_count", 0) or 0) > 0]


def _stage_rejected(approval: Any, status: TimesheetStatus) -> bool:
    if status == TimesheetStatus.MANAGER_REJECTED:
        return approval.manager_status == ApprovalStatus.REJECTED
    return approval.lead_status == ApprovalStatus.REJECTED


def is_project_rejected(approval: Optional[Any]) -> bool:
    if approval is None:
        return False
    return ApprovalStatus.REJECTED in (approval.lead_status, approval.manager_status)


def is_partial_rejection(
    timesheet_status: Any,
    approvals: Sequence[Any],
    partial_statuses: Iterable[Any] = DEFAULT_PARTIAL_REJECTION_STATUSES,
) -> bool:
    """
    Some, but not all, projects with entries rejected at the stage the
    timesheet status names. A rejected status with no rejected project left
    holding entries is not partial.
    """
    status = TimesheetStatus(timesheet_status)
    if status not in {TimesheetStatus(s) for s in partial_statuses}:
        return False
    counted = _counted(approvals)
    rejected = [a for a in counted if _stage_rejected(a, status)]
    return 0 < len(rejected) < len(counted)


def is_entry_editable(
    entry: Any,
    project_approval: Optional[Any],
    timesheet_status: Any,
    mode: Any,
    *,
    partial_rejection: bool,
) -> bool:
    """
    Decide whether one entry may be edited.

    Non-project entries are exempt from project locking. During a partial
    rejection only entries of a rejected project are editable; otherwise
    create/edit modes unlock everything and view mode unlocks rejected
    projects or a timesheet rejected by its lead.

    ``partial_rejection`` depends on the whole timesheet, not just this
    entry's project; callers normally go through ``LockContext``.
    """
    mode = EditMode(mode)
    status = TimesheetStatus(timesheet_status)
    category = EntryCategory(getattr(entry, "entry_category", None) or EntryCategory.PROJECT)

    if partial_rejection:
        if category != EntryCategory.PROJECT:
            return True
        return project_approval is not None and _stage_rejected(project_approval, status)
    if mode in (EditMode.CREATE, EditMode.EDIT):
        return True
    return is_project_rejected(project_approval) or status == TimesheetStatus.LEAD_REJECTED


@dataclass(frozen=True)
class EntryPermissions:
    can_edit: bool
    can_copy: bool
    can_remove: bool


@dataclass
class LockContext:
    timesheet_status: TimesheetStatus
    mode: EditMode
    partial_rejection: bool
    approvals_by_project: Dict[Any, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        timesheet_status: Any,
        approvals: Sequence[Any],
        mode: Any,
        partial_statuses: Iterable[Any] = DEFAULT_PARTIAL_REJECTION_STATUSES,
    ) -> "LockContext":
        return cls(
            timesheet_status=TimesheetStatus(timesheet_status),
            mode=EditMode(mode),
            partial_rejection=is_partial_rejection(timesheet_status, approvals, partial_statuses),
            approvals_by_project={a.project_id: a for a in approvals},
        )

    @property
    def can_add_entry(self) -> bool:
        if self.partial_rejection:
            return False
        if self.mode in (EditMode.CREATE, EditMode.EDIT):
            return True
        return self.timesheet_status == TimesheetStatus.LEAD_REJECTED or any(
            is_project_rejected(a) for a in self.approvals_by_project.values()
        )

    @property
    def rejected_project_ids(self) -> FrozenSet[Any]:
        return frozenset(
            project_id
            for project_id, approval in self.approvals_by_project.items()
            if is_project_rejected(approval)
        )

    def approval_for(self, entry: Any) -> Optional[Any]:
        project_id = getattr(entry, "project_id", None)
        if project_id is None:
            return None
        return self.approvals_by_project.get(project_id)

    def is_entry_editable(self, entry: Any) -> bool:
        return is_entry_editable(
            entry,
            self.approval_for(entry),
            self.timesheet_status,
            self.mode,
            partial_rejection=self.partial_rejection,
        )

    def permissions_for(self, entry: Any) -> EntryPermissions:
        editable = self.is_entry_editable(entry)
        return EntryPermissions(can_edit=editable, can_copy=editable, can_remove=editable)
