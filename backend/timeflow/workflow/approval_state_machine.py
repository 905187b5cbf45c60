"""
Approval state machine for timesheets and their per-project review stages.

Project-level transitions work on immutable ``ProjectApprovalState`` snapshots
and return new snapshots; the service layer copies the result onto the
persisted row. ``compute_rollup`` derives the timesheet status from the
current set of snapshots and has no side effects, so it can be re-run after
every project transition or on retry.
"""

import enum
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, FrozenSet, Iterable, Optional

from timeflow.core.exceptions import InvalidTransitionError, WorkflowValidationError
from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.timesheet import TimesheetStatus

STAGE_DONE = frozenset({ApprovalStatus.APPROVED, ApprovalStatus.NOT_REQUIRED})

# Statuses in which a reviewer may act on a project
REVIEWABLE_STATUSES = frozenset({
    TimesheetStatus.SUBMITTED,
    TimesheetStatus.LEAD_APPROVED,
    TimesheetStatus.LEAD_REJECTED,
    TimesheetStatus.MANAGER_REJECTED,
})

# Statuses in which the owner may edit entries and (re)submit
OWNER_EDITABLE_STATUSES = frozenset({
    TimesheetStatus.DRAFT,
    TimesheetStatus.LEAD_REJECTED,
    TimesheetStatus.MANAGER_REJECTED,
})

# Statuses the rollup never changes
ROLLUP_FIXED_STATUSES = frozenset({
    TimesheetStatus.DRAFT,
    TimesheetStatus.FROZEN,
    TimesheetStatus.BILLED,
})


class ReviewStage(str, enum.Enum):
    LEAD = "lead"
    MANAGER = "manager"


class TimesheetEvent(str, enum.Enum):
    SUBMIT = "submit"
    FREEZE = "freeze"
    BILL = "bill"


TIMESHEET_TRANSITIONS = {
    TimesheetEvent.SUBMIT: (OWNER_EDITABLE_STATUSES, TimesheetStatus.SUBMITTED),
    TimesheetEvent.FREEZE: (frozenset({TimesheetStatus.MANAGER_APPROVED}), TimesheetStatus.FROZEN),
    TimesheetEvent.BILL: (
        frozenset({TimesheetStatus.MANAGER_APPROVED, TimesheetStatus.FROZEN}),
        TimesheetStatus.BILLED,
    ),
}


@dataclass(frozen=True)
class ProjectApprovalState:
    project_id: Any
    lead_id: Any
    lead_status: ApprovalStatus
    manager_id: Any
    manager_status: ApprovalStatus
    lead_rejection_reason: Optional[str] = None
    manager_rejection_reason: Optional[str] = None
    entries_count: int = 0
    total_hours: Decimal = Decimal("0")

    @classmethod
    def of(cls, approval: Any) -> "ProjectApprovalState":
        """Snapshot any object carrying the approval columns."""
        return cls(
            project_id=approval.project_id,
            lead_id=approval.lead_id,
            lead_status=ApprovalStatus(approval.lead_status),
            manager_id=approval.manager_id,
            manager_status=ApprovalStatus(approval.manager_status),
            lead_rejection_reason=approval.lead_rejection_reason,
            manager_rejection_reason=approval.manager_rejection_reason,
            entries_count=approval.entries_count or 0,
            total_hours=Decimal(str(approval.total_hours or 0)),
        )

    @property
    def is_rejected(self) -> bool:
        return ApprovalStatus.REJECTED in (self.lead_status, self.manager_status)


@dataclass(frozen=True)
class RollupResult:
    status: TimesheetStatus
    rejected_project_ids: FrozenSet[Any] = frozenset()
    pending_project_ids: FrozenSet[Any] = frozenset()


def initial_state(
    project_id: Any,
    lead_id: Any,
    manager_id: Any,
    entries_count: int = 0,
    total_hours: Decimal = Decimal("0"),
) -> ProjectApprovalState:
    """Fresh review chain for a project: lead pending only when the project has a lead."""
    return ProjectApprovalState(
        project_id=project_id,
        lead_id=lead_id,
        lead_status=ApprovalStatus.PENDING if lead_id else ApprovalStatus.NOT_REQUIRED,
        manager_id=manager_id,
        manager_status=ApprovalStatus.PENDING,
        entries_count=entries_count,
        total_hours=total_hours,
    )


def reopen(state: ProjectApprovalState) -> ProjectApprovalState:
    """Restart the review chain of a rejected project on resubmission."""
    if not state.is_rejected:
        return state
    return initial_state(
        state.project_id,
        state.lead_id,
        state.manager_id,
        entries_count=state.entries_count,
        total_hours=state.total_hours,
    )


def _require_lead_pending(state: ProjectApprovalState) -> None:
    if state.lead_status != ApprovalStatus.PENDING:
        raise InvalidTransitionError(
            f"Lead stage is {state.lead_status.value}, expected pending",
            {"project_id": str(state.project_id), "stage": ReviewStage.LEAD.value},
        )


def _require_manager_reviewable(state: ProjectApprovalState, allow_lead_bypass: bool) -> ProjectApprovalState:
    if state.manager_status != ApprovalStatus.PENDING:
        raise InvalidTransitionError(
            f"Manager stage is {state.manager_status.value}, expected pending",
            {"project_id": str(state.project_id), "stage": ReviewStage.MANAGER.value},
        )
    if state.lead_status in STAGE_DONE:
        return state
    if allow_lead_bypass and state.lead_status == ApprovalStatus.PENDING:
        return replace(state, lead_status=ApprovalStatus.NOT_REQUIRED)
    raise InvalidTransitionError(
        f"Manager review requires the lead stage to be complete (lead is {state.lead_status.value})",
        {"project_id": str(state.project_id), "stage": ReviewStage.MANAGER.value},
    )


def approve(
    state: ProjectApprovalState,
    stage: ReviewStage,
    auto_escalate: bool = False,
    allow_lead_bypass: bool = False,
) -> ProjectApprovalState:
    """Approve one review stage of a project."""
    stage = ReviewStage(stage)
    if state.entries_count <= 0:
        raise InvalidTransitionError(
            "Project has no entries to approve", {"project_id": str(state.project_id)}
        )
    if stage == ReviewStage.LEAD:
        _require_lead_pending(state)
        new_state = replace(state, lead_status=ApprovalStatus.APPROVED, lead_rejection_reason=None)
        if auto_escalate and new_state.manager_status == ApprovalStatus.PENDING:
            new_state = replace(
                new_state, manager_status=ApprovalStatus.APPROVED, manager_rejection_reason=None
            )
        return new_state

    state = _require_manager_reviewable(state, allow_lead_bypass)
    return replace(state, manager_status=ApprovalStatus.APPROVED, manager_rejection_reason=None)


def reject(
    state: ProjectApprovalState,
    stage: ReviewStage,
    reason: Optional[str],
    allow_lead_bypass: bool = False,
) -> ProjectApprovalState:
    """Reject one review stage of a project. A reason is mandatory."""
    stage = ReviewStage(stage)
    reason = (reason or "").strip()
    if not reason:
        raise WorkflowValidationError("Rejection reason is required")
    if state.entries_count <= 0:
        raise InvalidTransitionError(
            "Project has no entries to reject", {"project_id": str(state.project_id)}
        )
    if stage == ReviewStage.LEAD:
        _require_lead_pending(state)
        return replace(state, lead_status=ApprovalStatus.REJECTED, lead_rejection_reason=reason)

    state = _require_manager_reviewable(state, allow_lead_bypass)
    return replace(state, manager_status=ApprovalStatus.REJECTED, manager_rejection_reason=reason)


def compute_rollup(approvals: Iterable[Any], current_status: Any) -> RollupResult:
    """
    Aggregate project approval states into the timesheet status.

    Records without entries are ignored. Draft, frozen and billed timesheets
    keep their status; an empty set of counted records means nothing is left
    to review and rolls up to manager_approved.
    """
    current_status = TimesheetStatus(current_status)
    states = [
        a if isinstance(a, ProjectApprovalState) else ProjectApprovalState.of(a)
        for a in approvals
    ]
    counted = [s for s in states if s.entries_count > 0]

    rejected = frozenset(s.project_id for s in counted if s.is_rejected)
    pending = frozenset(
        s.project_id
        for s in counted
        if ApprovalStatus.PENDING in (s.lead_status, s.manager_status) and not s.is_rejected
    )

    if current_status in ROLLUP_FIXED_STATUSES:
        return RollupResult(current_status, rejected, pending)

    if any(s.manager_status == ApprovalStatus.REJECTED for s in counted):
        status = TimesheetStatus.MANAGER_REJECTED
    elif any(s.lead_status == ApprovalStatus.REJECTED for s in counted):
        status = TimesheetStatus.LEAD_REJECTED
    elif all(s.manager_status in STAGE_DONE for s in counted):
        status = TimesheetStatus.MANAGER_APPROVED
    elif all(s.lead_status in STAGE_DONE for s in counted) and any(
        s.lead_status == ApprovalStatus.APPROVED for s in counted
    ):
        status = TimesheetStatus.LEAD_APPROVED
    else:
        status = TimesheetStatus.SUBMITTED

    return RollupResult(status, rejected, pending)


def transition_timesheet(current_status: Any, event: TimesheetEvent) -> TimesheetStatus:
    """Timesheet-level transitions that are not derived from the rollup."""
    current_status = TimesheetStatus(current_status)
    allowed_from, target = TIMESHEET_TRANSITIONS[TimesheetEvent(event)]
    if current_status not in allowed_from:
        raise InvalidTransitionError(
            f"Cannot {TimesheetEvent(event).value} a timesheet in status {current_status.value}",
            {"status": current_status.value, "event": TimesheetEvent(event).value},
        )
    return target


def ensure_reviewable(current_status: Any) -> None:
    current_status = TimesheetStatus(current_status)
    if current_status not in REVIEWABLE_STATUSES:
        raise InvalidTransitionError(
            f"Timesheet in status {current_status.value} is not under review",
            {"status": current_status.value},
        )
