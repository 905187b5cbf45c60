"""
Approval state machine tests.
"""

from decimal import Decimal
import uuid

import pytest

from timeflow.core.exceptions import InvalidTransitionError, WorkflowValidationError
from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.timesheet import TimesheetStatus
from timeflow.workflow import approval_state_machine as sm
from timeflow.workflow.approval_state_machine import ReviewStage, TimesheetEvent

LEAD_ID = uuid.uuid4()
MANAGER_ID = uuid.uuid4()


def chain(lead=True, entries=5) -> sm.ProjectApprovalState:
    return sm.initial_state(uuid.uuid4(), LEAD_ID if lead else None, MANAGER_ID, entries, Decimal("40"))


def test_initial_state_without_lead_skips_lead_stage():
    state = chain(lead=False)

    assert state.lead_status == ApprovalStatus.NOT_REQUIRED
    assert state.manager_status == ApprovalStatus.PENDING


def test_lead_then_manager_approval():
    state = sm.approve(chain(), ReviewStage.LEAD)
    assert state.lead_status == ApprovalStatus.APPROVED
    assert state.manager_status == ApprovalStatus.PENDING

    state = sm.approve(state, ReviewStage.MANAGER)
    assert state.manager_status == ApprovalStatus.APPROVED


def test_manager_cannot_act_before_lead():
    with pytest.raises(InvalidTransitionError):
        sm.approve(chain(), ReviewStage.MANAGER)
    with pytest.raises(InvalidTransitionError):
        sm.reject(chain(), ReviewStage.MANAGER, "Wrong codes")


def test_manager_bypass_marks_lead_not_required():
    state = sm.approve(chain(), ReviewStage.MANAGER, allow_lead_bypass=True)

    assert state.lead_status == ApprovalStatus.NOT_REQUIRED
    assert state.manager_status == ApprovalStatus.APPROVED


def test_bypass_does_not_override_a_lead_rejection():
    state = sm.reject(chain(), ReviewStage.LEAD, "Missing task")

    with pytest.raises(InvalidTransitionError):
        sm.approve(state, ReviewStage.MANAGER, allow_lead_bypass=True)


def test_manager_acts_directly_when_no_lead():
    state = sm.approve(chain(lead=False), ReviewStage.MANAGER)

    assert state.manager_status == ApprovalStatus.APPROVED


def test_auto_escalation_approves_both_stages():
    state = sm.approve(chain(), ReviewStage.LEAD, auto_escalate=True)

    assert state.lead_status == ApprovalStatus.APPROVED
    assert state.manager_status == ApprovalStatus.APPROVED


def test_rejection_requires_reason():
    with pytest.raises(WorkflowValidationError):
        sm.reject(chain(), ReviewStage.LEAD, "   ")
    with pytest.raises(WorkflowValidationError):
        sm.reject(chain(), ReviewStage.LEAD, None)


def test_rejection_keeps_reason_trimmed():
    state = sm.reject(chain(), ReviewStage.LEAD, "  Wrong project  ")

    assert state.lead_status == ApprovalStatus.REJECTED
    assert state.lead_rejection_reason == "Wrong project"
    assert state.is_rejected


def test_double_approval_is_rejected():
    state = sm.approve(chain(), ReviewStage.LEAD)

    with pytest.raises(InvalidTransitionError):
        sm.approve(state, ReviewStage.LEAD)


def test_project_without_entries_cannot_be_reviewed():
    with pytest.raises(InvalidTransitionError):
        sm.approve(chain(entries=0), ReviewStage.LEAD)


def test_reopen_restarts_the_chain():
    rejected = sm.reject(sm.approve(chain(), ReviewStage.LEAD), ReviewStage.MANAGER, "Over budget")

    reopened = sm.reopen(rejected)

    assert reopened.lead_status == ApprovalStatus.PENDING
    assert reopened.manager_status == ApprovalStatus.PENDING
    assert reopened.manager_rejection_reason is None
    assert reopened.entries_count == rejected.entries_count


def test_reopen_leaves_unrejected_state_alone():
    state = sm.approve(chain(), ReviewStage.LEAD)

    assert sm.reopen(state) is state


def test_rollup_manager_rejection_wins():
    approvals = [
        sm.reject(chain(), ReviewStage.LEAD, "Missing task"),
        sm.reject(sm.approve(chain(), ReviewStage.LEAD), ReviewStage.MANAGER, "Over budget"),
        chain(),
    ]

    result = sm.compute_rollup(approvals, TimesheetStatus.SUBMITTED)

    assert result.status == TimesheetStatus.MANAGER_REJECTED
    assert result.rejected_project_ids == {approvals[0].project_id, approvals[1].project_id}
    assert result.pending_project_ids == {approvals[2].project_id}


def test_rollup_lead_rejection():
    approvals = [sm.reject(chain(), ReviewStage.LEAD, "Missing task"), sm.approve(chain(), ReviewStage.LEAD)]

    assert sm.compute_rollup(approvals, TimesheetStatus.SUBMITTED).status == TimesheetStatus.LEAD_REJECTED


def test_rollup_lead_approved_needs_every_lead_stage_done():
    approved = sm.approve(chain(), ReviewStage.LEAD)

    assert sm.compute_rollup([approved, chain()], TimesheetStatus.SUBMITTED).status == TimesheetStatus.SUBMITTED
    assert (
        sm.compute_rollup([approved, chain(lead=False)], TimesheetStatus.SUBMITTED).status
        == TimesheetStatus.LEAD_APPROVED
    )


def test_rollup_all_leads_not_required_stays_submitted():
    result = sm.compute_rollup([chain(lead=False), chain(lead=False)], TimesheetStatus.SUBMITTED)

    assert result.status == TimesheetStatus.SUBMITTED


def test_rollup_manager_approved():
    approvals = [
        sm.approve(sm.approve(chain(), ReviewStage.LEAD), ReviewStage.MANAGER),
        sm.approve(chain(lead=False), ReviewStage.MANAGER),
    ]

    assert sm.compute_rollup(approvals, TimesheetStatus.LEAD_APPROVED).status == TimesheetStatus.MANAGER_APPROVED


def test_rollup_is_idempotent():
    approvals = [sm.reject(chain(), ReviewStage.LEAD, "Missing task"), chain()]

    first = sm.compute_rollup(approvals, TimesheetStatus.SUBMITTED)
    second = sm.compute_rollup(approvals, first.status)

    assert first == second


def test_rollup_ignores_records_without_entries():
    approvals = [
        sm.approve(chain(), ReviewStage.LEAD),
        sm.reject(chain(entries=0), ReviewStage.LEAD, "Stale"),
    ]

    assert sm.compute_rollup(approvals, TimesheetStatus.SUBMITTED).status == TimesheetStatus.LEAD_APPROVED


def test_rollup_with_nothing_to_review_is_manager_approved():
    assert sm.compute_rollup([], TimesheetStatus.SUBMITTED).status == TimesheetStatus.MANAGER_APPROVED
    assert (
        sm.compute_rollup([chain(entries=0)], TimesheetStatus.SUBMITTED).status
        == TimesheetStatus.MANAGER_APPROVED
    )


@pytest.mark.parametrize("status", [TimesheetStatus.DRAFT, TimesheetStatus.FROZEN, TimesheetStatus.BILLED])
def test_rollup_keeps_fixed_statuses(status):
    approvals = [sm.reject(chain(), ReviewStage.LEAD, "Missing task")]

    assert sm.compute_rollup(approvals, status).status == status


def test_timesheet_transitions():
    assert sm.transition_timesheet(TimesheetStatus.DRAFT, TimesheetEvent.SUBMIT) == TimesheetStatus.SUBMITTED
    assert (
        sm.transition_timesheet(TimesheetStatus.LEAD_REJECTED, TimesheetEvent.SUBMIT)
        == TimesheetStatus.SUBMITTED
    )
    assert (
        sm.transition_timesheet(TimesheetStatus.MANAGER_APPROVED, TimesheetEvent.FREEZE)
        == TimesheetStatus.FROZEN
    )
    assert sm.transition_timesheet(TimesheetStatus.FROZEN, TimesheetEvent.BILL) == TimesheetStatus.BILLED


@pytest.mark.parametrize(
    "status, event",
    [
        (TimesheetStatus.SUBMITTED, TimesheetEvent.SUBMIT),
        (TimesheetStatus.BILLED, TimesheetEvent.SUBMIT),
        (TimesheetStatus.LEAD_APPROVED, TimesheetEvent.FREEZE),
        (TimesheetStatus.DRAFT, TimesheetEvent.BILL),
        (TimesheetStatus.BILLED, TimesheetEvent.BILL),
    ],
)
def test_illegal_timesheet_transitions(status, event):
    with pytest.raises(InvalidTransitionError):
        sm.transition_timesheet(status, event)


def test_ensure_reviewable():
    sm.ensure_reviewable(TimesheetStatus.LEAD_REJECTED)

    with pytest.raises(InvalidTransitionError):
        sm.ensure_reviewable(TimesheetStatus.MANAGER_APPROVED)
