"""
Per-project approval, rejection and finance transition tests.
"""

import pytest

from timeflow.controllers.timesheet_controller import TimesheetController
from timeflow.core.exceptions import (
    EntryLockedError,
    InvalidTransitionError,
    PermissionDeniedError,
    WorkflowValidationError,
)
from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.timesheet import TimesheetStatus
from timeflow.schemas.timesheet import SaveEntriesRequest
from timeflow.services.notification_service import NotificationService

from tests.factories import (
    WEEK,
    WEEKDAYS,
    as_input,
    create_project,
    create_user,
    full_week,
    project_entry,
    submit_week,
)


class FailingNotificationService(NotificationService):
    def __init__(self):
        self.attempts = 0

    async def deliver(self, event):
        self.attempts += 1
        raise RuntimeError("mail relay down")


@pytest.fixture
def controller(test_db_session):
    return TimesheetController(test_db_session)


@pytest.fixture
async def three_projects(test_db_session, lead, manager):
    return [
        await create_project(test_db_session, name, lead=lead, manager=manager)
        for name in ("Atlas", "Borealis", "Cygnus")
    ]


def split_week(projects) -> list:
    """Monday and Tuesday on A, Wednesday and Thursday on B, Friday on C."""
    a, b, c = projects
    days = [a, a, b, b, c]
    return [project_entry(project, day, 8) for project, day in zip(days, WEEKDAYS)]


def approval_of(sheet, project):
    return next(a for a in sheet.project_approvals if a.project_id == project.id)


async def partially_rejected(controller, employee, lead, projects):
    a, b, _ = projects
    sheet = await submit_week(controller, employee, split_week(projects))
    await controller.approve_project(sheet.id, a.id, lead)
    await controller.reject_project(sheet.id, b.id, lead, "Wrong task code")
    return await controller.get_timesheet(sheet.id, employee)


async def test_partial_rejection_unlocks_only_rejected_project(controller, employee, lead, three_projects):
    a, b, c = three_projects

    sheet = await partially_rejected(controller, employee, lead, three_projects)

    assert sheet.status == TimesheetStatus.LEAD_REJECTED
    assert sheet.mode == "edit"
    assert sheet.is_partial_rejection is True
    assert sheet.can_add_entry is False
    assert sheet.rejected_project_ids == [b.id]
    editable = {e.project_id for e in sheet.entries if e.is_editable}
    assert editable == {b.id}
    rejected_entries = [e for e in sheet.entries if e.project_id == b.id]
    assert all(e.rejection_reason == "Wrong task code" for e in rejected_entries)
    assert approval_of(sheet, b).lead_rejection_reason == "Wrong task code"


async def test_partial_rejection_refuses_new_entries(controller, employee, lead, three_projects):
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    entries = [as_input(e) for e in sheet.entries]
    entries.append(project_entry(three_projects[1], WEEKDAYS[2], 1))

    with pytest.raises(EntryLockedError):
        await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))


async def test_partial_rejection_refuses_changes_to_locked_entries(controller, employee, lead, three_projects):
    a = three_projects[0]
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    entries = [as_input(e) for e in sheet.entries]
    index = next(i for i, e in enumerate(sheet.entries) if e.project_id == a.id)
    entries[index] = entries[index].model_copy(update={"description": "Sneaky edit"})

    with pytest.raises(EntryLockedError):
        await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))


async def test_partial_rejection_refuses_removing_locked_entries(controller, employee, lead, three_projects):
    c = three_projects[2]
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    entries = [as_input(e) for e in sheet.entries if e.project_id != c.id]

    with pytest.raises(EntryLockedError):
        await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))


async def test_partial_rejection_keeps_an_entry_on_the_rejected_project(controller, employee, lead, three_projects):
    a, b, _ = three_projects
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    entries = [as_input(e) for e in sheet.entries if e.project_id != b.id]

    with pytest.raises(EntryLockedError):
        await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))

    reloaded = await controller.get_timesheet(sheet.id, employee)
    assert reloaded.is_partial_rejection is True
    assert reloaded.can_add_entry is False
    assert approval_of(reloaded, a).lead_status == ApprovalStatus.APPROVED
    assert len([e for e in reloaded.entries if e.project_id == b.id]) == 2


async def test_partial_rejection_allows_trimming_the_rejected_project(controller, employee, lead, three_projects):
    a, b, _ = three_projects
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    first_b = next(e.id for e in sheet.entries if e.project_id == b.id)
    entries = [as_input(e) for e in sheet.entries if e.project_id != b.id or e.id == first_b]

    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))

    assert sheet.is_partial_rejection is True
    assert approval_of(sheet, b).entries_count == 1
    assert approval_of(sheet, a).lead_status == ApprovalStatus.APPROVED
    assert {e.project_id for e in sheet.entries if e.is_editable} == {b.id}


async def test_fix_and_resubmit_rejected_project(controller, employee, lead, three_projects):
    a, b, c = three_projects
    sheet = await partially_rejected(controller, employee, lead, three_projects)
    entries = [as_input(e) for e in sheet.entries]
    for i, e in enumerate(sheet.entries):
        if e.project_id == b.id:
            entries[i] = entries[i].model_copy(update={"description": "Fixed task code"})

    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))
    assert sheet.status == TimesheetStatus.LEAD_REJECTED
    resubmitted = await controller.submit_timesheet(sheet.id, employee, sheet.version)

    assert resubmitted.status == TimesheetStatus.SUBMITTED
    assert approval_of(resubmitted, a).lead_status == ApprovalStatus.APPROVED
    assert approval_of(resubmitted, b).lead_status == ApprovalStatus.PENDING
    assert approval_of(resubmitted, b).lead_rejection_reason is None
    assert approval_of(resubmitted, c).lead_status == ApprovalStatus.PENDING
    assert all(e.rejection_reason is None for e in resubmitted.entries)

    history = await controller.get_history(resubmitted.id, employee)
    assert [h.action for h in history] == ["submitted", "rejected", "approved", "submitted"]
    assert history[1].reason == "Wrong task code"
    assert history[1].project_id == b.id
    assert history[1].approver_role == "lead"


async def test_full_chain_to_billed(controller, employee, lead, manager, project):
    sheet = await submit_week(controller, employee, full_week(project))

    sheet = await controller.approve_project(sheet.id, project.id, lead)
    assert sheet.status == TimesheetStatus.LEAD_APPROVED
    assert approval_of(sheet, project).lead_actioned_at is not None

    sheet = await controller.approve_project(sheet.id, project.id, manager, sheet.version)
    assert sheet.status == TimesheetStatus.MANAGER_APPROVED

    sheet = await controller.freeze_timesheet(sheet.id, manager)
    assert sheet.status == TimesheetStatus.FROZEN

    sheet = await controller.bill_timesheet(sheet.id, manager)
    assert sheet.status == TimesheetStatus.BILLED

    with pytest.raises(InvalidTransitionError):
        await controller.approve_project(sheet.id, project.id, lead)


async def test_manager_cannot_approve_before_lead(controller, employee, manager, project):
    sheet = await submit_week(controller, employee, full_week(project))

    with pytest.raises(InvalidTransitionError):
        await controller.approve_project(sheet.id, project.id, manager)


async def test_rejection_requires_reason(controller, employee, lead, project):
    sheet = await submit_week(controller, employee, full_week(project))

    with pytest.raises(WorkflowValidationError):
        await controller.reject_project(sheet.id, project.id, lead, "  ")


async def test_only_project_reviewers_can_act(controller, test_db_session, employee, project):
    outsider = await create_user(test_db_session, "Olive Outsider")
    sheet = await submit_week(controller, employee, full_week(project))

    with pytest.raises(PermissionDeniedError):
        await controller.approve_project(sheet.id, project.id, outsider)
    with pytest.raises(PermissionDeniedError):
        await controller.approve_project(sheet.id, project.id, employee)


async def test_employee_cannot_freeze(controller, employee, lead, manager, project):
    sheet = await submit_week(controller, employee, full_week(project))
    await controller.approve_project(sheet.id, project.id, lead)
    await controller.approve_project(sheet.id, project.id, manager)

    with pytest.raises(PermissionDeniedError):
        await controller.freeze_timesheet(sheet.id, employee)


async def test_auto_escalating_project(controller, test_db_session, employee, lead, manager):
    express = await create_project(test_db_session, "Express", lead=lead, manager=manager, auto_escalate=True)
    sheet = await submit_week(controller, employee, full_week(express))

    sheet = await controller.approve_project(sheet.id, express.id, lead)

    assert sheet.status == TimesheetStatus.MANAGER_APPROVED
    assert approval_of(sheet, express).manager_status == ApprovalStatus.APPROVED


async def test_project_without_lead_goes_to_manager(controller, test_db_session, employee, manager):
    direct = await create_project(test_db_session, "Direct", manager=manager)
    sheet = await submit_week(controller, employee, full_week(direct))
    assert approval_of(sheet, direct).lead_status == ApprovalStatus.NOT_REQUIRED

    sheet = await controller.approve_project(sheet.id, direct.id, manager)

    assert sheet.status == TimesheetStatus.MANAGER_APPROVED


async def test_notification_failure_does_not_undo_approval(test_db_session, employee, lead, project):
    sink = FailingNotificationService()
    controller = TimesheetController(test_db_session, notification_service=sink)
    sheet = await submit_week(controller, employee, full_week(project))

    sheet = await controller.approve_project(sheet.id, project.id, lead)

    assert sink.attempts == 2
    assert sheet.status == TimesheetStatus.LEAD_APPROVED
    reloaded = await controller.get_timesheet(sheet.id, employee)
    assert reloaded.status == TimesheetStatus.LEAD_APPROVED


async def test_pending_list_follows_the_chain(controller, employee, lead, manager, project):
    sheet = await submit_week(controller, employee, full_week(project))

    lead_queue = await controller.list_pending_approvals(lead)
    manager_queue = await controller.list_pending_approvals(manager)
    assert lead_queue.total == 1
    assert lead_queue.items[0].stage == "lead"
    assert lead_queue.items[0].employee_name == employee.full_name
    assert manager_queue.total == 0

    await controller.approve_project(sheet.id, project.id, lead)

    assert (await controller.list_pending_approvals(lead)).total == 0
    manager_queue = await controller.list_pending_approvals(manager)
    assert manager_queue.total == 1
    assert manager_queue.items[0].stage == "manager"
    assert manager_queue.items[0].project_name == "Apollo"


async def test_reviewer_sees_timesheet_read_only(controller, employee, lead, project):
    sheet = await submit_week(controller, employee, full_week(project))

    view = await controller.get_timesheet(sheet.id, lead, mode="edit")

    assert view.mode == "view"
    assert not any(e.is_editable for e in view.entries)


async def test_unrelated_user_cannot_view(controller, test_db_session, employee, project):
    outsider = await create_user(test_db_session, "Olive Outsider")
    sheet = await submit_week(controller, employee, full_week(project))

    with pytest.raises(PermissionDeniedError):
        await controller.get_timesheet(sheet.id, outsider)


async def test_week_is_reused(controller, employee):
    first = await controller.get_or_create_timesheet(employee, WEEK)
    second = await controller.get_or_create_timesheet(employee, WEEK)

    assert first.id == second.id
