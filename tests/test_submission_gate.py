"""
Submission gate tests: eligibility, validation and the submit transition.
"""

from datetime import date

import pytest

from timeflow.controllers.timesheet_controller import TimesheetController
from timeflow.core.exceptions import (
    ConflictError,
    EligibilityError,
    InvalidTransitionError,
    MissingApproverError,
    PermissionDeniedError,
    SubmissionValidationError,
    WorkflowValidationError,
)
from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.timesheet import TimesheetStatus
from timeflow.schemas.timesheet import SaveEntriesRequest

from tests.factories import (
    SATURDAY,
    WEEK,
    create_project,
    create_user,
    full_week,
    project_entry,
    submit_week,
)


@pytest.fixture
def controller(test_db_session):
    return TimesheetController(test_db_session)


async def test_full_week_submits_cleanly(controller, employee, project, lead):
    sheet = await controller.get_or_create_timesheet(employee, WEEK)
    assert sheet.status == TimesheetStatus.DRAFT
    assert sheet.mode == "create"

    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=full_week(project)))
    submitted = await controller.submit_timesheet(sheet.id, employee, sheet.version)

    assert submitted.status == TimesheetStatus.SUBMITTED
    assert submitted.submitted_at is not None
    assert submitted.validation.blocking_errors == []
    assert submitted.validation.warnings == []
    assert submitted.mode == "view"
    assert len(submitted.project_approvals) == 1
    approval = submitted.project_approvals[0]
    assert approval.lead_id == lead.id
    assert approval.lead_status == ApprovalStatus.PENDING
    assert approval.manager_status == ApprovalStatus.PENDING
    assert approval.entries_count == 5


async def test_lead_with_outstanding_reviews_cannot_submit(controller, test_db_session, lead, project):
    for name in ("Ada Analyst", "Ben Builder"):
        user = await create_user(test_db_session, name)
        await submit_week(controller, user, full_week(project))

    own = await controller.get_or_create_timesheet(lead, WEEK)
    eligibility = await controller.can_submit(own.id, lead)

    assert eligibility.allowed is False
    assert len(eligibility.pending_reviews) == 2
    assert "2 pending reviews" in eligibility.reason
    assert {review.employee_name for review in eligibility.pending_reviews} == {"Ada Analyst", "Ben Builder"}
    assert all(review.stage == "lead" for review in eligibility.pending_reviews)

    with pytest.raises(EligibilityError) as exc_info:
        await controller.submit_timesheet(own.id, lead)
    assert len(exc_info.value.pending_reviews) == 2


async def test_lead_without_outstanding_reviews_can_submit(controller, lead, project):
    own = await controller.get_or_create_timesheet(lead, WEEK)

    assert (await controller.can_submit(own.id, lead)).allowed is True


async def test_weekend_entries_are_stored_non_billable(controller, employee, project):
    entries = full_week(project) + [project_entry(project, SATURDAY, 2, is_billable=True)]

    submitted = await submit_week(controller, employee, entries)

    assert submitted.status == TimesheetStatus.SUBMITTED
    saturday = [e for e in submitted.entries if e.date == SATURDAY]
    assert len(saturday) == 1
    assert saturday[0].is_billable is False
    assert all(e.is_billable for e in submitted.entries if e.date != SATURDAY)


async def test_short_day_blocks_submission(controller, employee, project):
    entries = full_week(project)
    entries[0] = project_entry(project, WEEK, "7.5")
    sheet = await controller.get_or_create_timesheet(employee, WEEK)
    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=entries))

    with pytest.raises(SubmissionValidationError) as exc_info:
        await controller.submit_timesheet(sheet.id, employee)

    assert exc_info.value.blocking_errors == [
        "2024-01-08 (Monday): Minimum 8 hours required for weekday (current: 7.5h)"
    ]
    reloaded = await controller.get_timesheet(sheet.id, employee)
    assert reloaded.status == TimesheetStatus.DRAFT
    assert reloaded.version == sheet.version


async def test_empty_timesheet_is_blocked(controller, employee):
    sheet = await controller.get_or_create_timesheet(employee, WEEK)

    with pytest.raises(SubmissionValidationError) as exc_info:
        await controller.submit_timesheet(sheet.id, employee)

    assert exc_info.value.blocking_errors[0] == "Timesheet has no entries"


async def test_stale_version_is_a_conflict(controller, employee, project):
    sheet = await controller.get_or_create_timesheet(employee, WEEK)
    stale_version = sheet.version
    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=full_week(project)))
    assert sheet.version > stale_version

    with pytest.raises(ConflictError):
        await controller.submit_timesheet(sheet.id, employee, stale_version)


async def test_only_owner_can_submit(controller, employee, manager, project):
    sheet = await controller.get_or_create_timesheet(employee, WEEK)
    sheet = await controller.save_entries(sheet.id, employee, SaveEntriesRequest(entries=full_week(project)))

    with pytest.raises(PermissionDeniedError):
        await controller.submit_timesheet(sheet.id, manager)

    refusal = await controller.can_submit(sheet.id, manager)
    assert refusal.allowed is False


async def test_project_without_manager_cannot_be_submitted(controller, test_db_session, employee, lead):
    orphan = await create_project(test_db_session, "Orphan", lead=lead)

    with pytest.raises(MissingApproverError):
        await submit_week(controller, employee, full_week(orphan))


async def test_reopened_chain_needs_a_current_manager(controller, test_db_session, employee, lead, manager, project):
    sheet = await submit_week(controller, employee, full_week(project))
    await controller.approve_project(sheet.id, project.id, lead)
    await controller.reject_project(sheet.id, project.id, manager, "Over budget")
    project.manager_id = None
    await test_db_session.commit()

    rejected = await controller.get_timesheet(sheet.id, employee)
    assert rejected.status == TimesheetStatus.MANAGER_REJECTED
    with pytest.raises(MissingApproverError):
        await controller.submit_timesheet(rejected.id, employee, rejected.version)

    unchanged = await controller.get_timesheet(sheet.id, employee)
    assert unchanged.status == TimesheetStatus.MANAGER_REJECTED


async def test_week_must_start_on_monday(controller, employee):
    with pytest.raises(WorkflowValidationError):
        await controller.get_or_create_timesheet(employee, date(2024, 1, 10))


async def test_submitted_timesheet_cannot_be_resubmitted(controller, employee, project):
    submitted = await submit_week(controller, employee, full_week(project))

    with pytest.raises(InvalidTransitionError):
        await controller.submit_timesheet(submitted.id, employee)


async def test_submission_is_recorded_in_history(controller, employee, project):
    submitted = await submit_week(controller, employee, full_week(project))

    history = await controller.get_history(submitted.id, employee)

    assert len(history) == 1
    assert history[0].action == "submitted"
    assert history[0].status_before == TimesheetStatus.DRAFT
    assert history[0].status_after == TimesheetStatus.SUBMITTED
    assert history[0].approver_role == "employee"
