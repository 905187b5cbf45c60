"""
Project approval repository.
"""

from typing import List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, and_, or_
from sqlalchemy.orm import selectinload

from timeflow.db.repositories.base_repository import BaseRepository
from timeflow.models.project_approval import ProjectApproval, ApprovalStatus
from timeflow.models.timesheet import Timesheet
from timeflow.models.user import User
from timeflow.workflow.approval_state_machine import REVIEWABLE_STATUSES


class ProjectApprovalRepository(BaseRepository[ProjectApproval]):
    """Repository for per-project approval records."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProjectApproval, session)

    async def list_pending_for_reviewer(self, reviewer_id: UUID) -> List[ProjectApproval]:
        """
        Approval records waiting on a reviewer in other users' timesheets.

        A lead stage is waiting when it is pending; a manager stage only once
        the lead stage is approved or not required.
        """
        lead_pending = and_(
            ProjectApproval.lead_id == reviewer_id,
            ProjectApproval.lead_status == ApprovalStatus.PENDING,
        )
        manager_pending = and_(
            ProjectApproval.manager_id == reviewer_id,
            ProjectApproval.manager_status == ApprovalStatus.PENDING,
            ProjectApproval.lead_status.in_([ApprovalStatus.APPROVED, ApprovalStatus.NOT_REQUIRED]),
        )
        result = await self.session.execute(
            select(ProjectApproval)
            .join(Timesheet, ProjectApproval.timesheet_id == Timesheet.id)
            .join(User, Timesheet.user_id == User.id)
            .options(
                selectinload(ProjectApproval.project),
                selectinload(ProjectApproval.timesheet).selectinload(Timesheet.user),
            )
            .where(
                Timesheet.user_id != reviewer_id,
                Timesheet.status.in_(list(REVIEWABLE_STATUSES)),
                ProjectApproval.entries_count > 0,
                or_(lead_pending, manager_pending),
            )
            .order_by(Timesheet.week_start_date, User.full_name)
        )
        return list(result.scalars().all())
