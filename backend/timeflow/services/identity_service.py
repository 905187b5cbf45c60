"""
Identity and role lookups used by the approval workflow.
"""

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from timeflow.core.exceptions import NotFoundError
from timeflow.db.repositories.user_repository import UserRepository
from timeflow.db.repositories.project_approval_repository import ProjectApprovalRepository
from timeflow.models.project_approval import ApprovalStatus
from timeflow.models.user import User
from timeflow.schemas.timesheet import PendingReviewResponse
from timeflow.services.base_service import BaseService
from timeflow.workflow.approval_state_machine import ReviewStage


class IdentityService(BaseService):
    """Resolves users, their roles and the reviews they owe."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.user_repo = UserRepository(session)
        self.approval_repo = ProjectApprovalRepository(session)

    async def get_user(self, user_id: UUID) -> Optional[User]:
        return await self.user_repo.get(user_id)

    async def require_user(self, user_id: UUID) -> User:
        user = await self.user_repo.get(user_id)
        if not user:
            raise NotFoundError("User not found", {"user_id": str(user_id)})
        return user

    @staticmethod
    def has_role(user: User, roles: Iterable[str]) -> bool:
        return user.role.value in set(roles)

    async def list_pending_reviews(self, reviewer_id: UUID) -> List[PendingReviewResponse]:
        """Reviews the user still has to complete on other users' timesheets."""
        approvals = await self.approval_repo.list_pending_for_reviewer(reviewer_id)
        reviews = []
        for approval in approvals:
            owner = approval.timesheet.user
            if approval.lead_id == reviewer_id and approval.lead_status == ApprovalStatus.PENDING:
                stage = ReviewStage.LEAD
            else:
                stage = ReviewStage.MANAGER
            reviews.append(
                PendingReviewResponse(
                    timesheet_id=approval.timesheet_id,
                    week_start_date=approval.timesheet.week_start_date,
                    project_id=approval.project_id,
                    project_name=approval.project.name,
                    employee_id=owner.id,
                    employee_name=owner.full_name,
                    stage=stage.value,
                )
            )
        return reviews
