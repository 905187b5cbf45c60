"""
Approval history repository. Records are append-only.
"""

from typing import List
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from timeflow.db.repositories.base_repository import BaseRepository
from timeflow.models.project_approval import ApprovalHistory


class ApprovalHistoryRepository(BaseRepository[ApprovalHistory]):
    """Repository for the approval audit trail."""

    def __init__(self, session: AsyncSession):
        super().__init__(ApprovalHistory, session)

    async def list_by_timesheet(self, timesheet_id: UUID) -> List[ApprovalHistory]:
        """History of one timesheet, newest first."""
        result = await self.session.execute(
            select(ApprovalHistory)
            .options(
                selectinload(ApprovalHistory.approver),
                selectinload(ApprovalHistory.project),
            )
            .where(ApprovalHistory.timesheet_id == timesheet_id)
            .order_by(ApprovalHistory.created_at.desc())
        )
        return list(result.scalars().all())
