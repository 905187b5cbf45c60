"""
Timesheet repository for database operations.
"""

from typing import Optional
from uuid import UUID
from datetime import date
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.orm import selectinload

from timeflow.db.repositories.base_repository import BaseRepository
from timeflow.models.timesheet import Timesheet, TimeEntry, TimesheetStatus
from timeflow.models.project_approval import ProjectApproval


def _with_aggregate(query):
    """Eager-load the whole timesheet aggregate, overwriting stale identity-map state."""
    return query.options(
        selectinload(Timesheet.user),
        selectinload(Timesheet.entries).selectinload(TimeEntry.project),
        selectinload(Timesheet.project_approvals).selectinload(ProjectApproval.project),
    ).execution_options(populate_existing=True)


class TimesheetRepository(BaseRepository[Timesheet]):
    """Repository for timesheet operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Timesheet, session)

    async def get(self, id: UUID) -> Optional[Timesheet]:
        """Get timesheet by ID with entries and project approvals."""
        result = await self.session.execute(
            _with_aggregate(select(Timesheet).where(Timesheet.id == id))
        )
        return result.scalar_one_or_none()

    async def get_by_user_and_week(
        self,
        user_id: UUID,
        week_start_date: date,
    ) -> Optional[Timesheet]:
        """Get timesheet by owner and week."""
        result = await self.session.execute(
            _with_aggregate(
                select(Timesheet).where(
                    Timesheet.user_id == user_id,
                    Timesheet.week_start_date == week_start_date,
                )
            )
        )
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> Timesheet:
        """Create a new draft timesheet."""
        kwargs.setdefault("status", TimesheetStatus.DRAFT)
        return await super().create(**kwargs)
