"""
Project repository for database operations.
"""

from typing import Dict, Iterable
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from timeflow.db.repositories.base_repository import BaseRepository
from timeflow.models.project import Project


class ProjectRepository(BaseRepository[Project]):
    """Repository for project operations."""

    def __init__(self, session: AsyncSession):
        super().__init__(Project, session)

    async def get_many(self, ids: Iterable[UUID]) -> Dict[UUID, Project]:
        """Projects keyed by id. Unknown ids are simply absent."""
        ids = list(set(ids))
        if not ids:
            return {}
        result = await self.session.execute(select(Project).where(Project.id.in_(ids)))
        return {project.id: project for project in result.scalars().all()}
