"""
sitewatch.db.repositories.projects

Repository for `Project` and its tasks/expenses (read side for project metrics).
"""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.db.models import Project, ProjectExpense, ProjectTask


class ProjectRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, project_id: str) -> Project | None:
        return await self._session.get(Project, project_id)

    async def tasks(self, project_id: str) -> list[ProjectTask]:
        stmt = select(ProjectTask).where(ProjectTask.project_id == project_id)
        return list((await self._session.execute(stmt)).scalars().all())

    async def total_expenses(self, project_id: str) -> float:
        stmt = select(func.coalesce(func.sum(ProjectExpense.amount), 0.0)).where(
            ProjectExpense.project_id == project_id
        )
        return float((await self._session.execute(stmt)).scalar_one())
