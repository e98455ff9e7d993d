"""
sitewatch.db.repositories.system_metrics

Repository for `SystemMetricsSnapshot` entities.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.db.models import SystemMetricsSnapshot


class SystemMetricsRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, **fields: Any) -> SystemMetricsSnapshot:
        snap = SystemMetricsSnapshot(**fields)
        self._session.add(snap)
        await self._session.flush()
        return snap

    async def latest(self) -> SystemMetricsSnapshot | None:
        stmt = (
            select(SystemMetricsSnapshot)
            .order_by(desc(SystemMetricsSnapshot.created_at))
            .limit(1)
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def in_range(self, start: datetime, end: datetime) -> list[SystemMetricsSnapshot]:
        # Oldest-first: analytics consume this as a time series.
        stmt = (
            select(SystemMetricsSnapshot)
            .where(
                SystemMetricsSnapshot.created_at >= start,
                SystemMetricsSnapshot.created_at <= end,
            )
            .order_by(SystemMetricsSnapshot.created_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(SystemMetricsSnapshot)
        return int((await self._session.execute(stmt)).scalar_one())
