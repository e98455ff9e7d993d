"""
sitewatch.db.repositories.telemetry

Repositories for telemetry entities.

Responsibilities:
- Append error logs, user activities, performance records and admin notifications.
- Query recent/ranged telemetry for live feeds and dashboard rollups.
- Apply the single permitted ErrorLog mutation (resolve).
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.db.models import (
    ErrorLogEntry,
    Notification,
    PerformanceRecord,
    Severity,
    UserActivityRecord,
    utcnow,
)


class ErrorLogRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, **fields: Any) -> ErrorLogEntry:
        entry = ErrorLogEntry(resolved=False, **fields)
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get(self, error_id: uuid.UUID) -> ErrorLogEntry | None:
        return await self._session.get(ErrorLogEntry, error_id)

    async def mark_resolved(self, error_id: uuid.UUID, *, resolved_by: str) -> bool | None:
        """
        Flip `resolved` once. Returns True if this call resolved the entry, False if
        it was already resolved, None if no such entry exists.
        """

        stmt = (
            update(ErrorLogEntry)
            .where(ErrorLogEntry.id == error_id, ErrorLogEntry.resolved.is_(False))
            .values(resolved=True, resolved_by=resolved_by, resolved_at=utcnow())
        )
        result = await self._session.execute(stmt)
        if result.rowcount:
            return True
        exists = await self._session.execute(
            select(ErrorLogEntry.id).where(ErrorLogEntry.id == error_id)
        )
        return False if exists.scalar_one_or_none() is not None else None

    async def recent_unresolved(self, *, limit: int) -> list[ErrorLogEntry]:
        stmt = (
            select(ErrorLogEntry)
            .where(ErrorLogEntry.resolved.is_(False))
            .order_by(desc(ErrorLogEntry.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def in_range(self, start: datetime, end: datetime) -> list[ErrorLogEntry]:
        stmt = (
            select(ErrorLogEntry)
            .where(ErrorLogEntry.created_at >= start, ErrorLogEntry.created_at <= end)
            .order_by(desc(ErrorLogEntry.created_at))
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def count(self) -> int:
        stmt = select(func.count()).select_from(ErrorLogEntry)
        return int((await self._session.execute(stmt)).scalar_one())

    async def count_since(self, since: datetime) -> int:
        stmt = select(func.count()).where(ErrorLogEntry.created_at >= since)
        return int((await self._session.execute(stmt)).scalar_one())


class ActivityRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, **fields: Any) -> UserActivityRecord:
        # Activity records are append-only.
        rec = UserActivityRecord(**fields)
        self._session.add(rec)
        await self._session.flush()
        return rec

    async def in_range(
        self, start: datetime, end: datetime, *, limit: int
    ) -> list[UserActivityRecord]:
        stmt = (
            select(UserActivityRecord)
            .where(UserActivityRecord.created_at >= start, UserActivityRecord.created_at <= end)
            .order_by(desc(UserActivityRecord.created_at))
            .limit(limit)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def last_for_resource(self, resource_id: str) -> datetime | None:
        stmt = select(func.max(UserActivityRecord.created_at)).where(
            UserActivityRecord.resource_id == resource_id
        )
        return (await self._session.execute(stmt)).scalar_one_or_none()

    async def distinct_users_since(self, since: datetime) -> int:
        stmt = select(func.count(func.distinct(UserActivityRecord.user_id))).where(
            UserActivityRecord.created_at >= since
        )
        return int((await self._session.execute(stmt)).scalar_one())


class PerformanceRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, **fields: Any) -> PerformanceRecord:
        rec = PerformanceRecord(**fields)
        self._session.add(rec)
        await self._session.flush()
        return rec

    async def for_metric(self, metric_name: str) -> list[PerformanceRecord]:
        stmt = (
            select(PerformanceRecord)
            .where(PerformanceRecord.metric_name == metric_name)
            .order_by(PerformanceRecord.recorded_at)
        )
        return list((await self._session.execute(stmt)).scalars().all())

    async def average_since(self, metric_name: str, since: datetime) -> float | None:
        stmt = select(func.avg(PerformanceRecord.value)).where(
            PerformanceRecord.metric_name == metric_name,
            PerformanceRecord.recorded_at >= since,
        )
        value = (await self._session.execute(stmt)).scalar_one_or_none()
        return float(value) if value is not None else None


class NotificationRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add_critical_error_alert(self, *, error_id: uuid.UUID, message: str) -> Notification:
        note = Notification(
            type="critical_error",
            title="Critical Error Detected",
            message=message,
            error_id=error_id,
            severity=Severity.critical,
            read=False,
        )
        self._session.add(note)
        await self._session.flush()
        return note

    async def list_by_type(self, type: str) -> list[Notification]:
        stmt = select(Notification).where(Notification.type == type)
        return list((await self._session.execute(stmt)).scalars().all())
