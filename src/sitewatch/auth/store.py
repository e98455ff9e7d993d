"""
sitewatch.auth.store

Permission Store: resolves a principal's role and effective permission set.

Responsibilities:
- Point/bulk reads of role + permissions (role bundle plus explicit grants).
- A single-slot cache keyed to the user id, expiring after a TTL so external
  role changes are picked up.
- Administrative role changes and explicit grants/revokes.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.auth.permissions import canonical_permission, role_permissions
from sitewatch.db.models import Role
from sitewatch.db.repositories.access import AccountRepo, GrantRepo
from sitewatch.db.session import run_read, run_write
from sitewatch.errors import NotFound, ValidationFailure
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings

log = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class AccessRecord:
    user_id: str
    display_name: str
    role: Role
    permissions: frozenset[str]
    fetched_at: float


class PermissionStore:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._clock = clock
        self._cached: AccessRecord | None = None
        self._lock = asyncio.Lock()

    async def get_permissions(self, user_id: str) -> frozenset[str]:
        return (await self.load(user_id)).permissions

    async def get_role(self, user_id: str) -> Role:
        return (await self.load(user_id)).role

    async def load(self, user_id: str) -> AccessRecord:
        async with self._lock:
            cached = self._cached
            if cached is not None and cached.user_id == user_id and self._fresh(cached):
                return cached
            # Different user or expired entry: never serve another user's record.
            self._cached = None
            record = await self._fetch(user_id)
            self._cached = record
            return record

    def invalidate(self, user_id: str | None = None) -> None:
        if user_id is None or (self._cached is not None and self._cached.user_id == user_id):
            self._cached = None

    async def set_role(self, user_id: str, role: Role) -> Role:
        async def work(session: AsyncSession) -> Role:
            acct = await AccountRepo(session).set_role(user_id, role)
            if acct is None:
                raise NotFound("principal", user_id)
            return acct.role

        result = await run_write(
            self._session_factory, work, operation="set_role", settings=self._settings
        )
        self.invalidate(user_id)
        log.info("role_changed", user_id=user_id, role=str(result))
        return result

    async def grant(self, user_id: str, permission: str, *, granted_by: str | None) -> bool:
        canonical = _validated(permission)

        async def work(session: AsyncSession) -> bool:
            if await AccountRepo(session).get(user_id) is None:
                raise NotFound("principal", user_id)
            return await GrantRepo(session).add(
                user_id=user_id, permission=canonical, granted_by=granted_by
            )

        added = await run_write(
            self._session_factory, work, operation="grant_permission", settings=self._settings
        )
        self.invalidate(user_id)
        log.info("permission_granted", user_id=user_id, permission=canonical, added=added)
        return added

    async def revoke(self, user_id: str, permission: str) -> bool:
        canonical = _validated(permission)

        async def work(session: AsyncSession) -> bool:
            if await AccountRepo(session).get(user_id) is None:
                raise NotFound("principal", user_id)
            return await GrantRepo(session).remove(user_id=user_id, permission=canonical)

        removed = await run_write(
            self._session_factory, work, operation="revoke_permission", settings=self._settings
        )
        self.invalidate(user_id)
        log.info("permission_revoked", user_id=user_id, permission=canonical, removed=removed)
        return removed

    def _fresh(self, record: AccessRecord) -> bool:
        return self._clock() - record.fetched_at < self._settings.permission_cache_ttl_seconds

    async def _fetch(self, user_id: str) -> AccessRecord:
        async def work(session: AsyncSession) -> AccessRecord:
            acct = await AccountRepo(session).get(user_id)
            if acct is None:
                raise NotFound("principal", user_id)
            grants = await GrantRepo(session).list_for_user(user_id)
            return AccessRecord(
                user_id=user_id,
                display_name=acct.display_name,
                role=acct.role,
                permissions=role_permissions(acct.role) | _canonical_grants(user_id, grants),
                fetched_at=self._clock(),
            )

        return await run_read(self._session_factory, work, operation="load_permissions")


def _validated(permission: str) -> str:
    try:
        return canonical_permission(permission)
    except ValueError as e:
        raise ValidationFailure([str(e)]) from e


def _canonical_grants(user_id: str, grants: list[str]) -> frozenset[str]:
    out: set[str] = set()
    for raw in grants:
        try:
            out.add(canonical_permission(raw))
        except ValueError:
            log.warning("malformed_grant_skipped", user_id=user_id, permission=raw)
    return frozenset(out)
