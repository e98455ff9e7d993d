"""
sitewatch.db.repositories.access

Repositories for `UserAccount` and `PermissionGrant`.

Responsibilities:
- Point reads of a principal's role record.
- Read and mutate explicit per-user permission grants.
"""

from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.db.models import PermissionGrant, Role, UserAccount, utcnow


class AccountRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: str) -> UserAccount | None:
        return await self._session.get(UserAccount, user_id)

    async def upsert(
        self, *, user_id: str, display_name: str, role: Role | None = None
    ) -> UserAccount:
        acct = await self._session.get(UserAccount, user_id)
        if acct is None:
            acct = UserAccount(
                id=user_id, display_name=display_name, role=role or Role.standard_user
            )
            self._session.add(acct)
        else:
            acct.display_name = display_name
            if role is not None:
                acct.role = role
            acct.updated_at = utcnow()
        await self._session.flush()
        return acct

    async def set_role(self, user_id: str, role: Role) -> UserAccount | None:
        acct = await self._session.get(UserAccount, user_id, with_for_update=True)
        if acct is None:
            return None
        acct.role = role
        acct.updated_at = utcnow()
        await self._session.flush()
        return acct


class GrantRepo:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_for_user(self, user_id: str) -> list[str]:
        stmt = select(PermissionGrant.permission).where(PermissionGrant.user_id == user_id)
        return list((await self._session.execute(stmt)).scalars().all())

    async def add(self, *, user_id: str, permission: str, granted_by: str | None) -> bool:
        stmt = select(PermissionGrant).where(
            PermissionGrant.user_id == user_id, PermissionGrant.permission == permission
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is not None:
            return False
        self._session.add(
            PermissionGrant(user_id=user_id, permission=permission, granted_by=granted_by)
        )
        await self._session.flush()
        return True

    async def remove(self, *, user_id: str, permission: str) -> bool:
        stmt = delete(PermissionGrant).where(
            PermissionGrant.user_id == user_id, PermissionGrant.permission == permission
        )
        result = await self._session.execute(stmt)
        return bool(result.rowcount)
