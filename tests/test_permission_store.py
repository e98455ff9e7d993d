"""
tests.test_permission_store

Permission Store reads, cache scoping and administration.
"""

from __future__ import annotations

import pytest

from sitewatch.auth.permissions import role_permissions
from sitewatch.auth.store import PermissionStore
from sitewatch.db.models import Role
from sitewatch.db.repositories.access import AccountRepo
from sitewatch.db.session import run_write
from sitewatch.errors import NotFound, ValidationFailure


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(session_factory, settings, clock) -> PermissionStore:
    return PermissionStore(session_factory=session_factory, settings=settings, clock=clock)


@pytest.mark.asyncio
async def test_unknown_principal_is_not_found(store: PermissionStore) -> None:
    with pytest.raises(NotFound):
        await store.get_permissions("ghost")
    with pytest.raises(NotFound):
        await store.get_role("ghost")


@pytest.mark.asyncio
async def test_role_and_bundle(store: PermissionStore, add_account) -> None:
    await add_account("maya", Role.project_manager)
    assert await store.get_role("maya") == Role.project_manager
    assert await store.get_permissions("maya") == role_permissions(Role.project_manager)


@pytest.mark.asyncio
async def test_grants_are_canonicalized(store: PermissionStore, add_account) -> None:
    await add_account("sam")
    assert await store.grant("sam", "edit_rab", granted_by="admin") is True
    # Same permission in canonical form is already present.
    assert await store.grant("sam", "rab:edit", granted_by="admin") is False
    assert "rab:edit" in await store.get_permissions("sam")

    assert await store.revoke("sam", "rab:edit") is True
    assert await store.revoke("sam", "edit_rab") is False
    assert "rab:edit" not in await store.get_permissions("sam")


@pytest.mark.asyncio
async def test_grant_validation(store: PermissionStore, add_account) -> None:
    await add_account("sam")
    with pytest.raises(ValidationFailure):
        await store.grant("sam", "rab:*", granted_by="admin")
    with pytest.raises(NotFound):
        await store.grant("ghost", "rab:edit", granted_by="admin")


@pytest.mark.asyncio
async def test_set_role(store: PermissionStore, add_account) -> None:
    await add_account("sam")
    assert await store.get_role("sam") == Role.standard_user
    assert await store.set_role("sam", Role.admin) == Role.admin
    assert await store.get_role("sam") == Role.admin
    with pytest.raises(NotFound):
        await store.set_role("ghost", Role.admin)


@pytest.mark.asyncio
async def test_cached_role_expires_after_ttl(
    store: PermissionStore, add_account, session_factory, settings, clock: FakeClock
) -> None:
    await add_account("sam")
    assert await store.get_role("sam") == Role.standard_user

    # A role change made elsewhere, bypassing this store's invalidation.
    async def promote(session) -> None:
        await AccountRepo(session).set_role("sam", Role.admin)

    await run_write(session_factory, promote, operation="promote", settings=settings)

    clock.now += settings.permission_cache_ttl_seconds - 1
    assert await store.get_role("sam") == Role.standard_user
    clock.now += 2
    assert await store.get_role("sam") == Role.admin


@pytest.mark.asyncio
async def test_cache_never_serves_another_user(store: PermissionStore, add_account) -> None:
    await add_account("alice", Role.admin)
    await add_account("bob", Role.standard_user)
    assert await store.get_role("alice") == Role.admin
    assert await store.get_role("bob") == Role.standard_user
    assert await store.get_role("alice") == Role.admin
