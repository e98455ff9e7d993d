"""
tests.test_session

Session Context and the access controller that tracks it.
"""

from __future__ import annotations

import asyncio

import pytest

from sitewatch.auth.models import Principal
from sitewatch.auth.permissions import role_permissions
from sitewatch.auth.session import AccessController, SessionContext
from sitewatch.auth.store import AccessRecord, PermissionStore
from sitewatch.db.models import Role
from sitewatch.errors import NotFound

ALICE = Principal(subject="alice", display_name="Alice")
BOB = Principal(subject="bob", display_name="Bob")


class GatedStore:
    """Stands in for the Permission Store; each load waits until released."""

    def __init__(self, roles: dict[str, Role]) -> None:
        self._roles = roles
        self._gates: dict[str, asyncio.Event] = {}
        self.invalidations: list[str | None] = []

    def release(self, user_id: str) -> None:
        self._gates.setdefault(user_id, asyncio.Event()).set()

    async def load(self, user_id: str) -> AccessRecord:
        await self._gates.setdefault(user_id, asyncio.Event()).wait()
        if user_id not in self._roles:
            raise NotFound("principal", user_id)
        role = self._roles[user_id]
        return AccessRecord(
            user_id=user_id,
            display_name=user_id,
            role=role,
            permissions=role_permissions(role),
            fetched_at=0.0,
        )

    def invalidate(self, user_id: str | None = None) -> None:
        self.invalidations.append(user_id)


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_session_notifies_only_on_change() -> None:
    session = SessionContext()
    seen: list[Principal | None] = []
    sub = session.subscribe(seen.append)

    session.sign_in(ALICE)
    session.sign_in(ALICE)
    session.sign_out()
    session.sign_out()
    assert seen == [ALICE, None]

    sub.cancel()
    sub.cancel()
    session.sign_in(BOB)
    assert seen == [ALICE, None]


@pytest.mark.asyncio
async def test_loading_then_loaded() -> None:
    store = GatedStore({"alice": Role.admin})
    session = SessionContext()
    ctl = AccessController(session=session, store=store)

    session.sign_in(ALICE)
    assert ctl.loading
    assert not ctl.snapshot.has_permission("dashboard:view")
    assert ctl.snapshot.require_permission("dashboard:view").pending

    store.release("alice")
    snap = await ctl.wait_ready()
    assert not snap.loading
    assert snap.is_admin
    assert snap.has_permission("users:manage")
    ctl.close()


@pytest.mark.asyncio
async def test_sign_out_clears_authorization() -> None:
    store = GatedStore({"alice": Role.admin})
    store.release("alice")
    session = SessionContext(ALICE)
    ctl = AccessController(session=session, store=store)
    assert (await ctl.wait_ready()).is_admin

    session.sign_out()
    snap = ctl.snapshot
    assert not snap.authenticated
    assert not snap.has_permission("dashboard:view")
    assert not snap.is_admin
    assert None in store.invalidations
    ctl.close()


@pytest.mark.asyncio
async def test_late_result_for_previous_principal_is_dropped() -> None:
    store = GatedStore({"alice": Role.admin, "bob": Role.standard_user})
    session = SessionContext()
    ctl = AccessController(session=session, store=store)

    session.sign_in(ALICE)
    session.sign_in(BOB)
    store.release("alice")
    await _settle()
    # Alice's admin rights must never show up under Bob.
    assert ctl.snapshot.principal == BOB
    assert ctl.loading
    assert not ctl.snapshot.is_admin

    store.release("bob")
    snap = await ctl.wait_ready()
    assert snap.principal == BOB
    assert snap.is_user
    assert not snap.has_permission("users:manage")
    ctl.close()


@pytest.mark.asyncio
async def test_unknown_principal_resolves_to_denied() -> None:
    store = GatedStore({})
    store.release("alice")
    session = SessionContext(ALICE)
    ctl = AccessController(session=session, store=store)

    snap = await ctl.wait_ready()
    assert snap.authenticated and not snap.loading
    assert not snap.has_permission("dashboard:view")
    assert isinstance(ctl.error, NotFound)
    ctl.close()


class BrokenStore(GatedStore):
    async def load(self, user_id: str) -> AccessRecord:
        raise RuntimeError("driver exploded")


@pytest.mark.asyncio
async def test_unexpected_store_error_resolves_to_denied() -> None:
    session = SessionContext(ALICE)
    ctl = AccessController(session=session, store=BrokenStore({}))

    snap = await ctl.wait_ready()
    assert snap.authenticated and not snap.loading
    assert not snap.has_permission("dashboard:view")
    assert snap.role is None
    assert isinstance(ctl.error, RuntimeError)
    ctl.close()


@pytest.mark.asyncio
async def test_refresh_picks_up_role_change(session_factory, settings, add_account) -> None:
    await add_account("alice", Role.standard_user)
    store = PermissionStore(session_factory=session_factory, settings=settings)
    session = SessionContext(ALICE)
    ctl = AccessController(session=session, store=store)
    assert (await ctl.wait_ready()).is_user

    await store.set_role("alice", Role.project_manager)
    snap = await ctl.refresh()
    assert snap.is_manager
    assert snap.has_permission("po:approve")
    ctl.close()
