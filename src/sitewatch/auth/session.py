"""
sitewatch.auth.session

Session Context and the access controller that follows it.

Responsibilities:
- Hold the current principal and notify listeners when it changes.
- Keep an `AccessSnapshot` in step with the principal: reset to "loading" on an
  identifier change, to "signed out" on sign-out, and drop late results that
  belong to a previous principal.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from sitewatch.auth.evaluator import AccessSnapshot
from sitewatch.auth.models import Principal
from sitewatch.auth.store import PermissionStore
from sitewatch.errors import NotFound, UpstreamUnavailable
from sitewatch.feeds import Subscription
from sitewatch.observability.logging import get_logger

log = get_logger(__name__)

PrincipalListener = Callable[[Principal | None], None]


class SessionContext:
    def __init__(self, principal: Principal | None = None) -> None:
        self._principal = principal
        self._listeners: dict[int, PrincipalListener] = {}
        self._next_id = 0

    @property
    def principal(self) -> Principal | None:
        return self._principal

    def sign_in(self, principal: Principal) -> None:
        self._set(principal)

    def sign_out(self) -> None:
        self._set(None)

    def subscribe(self, listener: PrincipalListener) -> Subscription:
        key = self._next_id
        self._next_id += 1
        self._listeners[key] = listener
        return Subscription(lambda: self._listeners.pop(key, None))

    def _set(self, principal: Principal | None) -> None:
        if principal == self._principal:
            return
        self._principal = principal
        for listener in list(self._listeners.values()):
            listener(principal)


class AccessController:
    """
    Session-bound view of the caller's access.

    Must be created and driven from a running event loop: principal changes
    schedule the permission fetch as a task.
    """

    def __init__(self, *, session: SessionContext, store: PermissionStore) -> None:
        self._session = session
        self._store = store
        self._snapshot = AccessSnapshot.signed_out()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self.error: Exception | None = None
        self._subscription = session.subscribe(self._on_principal)
        if session.principal is not None:
            self._on_principal(session.principal)

    @property
    def snapshot(self) -> AccessSnapshot:
        return self._snapshot

    @property
    def loading(self) -> bool:
        return self._snapshot.loading

    async def wait_ready(self) -> AccessSnapshot:
        task = self._task
        if task is not None:
            # wait() does not raise when the load was cancelled by a sign-out.
            await asyncio.wait({task})
        return self._snapshot

    async def refresh(self) -> AccessSnapshot:
        """Re-fetch role and permissions for the current principal (e.g. after a role change)."""

        principal = self._session.principal
        if principal is None:
            return self._snapshot
        self._store.invalidate(principal.subject)
        self._start_load(principal, keep_current=True)
        return await self.wait_ready()

    def close(self) -> None:
        self._subscription.cancel()
        self._cancel_load()

    def _on_principal(self, principal: Principal | None) -> None:
        current = self._snapshot.principal
        if principal is None:
            self._cancel_load()
            self._store.invalidate()
            self._snapshot = AccessSnapshot.signed_out()
            self.error = None
            return
        if current is not None and current.subject == principal.subject:
            self._snapshot = AccessSnapshot(
                principal=principal,
                role=self._snapshot.role,
                permissions=self._snapshot.permissions,
                loading=self._snapshot.loading,
            )
            return
        self._store.invalidate()
        self._start_load(principal, keep_current=False)

    def _start_load(self, principal: Principal, *, keep_current: bool) -> None:
        self._cancel_load()
        self._generation += 1
        if not keep_current:
            self._snapshot = AccessSnapshot.pending(principal)
        self._task = asyncio.get_running_loop().create_task(
            self._load(self._generation, principal)
        )

    def _cancel_load(self) -> None:
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _load(self, generation: int, principal: Principal) -> None:
        try:
            record = await self._store.load(principal.subject)
        except (NotFound, UpstreamUnavailable) as e:
            if generation == self._generation:
                log.warning("access_load_failed", user_id=principal.subject, error=str(e))
                self._snapshot = AccessSnapshot.unresolved(principal)
                self.error = e
            return
        except Exception as e:
            if generation == self._generation:
                log.exception("access_load_crashed", user_id=principal.subject)
                self._snapshot = AccessSnapshot.unresolved(principal)
                self.error = e
            return
        if generation == self._generation:
            self._snapshot = AccessSnapshot.from_record(principal, record)
            self.error = None
