"""
sitewatch.monitoring.poller

Health polling state machine.

States: idle -> checking -> {healthy | warning | critical} -> checking -> ...

A check always settles on a verdict state. When the underlying read fails or runs
past `timeout_seconds` the previous verdict is kept and the failure is exposed
through `error`; a failure before any verdict exists settles on critical.
"""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Awaitable, Callable
from datetime import datetime

from pydantic import BaseModel

from sitewatch.errors import SitewatchError
from sitewatch.monitoring.health import HealthVerdict
from sitewatch.observability.logging import get_logger

log = get_logger(__name__)


class PollState(enum.StrEnum):
    idle = "idle"
    checking = "checking"
    healthy = "healthy"
    warning = "warning"
    critical = "critical"


class PollerSnapshot(BaseModel):
    state: PollState
    verdict: HealthVerdict | None = None
    error: str | None = None
    loading: bool
    running: bool
    interval_seconds: float
    last_check: datetime | None = None


class HealthPoller:
    def __init__(
        self,
        *,
        check: Callable[[], Awaitable[HealthVerdict]],
        interval_seconds: float,
        timeout_seconds: float | None = None,
    ) -> None:
        self._check = check
        self._interval = interval_seconds
        self._timeout = timeout_seconds
        self._state = PollState.idle
        self._settled = PollState.idle
        self._verdict: HealthVerdict | None = None
        self.error: str | None = None
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def verdict(self) -> HealthVerdict | None:
        return self._verdict

    @property
    def loading(self) -> bool:
        return self._state == PollState.checking

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def snapshot(self) -> PollerSnapshot:
        return PollerSnapshot(
            state=self._state,
            verdict=self._verdict,
            error=self.error,
            loading=self.loading,
            running=self.running,
            interval_seconds=self._interval,
            last_check=self._verdict.last_check if self._verdict else None,
        )

    async def check_now(self) -> PollState:
        async with self._lock:
            self._state = PollState.checking
            try:
                async with asyncio.timeout(self._timeout):
                    verdict = await self._check()
            except asyncio.CancelledError:
                # A cancelled check leaves the last settled state in place.
                self._state = self._settled
                raise
            except TimeoutError:
                self._fail(f"health check timed out after {self._timeout:g}s")
            except SitewatchError as e:
                self._fail(str(e))
            except Exception as e:
                log.exception("health_check_crashed")
                self._fail(type(e).__name__)
            else:
                self._verdict = verdict
                self.error = None
                self._settle(PollState(verdict.status))
            return self._state

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="health-poller")
        log.info("health_poller_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.wait({task})
        log.info("health_poller_stopped", state=str(self._state))

    async def _run(self) -> None:
        while True:
            await self.check_now()
            await asyncio.sleep(self._interval)

    def _fail(self, error: str) -> None:
        log.warning("health_check_failed", error=error)
        self.error = error
        if self._verdict is not None:
            self._settle(PollState(self._verdict.status))
        else:
            self._settle(PollState.critical)

    def _settle(self, state: PollState) -> None:
        if state != self._settled:
            log.info("health_state_changed", previous=str(self._settled), state=str(state))
        self._settled = state
        self._state = state
