"""
sitewatch.telemetry.collector

Telemetry Collector: the write path for activity, error and performance records.

Responsibilities:
- Validate each record and write it in its own transaction (all or nothing).
- Raise a critical-error alert for admins alongside a critical ErrorLog.
- Time async units of work without altering their outcome (`measure`).
- Offer a fire-and-forget mode that logs failures locally instead of raising.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.auth.models import Principal
from sitewatch.db.models import Severity, utcnow
from sitewatch.db.repositories.telemetry import (
    ActivityRepo,
    ErrorLogRepo,
    NotificationRepo,
    PerformanceRepo,
)
from sitewatch.db.session import run_write
from sitewatch.errors import SitewatchError, ValidationFailure
from sitewatch.feeds import FeedHub
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings
from sitewatch.telemetry.schemas import (
    KNOWN_ACTIONS,
    ActivityInput,
    ErrorInput,
    PerformanceInput,
    parse_input,
)

log = get_logger(__name__)

T = TypeVar("T")


class TelemetryCollector:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        feeds: FeedHub,
        settings: Settings,
        timer: Callable[[], float] = time.perf_counter,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._feeds = feeds
        self._settings = settings
        self._timer = timer
        self._clock = clock
        self._pending: set[asyncio.Task[Any]] = set()

    async def log_user_activity(
        self,
        record: ActivityInput | Mapping[str, Any],
        *,
        principal: Principal | None = None,
    ) -> uuid.UUID | None:
        """
        Append one activity record. Returns None (and writes nothing) when no
        user id is available: anonymous activity is not tracked.
        """

        if isinstance(record, Mapping):
            user_id = record.get("user_id")
        else:
            user_id = getattr(record, "user_id", None)
        if not user_id and principal is None:
            log.debug("activity_skipped_anonymous")
            return None

        activity = self._validated(ActivityInput, record, kind="activity")
        user_id = activity.user_id or (principal.subject if principal else None)
        user_name = activity.user_name or (
            (principal.display_name or principal.subject) if principal else None
        )
        if not user_id:
            return None
        if not user_name:
            self._reject("activity", ["user_name: User name is required"])
        if activity.action.lower() not in KNOWN_ACTIONS:
            log.warning("activity_unknown_action", action=activity.action)

        async def work(session: AsyncSession) -> uuid.UUID:
            rec = await ActivityRepo(session).add(
                user_id=user_id,
                user_name=user_name,
                action=activity.action,
                resource=activity.resource,
                resource_id=activity.resource_id,
                duration_ms=activity.duration_ms,
                success=activity.success,
                details=activity.metadata,
                created_at=self._clock(),
            )
            return rec.id

        return await run_write(
            self._session_factory, work, operation="log_user_activity", settings=self._settings
        )

    async def log_error(
        self,
        record: ErrorInput | Mapping[str, Any],
        *,
        principal: Principal | None = None,
    ) -> uuid.UUID:
        err = self._validated(ErrorInput, record, kind="error")
        if err.severity == Severity.critical and not err.component:
            log.warning("critical_error_without_component", message=err.message)

        user_id = err.user_id or (principal.subject if principal else None)
        user_name = err.user_name or (
            (principal.display_name or principal.subject) if principal else None
        )

        async def work(session: AsyncSession) -> uuid.UUID:
            entry = await ErrorLogRepo(session).add(
                message=err.message,
                stack=err.stack,
                severity=err.severity,
                user_id=user_id,
                user_name=user_name,
                component=err.component,
                action=err.action,
                environment=self._settings.telemetry_environment,
                tags=err.tags,
                created_at=self._clock(),
            )
            if err.severity == Severity.critical:
                await NotificationRepo(session).add_critical_error_alert(
                    error_id=entry.id, message=err.message
                )
            return entry.id

        error_id = await run_write(
            self._session_factory, work, operation="log_error", settings=self._settings
        )
        log.info("error_logged", error_id=str(error_id), severity=str(err.severity))
        self._feeds.error_logs.publish(error_id)
        return error_id

    async def log_performance_metric(
        self, record: PerformanceInput | Mapping[str, Any]
    ) -> uuid.UUID:
        metric = self._validated(PerformanceInput, record, kind="performance")
        recorded_at = self._clock()

        async def work(session: AsyncSession) -> uuid.UUID:
            rec = await PerformanceRepo(session).add(
                metric_name=metric.metric_name,
                value=metric.value,
                unit=metric.unit,
                context=metric.context,
                recorded_at=recorded_at,
            )
            return rec.id

        return await run_write(
            self._session_factory, work, operation="log_performance_metric", settings=self._settings
        )

    async def measure(
        self,
        metric_name: str,
        operation: Callable[[], Awaitable[T]],
        *,
        context: Mapping[str, Any] | None = None,
    ) -> T:
        """
        Run `operation`, then record its wall-clock duration under `metric_name`.

        The operation's own result or exception is passed through unchanged; a
        failure to record the timing is only logged.
        """

        started = self._timer()
        try:
            result = await operation()
        except Exception as exc:
            await self._record_timing(
                metric_name, started, context, success=False, error=type(exc).__name__
            )
            raise
        await self._record_timing(metric_name, started, context, success=True)
        return result

    def fire_and_forget(
        self, coro: Coroutine[Any, Any, Any], *, operation: str
    ) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(self._swallow(coro, operation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for outstanding fire-and-forget writes (shutdown/tests)."""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def _record_timing(
        self,
        metric_name: str,
        started: float,
        context: Mapping[str, Any] | None,
        *,
        success: bool,
        error: str | None = None,
    ) -> None:
        elapsed_ms = (self._timer() - started) * 1000.0
        payload: dict[str, Any] = {**(context or {}), "success": success}
        if error is not None:
            payload["error"] = error
        try:
            await self.log_performance_metric(
                {"metric_name": metric_name, "value": elapsed_ms, "unit": "ms", "context": payload}
            )
        except SitewatchError as e:
            log.error("measure_record_failed", metric=metric_name, error=str(e))

    async def _swallow(self, coro: Coroutine[Any, Any, Any], operation: str) -> Any:
        try:
            return await coro
        except SitewatchError as e:
            log.error("telemetry_dropped", operation=operation, error=str(e))
        except Exception:
            log.exception("telemetry_dropped", operation=operation)
        return None

    def _validated(self, model: type[Any], record: Any, *, kind: str) -> Any:
        try:
            return parse_input(model, record)
        except ValidationFailure as e:
            self._reject(kind, e.errors)

    def _reject(self, kind: str, errors: list[str]) -> None:
        log.warning("telemetry_rejected", kind=kind, errors=errors)
        raise ValidationFailure(errors)


# --- Module Notes -----------------------------------------------------------
# Writes issued for the same user action (activity + timing) are independent
# transactions; no relative commit order is implied.
