"""
sitewatch.monitoring.aggregator

Metrics Aggregator: the read/subscribe path for observability surfaces.

Responsibilities:
- Ingest system-metrics snapshots and push them to live subscribers.
- Live feeds for the latest snapshot and for the most recent unresolved errors.
- Resolve error-log entries (first resolve wins; repeats are no-ops).
- On-demand health verdict, project metrics, dashboard analytics and stats.
"""

from __future__ import annotations

import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.db.models import utcnow
from sitewatch.db.repositories.projects import ProjectRepo
from sitewatch.db.repositories.system_metrics import SystemMetricsRepo
from sitewatch.db.repositories.telemetry import ActivityRepo, ErrorLogRepo, PerformanceRepo
from sitewatch.db.session import run_read, run_write
from sitewatch.errors import NotFound, ValidationFailure
from sitewatch.feeds import FeedHub, Subscription
from sitewatch.monitoring.analytics import DashboardAnalytics, TimeRange, build_dashboard
from sitewatch.monitoring.health import HealthVerdict, evaluate_health
from sitewatch.monitoring.projects import ProjectMetrics, build_project_metrics
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings
from sitewatch.telemetry.schemas import (
    ActivityView,
    ErrorLogView,
    SystemMetricsInput,
    SystemMetricsView,
    parse_input,
)

if TYPE_CHECKING:
    from sitewatch.monitoring.poller import HealthPoller

log = get_logger(__name__)

# Metric name the request middleware records wall time under.
RESPONSE_TIME_METRIC = "responseTime"

RESPONSE_TIME_WINDOW = timedelta(minutes=5)
ERROR_RATE_WINDOW = timedelta(minutes=1)
ACTIVE_USERS_WINDOW = timedelta(minutes=15)


class MonitoringStats(BaseModel):
    system_metrics_count: int
    error_log_count: int
    system_metrics_subscribers: int
    error_log_subscribers: int
    poller_running: bool


class MetricsAggregator:
    def __init__(
        self,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        feeds: FeedHub,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._feeds = feeds
        self._settings = settings
        self._clock = clock

    async def record_system_metrics(
        self, record: SystemMetricsInput | Mapping[str, Any]
    ) -> SystemMetricsView:
        """
        Store one snapshot and notify live subscribers.

        Response time, error rate and active users are derived from recent
        telemetry when the reporter leaves them out.
        """

        try:
            snapshot = parse_input(SystemMetricsInput, record)
        except ValidationFailure as e:
            log.warning("telemetry_rejected", kind="system_metrics", errors=e.errors)
            raise
        now = self._clock()

        async def work(session: AsyncSession) -> SystemMetricsView:
            response_time = snapshot.response_time
            if response_time is None:
                response_time = await PerformanceRepo(session).average_since(
                    RESPONSE_TIME_METRIC, now - RESPONSE_TIME_WINDOW
                )
            error_rate = snapshot.error_rate
            if error_rate is None:
                error_rate = await ErrorLogRepo(session).count_since(now - ERROR_RATE_WINDOW)
            active_users = snapshot.active_users
            if active_users is None:
                active_users = await ActivityRepo(session).distinct_users_since(
                    now - ACTIVE_USERS_WINDOW
                )
            row = await SystemMetricsRepo(session).add(
                cpu=snapshot.cpu,
                memory=snapshot.memory,
                active_users=active_users,
                response_time=response_time or 0.0,
                error_rate=float(error_rate),
                network_status=snapshot.network_status,
                battery_level=snapshot.battery_level,
                connection_type=snapshot.connection_type,
                created_at=now,
            )
            return SystemMetricsView.model_validate(row)

        view = await run_write(
            self._session_factory, work, operation="record_system_metrics", settings=self._settings
        )
        self._feeds.system_metrics.publish(view.id)
        return view

    def subscribe_to_system_metrics(
        self, callback: Callable[[SystemMetricsView], Awaitable[None] | None]
    ) -> Subscription:
        return self._feeds.system_metrics.subscribe(callback, loader=self.latest_system_metrics)

    def subscribe_to_error_logs(
        self,
        callback: Callable[[list[ErrorLogView]], Awaitable[None] | None],
        limit: int | None = None,
    ) -> Subscription:
        """
        Follow the `limit` most recent unresolved errors, newest first. The callback
        receives the whole bounded list on every change (possibly empty).
        """

        if limit is None:
            limit = self._settings.error_feed_default_limit
        if limit < 1:
            raise ValidationFailure(["limit: must be at least 1"])

        async def load() -> list[ErrorLogView]:
            return await self.recent_errors(limit=limit)

        return self._feeds.error_logs.subscribe(callback, loader=load)

    async def latest_system_metrics(self) -> SystemMetricsView | None:
        async def work(session: AsyncSession) -> SystemMetricsView | None:
            row = await SystemMetricsRepo(session).latest()
            return SystemMetricsView.model_validate(row) if row is not None else None

        return await run_read(self._session_factory, work, operation="latest_system_metrics")

    async def recent_errors(self, *, limit: int) -> list[ErrorLogView]:
        async def work(session: AsyncSession) -> list[ErrorLogView]:
            rows = await ErrorLogRepo(session).recent_unresolved(limit=limit)
            return [ErrorLogView.model_validate(r) for r in rows]

        return await run_read(self._session_factory, work, operation="recent_errors")

    async def resolve_error(
        self, error_id: uuid.UUID | str, *, resolved_by: str = "unknown"
    ) -> bool:
        """
        Mark an error-log entry resolved. Returns False when it already was.

        Raises NotFound for ids that do not exist (including malformed ones).
        """

        try:
            key = error_id if isinstance(error_id, uuid.UUID) else uuid.UUID(str(error_id))
        except ValueError as e:
            raise NotFound("error_log", str(error_id)) from e

        async def work(session: AsyncSession) -> bool:
            changed = await ErrorLogRepo(session).mark_resolved(key, resolved_by=resolved_by)
            if changed is None:
                raise NotFound("error_log", str(key))
            return changed

        changed = await run_write(
            self._session_factory, work, operation="resolve_error", settings=self._settings
        )
        if changed:
            log.info("error_resolved", error_id=str(key), resolved_by=resolved_by)
            self._feeds.error_logs.publish(key)
        return changed

    async def get_system_health(self) -> HealthVerdict:
        latest = await self.latest_system_metrics()
        return evaluate_health(latest, self._settings.thresholds, now=self._clock())

    async def get_project_metrics(self, project_id: str) -> ProjectMetrics:
        today = self._clock().date()

        async def work(session: AsyncSession) -> ProjectMetrics:
            repo = ProjectRepo(session)
            project = await repo.get(project_id)
            if project is None:
                raise NotFound("project", project_id)
            return build_project_metrics(
                project,
                await repo.tasks(project_id),
                spent=await repo.total_expenses(project_id),
                last_activity=await ActivityRepo(session).last_for_resource(project_id),
                today=today,
            )

        return await run_read(self._session_factory, work, operation="project_metrics")

    async def get_dashboard_analytics(self, time_range: TimeRange | str) -> DashboardAnalytics:
        try:
            window = TimeRange(time_range)
        except ValueError as e:
            raise ValidationFailure(
                [f"time_range: must be one of {', '.join(t.value for t in TimeRange)}"]
            ) from e
        end = self._clock()
        start = end - window.span
        limit = self._settings.activity_window_limit

        async def work(session: AsyncSession) -> DashboardAnalytics:
            metrics = await SystemMetricsRepo(session).in_range(start, end)
            activities = await ActivityRepo(session).in_range(start, end, limit=limit)
            errors = await ErrorLogRepo(session).in_range(start, end)
            return build_dashboard(
                window,
                start=start,
                end=end,
                metrics=[SystemMetricsView.model_validate(m) for m in metrics],
                activities=[ActivityView.model_validate(a) for a in activities],
                errors=[ErrorLogView.model_validate(e) for e in errors],
            )

        return await run_read(self._session_factory, work, operation="dashboard_analytics")

    async def get_monitoring_stats(self, *, poller: HealthPoller | None = None) -> MonitoringStats:
        async def work(session: AsyncSession) -> tuple[int, int]:
            return await SystemMetricsRepo(session).count(), await ErrorLogRepo(session).count()

        snapshots, errors = await run_read(
            self._session_factory, work, operation="monitoring_stats"
        )
        return MonitoringStats(
            system_metrics_count=snapshots,
            error_log_count=errors,
            system_metrics_subscribers=self._feeds.system_metrics.subscriber_count,
            error_log_subscribers=self._feeds.error_logs.subscriber_count,
            poller_running=poller is not None and poller.running,
        )


# --- Module Notes -----------------------------------------------------------
# Analytics reads run in one session and fail as a whole; partial windows are never
# returned in place of an error.
