"""
sitewatch.api.routers.monitoring

Observability endpoints.

Responsibilities:
- Health verdict, poller state, project metrics, dashboard analytics and stats
  (require `monitoring:view`).
- Metrics ingestion, error resolution and on-demand health checks
  (require `monitoring:manage`).
- WebSocket bridges for the live system-metrics and error-log feeds.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket
from pydantic import BaseModel
from starlette.status import HTTP_201_CREATED, WS_1008_POLICY_VIOLATION

from sitewatch.api.deps import aggregator_dep, poller_dep, settings_dep
from sitewatch.auth.deps import load_access, principal_from_token, require_permission
from sitewatch.auth.evaluator import AccessSnapshot
from sitewatch.auth.jwt import JwtValidationError
from sitewatch.auth.permissions import Permission
from sitewatch.feeds import Subscription
from sitewatch.monitoring.aggregator import MetricsAggregator, MonitoringStats
from sitewatch.monitoring.analytics import DashboardAnalytics, TimeRange
from sitewatch.monitoring.health import HealthVerdict
from sitewatch.monitoring.poller import HealthPoller, PollerSnapshot
from sitewatch.monitoring.projects import ProjectMetrics
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings
from sitewatch.telemetry.schemas import ErrorLogView, SystemMetricsInput, SystemMetricsView

log = get_logger(__name__)

router = APIRouter(prefix="/v1/monitoring", tags=["monitoring"])

_view = require_permission(Permission.view_monitoring)
_manage = require_permission(Permission.manage_monitoring)


class ResolveResponse(BaseModel):
    error_id: str
    resolved: bool = True
    changed: bool


@router.get("/health", response_model=HealthVerdict, dependencies=[Depends(_view)])
async def system_health(
    aggregator: MetricsAggregator = Depends(aggregator_dep),
) -> HealthVerdict:
    return await aggregator.get_system_health()


@router.get("/health/poller", response_model=PollerSnapshot, dependencies=[Depends(_view)])
async def poller_state(poller: HealthPoller = Depends(poller_dep)) -> PollerSnapshot:
    return poller.snapshot()


@router.post("/health/poller/check", response_model=PollerSnapshot, dependencies=[Depends(_manage)])
async def poller_check(poller: HealthPoller = Depends(poller_dep)) -> PollerSnapshot:
    await poller.check_now()
    return poller.snapshot()


@router.post(
    "/metrics",
    response_model=SystemMetricsView,
    status_code=HTTP_201_CREATED,
    dependencies=[Depends(_manage)],
)
async def record_metrics(
    body: SystemMetricsInput,
    aggregator: MetricsAggregator = Depends(aggregator_dep),
) -> SystemMetricsView:
    return await aggregator.record_system_metrics(body)


@router.get("/errors", response_model=list[ErrorLogView], dependencies=[Depends(_view)])
async def recent_errors(
    limit: int | None = Query(default=None, ge=1, le=100),
    aggregator: MetricsAggregator = Depends(aggregator_dep),
    settings: Settings = Depends(settings_dep),
) -> list[ErrorLogView]:
    return await aggregator.recent_errors(limit=limit or settings.error_feed_default_limit)


@router.post("/errors/{error_id}/resolve", response_model=ResolveResponse)
async def resolve_error(
    error_id: str,
    access: AccessSnapshot = Depends(_manage),
    aggregator: MetricsAggregator = Depends(aggregator_dep),
) -> ResolveResponse:
    changed = await aggregator.resolve_error(error_id, resolved_by=access.principal.subject)
    return ResolveResponse(error_id=error_id, changed=changed)


@router.get("/projects/{project_id}", response_model=ProjectMetrics, dependencies=[Depends(_view)])
async def project_metrics(
    project_id: str,
    aggregator: MetricsAggregator = Depends(aggregator_dep),
) -> ProjectMetrics:
    return await aggregator.get_project_metrics(project_id)


@router.get("/analytics", response_model=DashboardAnalytics, dependencies=[Depends(_view)])
async def dashboard_analytics(
    time_range: TimeRange = TimeRange.day,
    aggregator: MetricsAggregator = Depends(aggregator_dep),
) -> DashboardAnalytics:
    return await aggregator.get_dashboard_analytics(time_range)


@router.get("/stats", response_model=MonitoringStats, dependencies=[Depends(_view)])
async def monitoring_stats(
    aggregator: MetricsAggregator = Depends(aggregator_dep),
    poller: HealthPoller = Depends(poller_dep),
) -> MonitoringStats:
    return await aggregator.get_monitoring_stats(poller=poller)


async def _authorize_socket(websocket: WebSocket) -> bool:
    # Browsers cannot set headers on a WebSocket handshake; the token rides in the query.
    app = websocket.app
    token = websocket.query_params.get("token", "")
    try:
        principal = principal_from_token(token, app.state.settings) if token else None
    except JwtValidationError:
        principal = None
    access = await load_access(
        principal, session_factory=app.state.sessionmaker, settings=app.state.settings
    )
    if access.has_permission(Permission.view_monitoring):
        return True
    log.info(
        "access_denied",
        user_id=principal.subject if principal else None,
        permission=str(Permission.view_monitoring),
        channel=websocket.url.path,
    )
    await websocket.close(code=WS_1008_POLICY_VIOLATION)
    return False


async def _until_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def _bridge(
    websocket: WebSocket,
    subscribe: Any,
    encode: Any,
) -> None:
    """Forward feed deliveries to the socket until the client goes away."""

    await websocket.accept()
    queue: asyncio.Queue[Any] = asyncio.Queue()
    subscription: Subscription = subscribe(queue.put_nowait)
    closed = asyncio.create_task(_until_disconnect(websocket))
    try:
        while True:
            nxt = asyncio.create_task(queue.get())
            done, _ = await asyncio.wait({nxt, closed}, return_when=asyncio.FIRST_COMPLETED)
            if nxt not in done:
                nxt.cancel()
                break
            await websocket.send_json(encode(nxt.result()))
    finally:
        subscription.cancel()
        closed.cancel()


@router.websocket("/ws/system-metrics")
async def system_metrics_feed(websocket: WebSocket) -> None:
    if not await _authorize_socket(websocket):
        return
    aggregator: MetricsAggregator = websocket.app.state.aggregator
    await _bridge(
        websocket,
        aggregator.subscribe_to_system_metrics,
        lambda view: {"type": "system_metrics", "data": view.model_dump(mode="json")},
    )


@router.websocket("/ws/errors")
async def error_log_feed(websocket: WebSocket, limit: int | None = None) -> None:
    if limit is not None and limit < 1:
        await websocket.close(code=WS_1008_POLICY_VIOLATION)
        return
    if not await _authorize_socket(websocket):
        return
    aggregator: MetricsAggregator = websocket.app.state.aggregator
    await _bridge(
        websocket,
        lambda callback: aggregator.subscribe_to_error_logs(callback, limit=limit),
        lambda views: {"type": "error_logs", "data": [v.model_dump(mode="json") for v in views]},
    )
