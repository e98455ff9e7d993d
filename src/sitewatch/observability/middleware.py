"""
sitewatch.observability.middleware

HTTP middleware for request-scoped logging context and request timing.

Responsibilities:
- Generate/propagate request IDs.
- Bind request metadata into structlog contextvars.
- Record each request's wall time as a `responseTime` performance record.
"""

from __future__ import annotations

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from sitewatch.monitoring.aggregator import RESPONSE_TIME_METRIC

# Probe traffic would drown out real response times.
_UNTIMED_PATHS = frozenset({"/healthz", "/readyz"})


class RequestTelemetryMiddleware(BaseHTTPMiddleware):
    """
    - Ensures every request has a request id
    - Binds request-scoped contextvars for structured logs
    - Times the request without delaying the response
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )
        started = time.perf_counter()
        status_code = 500
        try:
            response: Response = await call_next(request)
            status_code = response.status_code
        finally:
            structlog.contextvars.clear_contextvars()
            self._record(request, started, status_code)

        response.headers["x-request-id"] = request_id
        return response

    def _record(self, request: Request, started: float, status_code: int) -> None:
        collector = getattr(request.app.state, "collector", None)
        if collector is None or request.url.path in _UNTIMED_PATHS:
            return
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        collector.fire_and_forget(
            collector.log_performance_metric(
                {
                    "metric_name": RESPONSE_TIME_METRIC,
                    "value": elapsed_ms,
                    "unit": "ms",
                    "context": {
                        "path": request.url.path,
                        "method": request.method,
                        "status_code": status_code,
                    },
                }
            ),
            operation="record_response_time",
        )


# --- Module Notes -----------------------------------------------------------
# This middleware complements `observability.logging.configure_logging` by ensuring
# request metadata is present on every log line without explicit parameter threading.
