"""
sitewatch.api.app

FastAPI app factory for the sitewatch service.

Responsibilities:
- Build the FastAPI application and register routers/middleware/error handlers.
- Initialize and dispose shared infrastructure (DB engine, change feeds, telemetry
  collector, metrics aggregator, health poller).
- Provide a single composition root where cross-cutting concerns live.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_404_NOT_FOUND,
    HTTP_422_UNPROCESSABLE_ENTITY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from sitewatch import __version__
from sitewatch.api.routers.access import router as access_router
from sitewatch.api.routers.dev_auth import router as dev_auth_router
from sitewatch.api.routers.health import router as health_router
from sitewatch.api.routers.monitoring import router as monitoring_router
from sitewatch.api.routers.telemetry import router as telemetry_router
from sitewatch.db.init_db import init_db
from sitewatch.db.session import create_engine, create_sessionmaker
from sitewatch.errors import NotFound, UpstreamUnavailable, ValidationFailure
from sitewatch.feeds import FeedHub
from sitewatch.monitoring.aggregator import MetricsAggregator
from sitewatch.monitoring.poller import HealthPoller
from sitewatch.observability.logging import configure_logging, get_logger
from sitewatch.observability.middleware import RequestTelemetryMiddleware
from sitewatch.settings import Settings
from sitewatch.telemetry.collector import TelemetryCollector

log = get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFound)
    async def _not_found(request: Request, exc: NotFound) -> JSONResponse:
        return JSONResponse(status_code=HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(ValidationFailure)
    async def _invalid(request: Request, exc: ValidationFailure) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": exc.errors}
        )

    @app.exception_handler(UpstreamUnavailable)
    async def _upstream(request: Request, exc: UpstreamUnavailable) -> JSONResponse:
        return JSONResponse(
            status_code=HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Service temporarily unavailable"},
        )


def create_app(*, settings: Settings) -> FastAPI:
    configure_logging(service_name=settings.service_name, level=settings.log_level)

    app = FastAPI(
        title="Sitewatch Authorization & Observability",
        version=__version__,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings

    app.add_middleware(RequestTelemetryMiddleware)
    _register_error_handlers(app)
    app.include_router(health_router, tags=["health"])
    app.include_router(dev_auth_router)
    app.include_router(access_router)
    app.include_router(telemetry_router)
    app.include_router(monitoring_router)

    @app.on_event("startup")
    async def _startup() -> None:
        log.info("startup", env=settings.env)
        engine = create_engine(settings)
        app.state.engine = engine
        app.state.sessionmaker = create_sessionmaker(engine)
        if settings.env in ("dev", "test"):
            # Dev/test convenience: create tables automatically. Prod should use Alembic migrations.
            await init_db(engine)

        feeds = FeedHub()
        app.state.feeds = feeds
        app.state.collector = TelemetryCollector(
            session_factory=app.state.sessionmaker, feeds=feeds, settings=settings
        )
        aggregator = MetricsAggregator(
            session_factory=app.state.sessionmaker, feeds=feeds, settings=settings
        )
        app.state.aggregator = aggregator
        poller = HealthPoller(
            check=aggregator.get_system_health,
            interval_seconds=settings.health_poll_interval_seconds,
            timeout_seconds=settings.health_check_timeout_seconds,
        )
        app.state.poller = poller
        if settings.health_poll_interval_seconds > 0:
            poller.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        poller = getattr(app.state, "poller", None)
        if poller is not None:
            await poller.stop()
        feeds = getattr(app.state, "feeds", None)
        if feeds is not None:
            feeds.close()
        collector = getattr(app.state, "collector", None)
        if collector is not None:
            await collector.drain()
        engine = getattr(app.state, "engine", None)
        if engine is not None:
            await engine.dispose()
        log.info("shutdown")

    return app


# --- Module Notes -----------------------------------------------------------
# App composition stays here; authorization and telemetry semantics live in the
# auth/telemetry/monitoring packages and are usable without HTTP.
