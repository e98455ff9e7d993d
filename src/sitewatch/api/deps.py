"""
sitewatch.api.deps

FastAPI dependency wiring for the API layer.

Responsibilities:
- Provide dependency functions for settings, sessions and the shared services
  created at startup (telemetry collector, metrics aggregator, health poller).
- Encapsulate app.state access patterns.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.monitoring.aggregator import MetricsAggregator
from sitewatch.monitoring.poller import HealthPoller
from sitewatch.settings import Settings
from sitewatch.telemetry.collector import TelemetryCollector


def settings_dep(request: Request) -> Settings:
    # The app factory pins its Settings instance on app.state.
    return request.app.state.settings  # type: ignore[attr-defined]


def sessionmaker_from_app(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.sessionmaker  # type: ignore[attr-defined]


async def db_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with sessionmaker_from_app(request)() as session:
        yield session


def collector_dep(request: Request) -> TelemetryCollector:
    return request.app.state.collector  # type: ignore[attr-defined]


def aggregator_dep(request: Request) -> MetricsAggregator:
    return request.app.state.aggregator  # type: ignore[attr-defined]


def poller_dep(request: Request) -> HealthPoller:
    return request.app.state.poller  # type: ignore[attr-defined]


# --- Module Notes -----------------------------------------------------------
# Services hold no per-request state; each operation opens its own unit of work
# through the shared session factory.
