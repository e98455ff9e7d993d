"""
tests.conftest

Shared fixtures: an isolated SQLite database per test and the services built on it.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import date
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from sitewatch.db.init_db import init_db
from sitewatch.db.models import Project, ProjectExpense, ProjectTask, Role, TaskStatus
from sitewatch.db.repositories.access import AccountRepo
from sitewatch.db.session import create_engine, create_sessionmaker, run_write
from sitewatch.feeds import FeedHub
from sitewatch.monitoring.aggregator import MetricsAggregator
from sitewatch.settings import Settings
from sitewatch.telemetry.collector import TelemetryCollector


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "env": "test",
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'sitewatch.db'}",
        "jwt_secret": "test-secret",
        "store_retry_attempts": 2,
        "store_retry_wait_seconds": 0,
        "health_poll_interval_seconds": 0,
    }
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncIterator[AsyncEngine]:
    eng = create_engine(settings)
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_sessionmaker(engine)


@pytest_asyncio.fixture
async def feeds() -> AsyncIterator[FeedHub]:
    hub = FeedHub()
    yield hub
    hub.close()


@pytest_asyncio.fixture
async def collector(
    session_factory: async_sessionmaker[AsyncSession], feeds: FeedHub, settings: Settings
) -> AsyncIterator[TelemetryCollector]:
    c = TelemetryCollector(session_factory=session_factory, feeds=feeds, settings=settings)
    yield c
    await c.drain()


@pytest.fixture
def aggregator(
    session_factory: async_sessionmaker[AsyncSession], feeds: FeedHub, settings: Settings
) -> MetricsAggregator:
    return MetricsAggregator(session_factory=session_factory, feeds=feeds, settings=settings)


@pytest.fixture
def add_account(session_factory: async_sessionmaker[AsyncSession], settings: Settings):
    async def _add(
        user_id: str, role: Role = Role.standard_user, display_name: str | None = None
    ) -> None:
        async def work(session: AsyncSession) -> None:
            await AccountRepo(session).upsert(
                user_id=user_id, display_name=display_name or user_id.title(), role=role
            )

        await run_write(session_factory, work, operation="seed_account", settings=settings)

    return _add


class ProjectSeed:
    """Writes project rows directly; the package only reads projects."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def project(
        self, project_id: str, name: str, *, budget: float = 0.0, members: list[str] | None = None
    ) -> None:
        self._session.add(
            Project(id=project_id, name=name, budget=budget, members=list(members or []))
        )
        await self._session.flush()

    async def task(
        self,
        project_id: str,
        title: str,
        *,
        status: TaskStatus = TaskStatus.pending,
        due_date: date | None = None,
    ) -> None:
        self._session.add(
            ProjectTask(project_id=project_id, title=title, status=status, due_date=due_date)
        )
        await self._session.flush()

    async def expense(self, project_id: str, amount: float, description: str = "") -> None:
        self._session.add(
            ProjectExpense(project_id=project_id, amount=amount, description=description)
        )
        await self._session.flush()


@pytest.fixture
def seed_projects(session_factory: async_sessionmaker[AsyncSession], settings: Settings):
    async def _seed(build: Callable[[ProjectSeed], Awaitable[None]]) -> None:
        async def work(session: AsyncSession) -> None:
            await build(ProjectSeed(session))

        await run_write(session_factory, work, operation="seed_projects", settings=settings)

    return _seed
