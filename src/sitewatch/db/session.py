"""
sitewatch.db.session

Async SQLAlchemy engine + session factory helpers.

Responsibilities:
- Create the async engine and sessionmaker from settings.
- Run a unit of work in its own transaction (commit-or-nothing), retrying
  transient store faults for writes.
- Translate store faults into `UpstreamUnavailable`.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sitewatch.errors import UpstreamUnavailable
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings

log = get_logger(__name__)

T = TypeVar("T")

Work = Callable[[AsyncSession], Awaitable[T]]


def create_engine(settings: Settings) -> AsyncEngine:
    return create_async_engine(
        settings.database_url,
        pool_pre_ping=True,
    )


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False keeps returned rows readable after the unit of work ends.
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        autocommit=False,
    )


def _log_retry(operation: str):
    def before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        log.warning(
            "store_write_retry",
            operation=operation,
            attempt=state.attempt_number,
            error=str(exc) if exc else None,
        )

    return before_sleep


async def run_write(
    session_factory: async_sessionmaker[AsyncSession],
    work: Work[T],
    *,
    operation: str,
    settings: Settings,
) -> T:
    """
    Execute `work` inside a fresh session and commit it.

    Domain errors raised by `work` propagate untouched (the session rolls back on
    close); store faults are retried and finally surface as `UpstreamUnavailable`.
    """

    retrying = AsyncRetrying(
        stop=stop_after_attempt(settings.store_retry_attempts),
        wait=wait_exponential(multiplier=settings.store_retry_wait_seconds, max=10),
        retry=retry_if_exception_type(SQLAlchemyError),
        before_sleep=_log_retry(operation),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                async with session_factory() as session:
                    result = await work(session)
                    await session.commit()
                    return result
    except SQLAlchemyError as e:
        log.error("store_write_failed", operation=operation, error=str(e))
        raise UpstreamUnavailable(operation) from e
    raise AssertionError("unreachable")  # pragma: no cover


async def run_read(
    session_factory: async_sessionmaker[AsyncSession],
    work: Work[T],
    *,
    operation: str,
) -> T:
    try:
        async with session_factory() as session:
            return await work(session)
    except SQLAlchemyError as e:
        log.error("store_read_failed", operation=operation, error=str(e))
        raise UpstreamUnavailable(operation) from e


# --- Module Notes -----------------------------------------------------------
# Services never hold a session across calls; each operation opens its own unit of
# work so a failed write leaves no partial record behind.
