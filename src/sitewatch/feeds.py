"""
sitewatch.feeds

In-process change feeds (the store's push-on-change primitive).

Responsibilities:
- Let writers announce "collection X changed" after their transaction commits.
- Deliver those notifications to live subscribers, one ordered pump per subscriber.
- Hand out cancellation handles that release exactly once and silence late deliveries.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from sitewatch.observability.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")

Callback = Callable[[T], Awaitable[None] | None]
Loader = Callable[[], Awaitable[T | None]]

_INITIAL = object()


class Subscription:
    """
    Cancellation handle returned by every subscribe call.

    Calling the handle (or `cancel()`) more than once is a no-op, and it can be
    invoked from contexts that no longer have a running event loop.
    """

    def __init__(self, release: Callable[[], None]) -> None:
        self._release: Callable[[], None] | None = release

    @property
    def active(self) -> bool:
        return self._release is not None

    def cancel(self) -> None:
        release, self._release = self._release, None
        if release is not None:
            release()

    __call__ = cancel


class _Listener(Generic[T]):
    def __init__(
        self,
        *,
        channel: str,
        callback: Callback[T],
        loader: Loader[T],
        detach: Callable[[], None],
    ) -> None:
        self._channel = channel
        self._detach = detach
        self._callback = callback
        self._loader = loader
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self.handle = Subscription(self._close)

    def start(self, *, replay: bool) -> None:
        if replay:
            self._queue.put_nowait(_INITIAL)
        self._task = asyncio.get_running_loop().create_task(
            self._pump(), name=f"feed:{self._channel}"
        )

    def notify(self, change: object) -> None:
        # A queued marker already guarantees a reload that sees this change.
        if self.handle.active and self._queue.empty():
            self._queue.put_nowait(change)

    def _close(self) -> None:
        self._detach()
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    async def _pump(self) -> None:
        while True:
            await self._queue.get()
            try:
                value = await self._loader()
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("feed_load_failed", channel=self._channel)
                continue
            # Cancellation may have happened while the load was in flight.
            if value is None or not self.handle.active:
                continue
            try:
                result = self._callback(value)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:
                log.exception("feed_callback_failed", channel=self._channel)


class Channel:
    """
    A named change feed. Publishing carries no payload beyond an optional marker;
    each subscriber re-reads the current value through its own loader, in the
    order notifications arrive. Notifications that pile up behind a pending
    reload collapse into that reload.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._ids = itertools.count(1)
        self._listeners: dict[int, _Listener[Any]] = {}

    def subscribe(
        self,
        callback: Callback[T],
        *,
        loader: Loader[T],
        replay: bool = True,
    ) -> Subscription:
        key = next(self._ids)
        listener: _Listener[T] = _Listener(
            channel=self.name,
            callback=callback,
            loader=loader,
            detach=lambda: self._listeners.pop(key, None),
        )
        self._listeners[key] = listener
        listener.start(replay=replay)
        return listener.handle

    def publish(self, change: object = None) -> None:
        for listener in list(self._listeners.values()):
            listener.notify(change)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def close(self) -> None:
        for listener in list(self._listeners.values()):
            listener.handle.cancel()


class FeedHub:
    """Channels for the live collections that observability surfaces follow."""

    def __init__(self) -> None:
        self.system_metrics = Channel("system_metrics")
        self.error_logs = Channel("error_logs")

    def close(self) -> None:
        self.system_metrics.close()
        self.error_logs.close()


# --- Module Notes -----------------------------------------------------------
# Delivery order is per subscriber only; two subscriptions may observe the same
# change in either order.
