"""
tests.test_aggregator

Metrics Aggregator: ingestion, live feeds, error resolution and stats.
"""

from __future__ import annotations

import asyncio
import uuid

import pytest

from sitewatch.errors import NotFound, ValidationFailure
from sitewatch.monitoring.aggregator import RESPONSE_TIME_METRIC
from sitewatch.monitoring.poller import HealthPoller


async def _wait_for(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)


SNAPSHOT = {"cpu": 10, "memory": 100, "active_users": 1, "response_time": 50, "error_rate": 0}


@pytest.mark.asyncio
async def test_missing_fields_are_derived_from_telemetry(aggregator, collector) -> None:
    await collector.log_performance_metric({"metric_name": RESPONSE_TIME_METRIC, "value": 100})
    await collector.log_performance_metric({"metric_name": RESPONSE_TIME_METRIC, "value": 300})
    await collector.log_error({"message": "a", "severity": "low"})
    await collector.log_error({"message": "b", "severity": "low"})

    view = await aggregator.record_system_metrics({"cpu": 5, "memory": 64})
    assert view.response_time == 200.0
    assert view.error_rate == 2.0
    assert view.active_users == 0


@pytest.mark.asyncio
async def test_snapshot_validation(aggregator) -> None:
    with pytest.raises(ValidationFailure):
        await aggregator.record_system_metrics({"cpu": 150, "memory": 1})
    with pytest.raises(ValidationFailure):
        await aggregator.record_system_metrics({"memory": 1})
    with pytest.raises(ValidationFailure):
        await aggregator.record_system_metrics({"cpu": 1, "memory": -5})


@pytest.mark.asyncio
async def test_system_metrics_feed(aggregator) -> None:
    seen: list[float] = []
    sub = aggregator.subscribe_to_system_metrics(lambda view: seen.append(view.cpu))
    await asyncio.sleep(0.05)
    # Nothing stored yet: no delivery.
    assert seen == []

    await aggregator.record_system_metrics(SNAPSHOT)
    await _wait_for(lambda: seen)
    assert seen == [10]

    sub.cancel()
    for _ in range(100):
        await aggregator.record_system_metrics(SNAPSHOT | {"cpu": 99})
    await asyncio.sleep(0.05)
    assert seen == [10]


@pytest.mark.asyncio
async def test_error_feed_is_bounded_newest_first_unresolved(aggregator, collector) -> None:
    ids = [
        await collector.log_error({"message": f"e{i}", "severity": "low"}) for i in range(5)
    ]
    latest: list[list[str]] = []
    sub = aggregator.subscribe_to_error_logs(
        lambda views: latest.append([v.message for v in views]), limit=3
    )
    await _wait_for(lambda: latest)
    assert latest[-1] == ["e4", "e3", "e2"]

    await aggregator.resolve_error(ids[4])
    await _wait_for(lambda: len(latest) > 1)
    assert latest[-1] == ["e3", "e2", "e1"]
    sub.cancel()


@pytest.mark.asyncio
async def test_error_feed_default_limit(aggregator, collector, settings) -> None:
    for i in range(settings.error_feed_default_limit + 2):
        await collector.log_error({"message": f"e{i}", "severity": "low"})
    latest: list[int] = []
    sub = aggregator.subscribe_to_error_logs(lambda views: latest.append(len(views)))
    await _wait_for(lambda: latest)
    assert latest == [settings.error_feed_default_limit]
    sub.cancel()


def test_error_feed_rejects_bad_limit(aggregator) -> None:
    with pytest.raises(ValidationFailure):
        aggregator.subscribe_to_error_logs(lambda views: None, limit=0)


@pytest.mark.asyncio
async def test_resolve_is_idempotent(aggregator, collector) -> None:
    error_id = await collector.log_error({"message": "x", "severity": "high"})
    other_id = await collector.log_error({"message": "y", "severity": "high"})

    assert await aggregator.resolve_error(error_id, resolved_by="first") is True
    assert await aggregator.resolve_error(str(error_id), resolved_by="second") is False

    remaining = await aggregator.recent_errors(limit=10)
    assert [e.id for e in remaining] == [other_id]


@pytest.mark.asyncio
async def test_concurrent_resolves(aggregator, collector) -> None:
    error_id = await collector.log_error({"message": "x", "severity": "high"})
    results = await asyncio.gather(*(aggregator.resolve_error(error_id) for _ in range(5)))
    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_resolve_unknown(aggregator) -> None:
    with pytest.raises(NotFound):
        await aggregator.resolve_error(uuid.uuid4())
    with pytest.raises(NotFound):
        await aggregator.resolve_error("not-a-uuid")


@pytest.mark.asyncio
async def test_monitoring_stats(aggregator, collector) -> None:
    await aggregator.record_system_metrics(SNAPSHOT)
    await collector.log_error({"message": "x", "severity": "low"})
    sub = aggregator.subscribe_to_error_logs(lambda views: None)
    poller = HealthPoller(check=aggregator.get_system_health, interval_seconds=60)

    stats = await aggregator.get_monitoring_stats(poller=poller)
    assert stats.system_metrics_count == 1
    assert stats.error_log_count == 1
    assert stats.error_log_subscribers == 1
    assert stats.poller_running is False
    sub.cancel()
