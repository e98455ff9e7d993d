"""
sitewatch.monitoring.health

Health verdict: classify one system-metrics snapshot against soft/hard thresholds.

The checks run in a fixed order (cpu, memory, response time, error rate, network,
battery) so `issues` is deterministic for a given snapshot. A metric exactly at
a threshold is not a breach.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field

from sitewatch.db.models import NetworkStatus
from sitewatch.settings import HealthThresholds, Threshold
from sitewatch.telemetry.schemas import SystemMetricsView

NO_DATA_ISSUE = "No metrics data available"
NO_DATA_RECOMMENDATION = "Start monitoring to collect system metrics"


class HealthStatus(enum.StrEnum):
    healthy = "healthy"
    warning = "warning"
    critical = "critical"


class HealthVerdict(BaseModel):
    status: HealthStatus
    metrics: SystemMetricsView | None = None
    issues: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    last_check: datetime


@dataclass(frozen=True, slots=True)
class _Finding:
    hard: bool
    issue: str
    recommendation: str


def _fmt(value: float) -> str:
    return f"{value:g}"


def _ceiling(
    value: float,
    limit: Threshold,
    *,
    label: str,
    unit: str,
    hard_advice: str,
    soft_advice: str,
    soft_word: str = "high",
) -> _Finding | None:
    if value > limit.hard:
        return _Finding(
            True, f"{label} is critically {soft_word} (>{_fmt(limit.hard)}{unit})", hard_advice
        )
    if value > limit.soft:
        return _Finding(False, f"{label} is {soft_word} (>{_fmt(limit.soft)}{unit})", soft_advice)
    return None


def _findings(metrics: SystemMetricsView, thresholds: HealthThresholds) -> list[_Finding]:
    found = [
        _ceiling(
            metrics.cpu,
            thresholds.cpu_percent,
            label="CPU usage",
            unit="%",
            hard_advice="Consider optimizing CPU-intensive operations or scaling resources",
            soft_advice="Monitor CPU usage and consider optimization",
        ),
        _ceiling(
            metrics.memory,
            thresholds.memory_mb,
            label="Memory usage",
            unit="MB",
            hard_advice="Check for memory leaks and optimize memory usage",
            soft_advice="Monitor memory usage patterns",
        ),
        _ceiling(
            metrics.response_time,
            thresholds.response_time_ms,
            label="Response time",
            unit="ms",
            soft_word="slow",
            hard_advice="Investigate performance bottlenecks immediately",
            soft_advice="Optimize database queries and API responses",
        ),
        _ceiling(
            metrics.error_rate,
            thresholds.error_rate_per_min,
            label="Error rate",
            unit=" errors/min",
            hard_advice="Investigate and fix critical system errors",
            soft_advice="Review and address recurring errors",
        ),
    ]
    if metrics.network_status == NetworkStatus.offline:
        found.append(
            _Finding(True, "Network connection is offline", "Check internet connectivity")
        )
    elif metrics.network_status == NetworkStatus.slow:
        found.append(
            _Finding(
                False, "Network connection is slow", "Consider optimizing for slow connections"
            )
        )
    if metrics.battery_level is not None and metrics.battery_level < thresholds.battery_low_percent:
        found.append(
            _Finding(
                False,
                f"Device battery is low (<{_fmt(thresholds.battery_low_percent)}%)",
                "Consider reducing monitoring frequency to save battery",
            )
        )
    return [f for f in found if f is not None]


def evaluate_health(
    metrics: SystemMetricsView | None, thresholds: HealthThresholds, *, now: datetime
) -> HealthVerdict:
    if metrics is None:
        return HealthVerdict(
            status=HealthStatus.warning,
            issues=[NO_DATA_ISSUE],
            recommendations=[NO_DATA_RECOMMENDATION],
            last_check=now,
        )

    findings = _findings(metrics, thresholds)
    if any(f.hard for f in findings):
        status = HealthStatus.critical
    elif findings:
        status = HealthStatus.warning
    else:
        status = HealthStatus.healthy
    return HealthVerdict(
        status=status,
        metrics=metrics,
        issues=[f.issue for f in findings],
        recommendations=[f.recommendation for f in findings],
        last_check=now,
    )
