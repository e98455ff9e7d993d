"""
sitewatch.monitoring.analytics

Dashboard analytics: time-windowed rollups over collected telemetry.

Responsibilities:
- Map a named window (hour/day/week/month) to a time span.
- Summarize the window (totals, averages, unique users, error rate, success rate).
- Compare the first and second half of the window to report trends.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from datetime import datetime, timedelta
from statistics import fmean

from pydantic import BaseModel

from sitewatch.db.models import Severity
from sitewatch.telemetry.schemas import ActivityView, ErrorLogView, SystemMetricsView

# Relative change below this is reported as stable.
TREND_TOLERANCE = 0.05


class TimeRange(enum.StrEnum):
    hour = "hour"
    day = "day"
    week = "week"
    month = "month"

    @property
    def span(self) -> timedelta:
        return _SPANS[self]


_SPANS = {
    TimeRange.hour: timedelta(hours=1),
    TimeRange.day: timedelta(days=1),
    TimeRange.week: timedelta(days=7),
    TimeRange.month: timedelta(days=30),
}


class Trend(enum.StrEnum):
    increasing = "increasing"
    decreasing = "decreasing"
    stable = "stable"


class PerformanceTrend(enum.StrEnum):
    improving = "improving"
    degrading = "degrading"
    stable = "stable"


class AnalyticsSummary(BaseModel):
    total_activities: int
    total_errors: int
    critical_errors: int
    average_cpu: float | None = None
    average_memory: float | None = None
    average_response_time: float | None = None
    unique_users: int
    error_rate_per_minute: float
    success_rate: float | None = None


class AnalyticsTrends(BaseModel):
    activity: Trend
    errors: Trend
    performance: PerformanceTrend


class DashboardAnalytics(BaseModel):
    time_range: TimeRange
    start: datetime
    end: datetime
    generated_at: datetime
    metrics: list[SystemMetricsView]
    activities: list[ActivityView]
    errors: list[ErrorLogView]
    summary: AnalyticsSummary
    trends: AnalyticsTrends


def _mean(values: Sequence[float]) -> float | None:
    return fmean(values) if values else None


def direction(first: float, second: float) -> Trend:
    if first == second:
        return Trend.stable
    if first == 0:
        return Trend.increasing
    change = (second - first) / first
    if change > TREND_TOLERANCE:
        return Trend.increasing
    if change < -TREND_TOLERANCE:
        return Trend.decreasing
    return Trend.stable


def summarize(
    metrics: Sequence[SystemMetricsView],
    activities: Sequence[ActivityView],
    errors: Sequence[ErrorLogView],
    *,
    span: timedelta,
) -> AnalyticsSummary:
    minutes = span.total_seconds() / 60
    succeeded = sum(1 for a in activities if a.success)
    return AnalyticsSummary(
        total_activities=len(activities),
        total_errors=len(errors),
        critical_errors=sum(1 for e in errors if e.severity == Severity.critical),
        average_cpu=_mean([m.cpu for m in metrics]),
        average_memory=_mean([m.memory for m in metrics]),
        average_response_time=_mean([m.response_time for m in metrics]),
        unique_users=len({a.user_id for a in activities}),
        error_rate_per_minute=len(errors) / minutes if minutes else 0.0,
        success_rate=(succeeded / len(activities)) * 100 if activities else None,
    )


def trends(
    metrics: Sequence[SystemMetricsView],
    activities: Sequence[ActivityView],
    errors: Sequence[ErrorLogView],
    *,
    start: datetime,
    end: datetime,
) -> AnalyticsTrends:
    midpoint = start + (end - start) / 2

    def halves(stamps: list[datetime]) -> tuple[int, int]:
        early = sum(1 for t in stamps if t < midpoint)
        return early, len(stamps) - early

    activity = direction(*halves([a.created_at for a in activities]))
    error = direction(*halves([e.created_at for e in errors]))

    early_rt = _mean([m.response_time for m in metrics if m.created_at < midpoint])
    late_rt = _mean([m.response_time for m in metrics if m.created_at >= midpoint])
    if early_rt is None or late_rt is None:
        performance = PerformanceTrend.stable
    else:
        # Response time going up is performance going down.
        performance = {
            Trend.increasing: PerformanceTrend.degrading,
            Trend.decreasing: PerformanceTrend.improving,
            Trend.stable: PerformanceTrend.stable,
        }[direction(early_rt, late_rt)]

    return AnalyticsTrends(activity=activity, errors=error, performance=performance)


def build_dashboard(
    time_range: TimeRange,
    *,
    start: datetime,
    end: datetime,
    metrics: Sequence[SystemMetricsView],
    activities: Sequence[ActivityView],
    errors: Sequence[ErrorLogView],
) -> DashboardAnalytics:
    return DashboardAnalytics(
        time_range=time_range,
        start=start,
        end=end,
        generated_at=end,
        metrics=list(metrics),
        activities=list(activities),
        errors=list(errors),
        summary=summarize(metrics, activities, errors, span=end - start),
        trends=trends(metrics, activities, errors, start=start, end=end),
    )
