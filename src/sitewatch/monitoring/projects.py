"""
sitewatch.monitoring.projects

Project-level metrics derived from a project's tasks, expenses and activity.

Responsibilities:
- Count tasks by status, including overdue (past due date and not completed).
- Budget totals and utilization.
- Health score, performance score and risk level.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import date, datetime

from pydantic import BaseModel

from sitewatch.db.models import Project, ProjectTask, TaskStatus

# No quality signal is collected yet; scored as a fixed baseline.
QUALITY_BASELINE = 85.0


class RiskLevel(enum.StrEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class ProjectMetrics(BaseModel):
    project_id: str
    project_name: str
    tasks_total: int
    tasks_completed: int
    tasks_in_progress: int
    tasks_pending: int
    tasks_overdue: int
    progress_percentage: float
    budget_total: float
    budget_spent: float
    budget_remaining: float
    budget_utilization: float
    team_size: int
    last_activity: datetime
    health_score: float
    performance_score: float
    risk_level: RiskLevel


def health_score(
    *, progress_percentage: float, budget_utilization: float, team_size: int, tasks_overdue: int
) -> float:
    score = 100.0
    if progress_percentage < 20:
        score -= 20
    elif progress_percentage < 50:
        score -= 10

    if budget_utilization > 90:
        score -= 15
    elif budget_utilization > 75:
        score -= 5

    if team_size < 2:
        score -= 10

    score -= min(tasks_overdue * 5, 30)
    return max(0.0, min(100.0, score))


def performance_score(
    *, progress_percentage: float, timeline_adherence: float, quality: float = QUALITY_BASELINE
) -> float:
    return float(round(progress_percentage * 0.4 + timeline_adherence * 0.3 + quality * 0.3))


def risk_level(health: float, performance: float) -> RiskLevel:
    average = (health + performance) / 2
    if average >= 80:
        return RiskLevel.low
    if average >= 60:
        return RiskLevel.medium
    if average >= 40:
        return RiskLevel.high
    return RiskLevel.critical


def build_project_metrics(
    project: Project,
    tasks: Iterable[ProjectTask],
    *,
    spent: float,
    last_activity: datetime | None,
    today: date,
) -> ProjectMetrics:
    completed = in_progress = pending = overdue = total = 0
    for task in tasks:
        total += 1
        if task.status == TaskStatus.completed:
            completed += 1
        else:
            if task.status == TaskStatus.in_progress:
                in_progress += 1
            else:
                pending += 1
            if task.due_date is not None and task.due_date < today:
                overdue += 1

    progress = (completed / total) * 100 if total else 0.0
    utilization = (spent / project.budget) * 100 if project.budget > 0 else 0.0
    # With no tasks there is nothing to be late on.
    adherence = 100.0 * (1 - overdue / total) if total else 100.0
    team_size = len(project.members or [])

    health = health_score(
        progress_percentage=progress,
        budget_utilization=utilization,
        team_size=team_size,
        tasks_overdue=overdue,
    )
    performance = performance_score(progress_percentage=progress, timeline_adherence=adherence)
    return ProjectMetrics(
        project_id=project.id,
        project_name=project.name,
        tasks_total=total,
        tasks_completed=completed,
        tasks_in_progress=in_progress,
        tasks_pending=pending,
        tasks_overdue=overdue,
        progress_percentage=progress,
        budget_total=project.budget,
        budget_spent=spent,
        budget_remaining=project.budget - spent,
        budget_utilization=utilization,
        team_size=team_size,
        last_activity=max(filter(None, (project.updated_at, last_activity))),
        health_score=health,
        performance_score=performance,
        risk_level=risk_level(health, performance),
    )
