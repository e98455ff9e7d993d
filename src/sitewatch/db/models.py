"""
sitewatch.db.models

Persistence schema for the authorization & observability core.

Responsibilities:
- Define ORM models for:
  - UserAccount / PermissionGrant: role assignment and explicit per-user grants
  - SystemMetricsSnapshot: periodic load indicators
  - ErrorLogEntry / UserActivityRecord / PerformanceRecord: append-mostly telemetry
  - Notification: admin alerts raised by critical errors
  - Project / ProjectTask / ProjectExpense: the inputs of project-level metrics
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid as SAUuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitewatch.db.base import Base


def utcnow() -> datetime:
    # Naive UTC timestamps; every writer and range query uses this helper.
    return datetime.now(tz=UTC).replace(tzinfo=None)


class Role(enum.StrEnum):
    admin = "admin"
    project_manager = "project-manager"
    standard_user = "standard-user"


class Severity(enum.StrEnum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class NetworkStatus(enum.StrEnum):
    online = "online"
    slow = "slow"
    offline = "offline"


class TaskStatus(enum.StrEnum):
    pending = "pending"
    in_progress = "in-progress"
    completed = "completed"


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(256), nullable=False)
    role: Mapped[Role] = mapped_column(Enum(Role), nullable=False, default=Role.standard_user)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    grants: Mapped[list[PermissionGrant]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class PermissionGrant(Base):
    __tablename__ = "permission_grants"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("user_accounts.id"), nullable=False, index=True
    )
    # Stored in canonical `resource:action` form.
    permission: Mapped[str] = mapped_column(String(128), nullable=False)
    granted_by: Mapped[str | None] = mapped_column(String(128), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    user: Mapped[UserAccount] = relationship(back_populates="grants")

    __table_args__ = (UniqueConstraint("user_id", "permission", name="uq_grant_user_perm"),)


class SystemMetricsSnapshot(Base):
    __tablename__ = "system_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    cpu: Mapped[float] = mapped_column(Float, nullable=False)
    memory: Mapped[float] = mapped_column(Float, nullable=False)
    active_users: Mapped[int] = mapped_column(nullable=False, default=0)
    response_time: Mapped[float] = mapped_column(Float, nullable=False)
    error_rate: Mapped[float] = mapped_column(Float, nullable=False)
    network_status: Mapped[NetworkStatus] = mapped_column(
        Enum(NetworkStatus), nullable=False, default=NetworkStatus.online
    )
    battery_level: Mapped[float | None] = mapped_column(Float, nullable=True)
    connection_type: Mapped[str | None] = mapped_column(String(32), nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)


class ErrorLogEntry(Base):
    __tablename__ = "error_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    stack: Mapped[str | None] = mapped_column(Text, nullable=True)
    severity: Mapped[Severity] = mapped_column(Enum(Severity), nullable=False, index=True)

    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_name: Mapped[str | None] = mapped_column(String(256), nullable=True)
    component: Mapped[str | None] = mapped_column(String(256), nullable=True)
    action: Mapped[str | None] = mapped_column(String(256), nullable=True)
    environment: Mapped[str] = mapped_column(String(32), nullable=False)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    resolved_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_error_logs_resolved_created", "resolved", "created_at"),)


class UserActivityRecord(Base):
    __tablename__ = "user_activities"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(256), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    resource: Mapped[str] = mapped_column(String(128), nullable=False)
    resource_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, index=True)


class PerformanceRecord(Base):
    __tablename__ = "performance_metrics"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    metric_name: Mapped[str] = mapped_column(String(128), nullable=False)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    unit: Mapped[str] = mapped_column(String(16), nullable=False, default="ms")
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # Assigned by the collector at call time, not at commit time.
    recorded_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)

    __table_args__ = (Index("ix_perf_metric_recorded", "metric_name", "recorded_at"),)


class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    error_id: Mapped[uuid.UUID | None] = mapped_column(SAUuid(as_uuid=True), nullable=True)
    severity: Mapped[Severity] = mapped_column(Enum(Severity), nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    budget: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    members: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow, onupdate=utcnow)

    tasks: Mapped[list[ProjectTask]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )
    expenses: Mapped[list[ProjectExpense]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class ProjectTask(Base):
    __tablename__ = "project_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("projects.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(TaskStatus), nullable=False, default=TaskStatus.pending
    )
    due_date: Mapped[date | None] = mapped_column(nullable=True)

    project: Mapped[Project] = relationship(back_populates="tasks")


class ProjectExpense(Base):
    __tablename__ = "project_expenses"

    id: Mapped[uuid.UUID] = mapped_column(
        SAUuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[str] = mapped_column(
        String(128), ForeignKey("projects.id"), nullable=False, index=True
    )
    description: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    amount: Mapped[float] = mapped_column(Float, nullable=False)

    project: Mapped[Project] = relationship(back_populates="expenses")


# --- Module Notes -----------------------------------------------------------
# Telemetry tables are append-mostly: ErrorLogEntry is only ever updated by the
# resolve operation, and nothing in this service deletes telemetry rows.
