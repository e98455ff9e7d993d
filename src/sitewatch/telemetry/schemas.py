"""
sitewatch.telemetry.schemas

Input and view models for telemetry records.

Responsibilities:
- Validate activity / error / performance / system-metrics input (pydantic).
- Convert pydantic errors into `ValidationFailure`.
- Provide read views of stored records for feeds, analytics and the API.
"""

from __future__ import annotations

import math
import uuid
from collections.abc import Mapping
from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from sitewatch.db.models import NetworkStatus, Severity
from sitewatch.errors import ValidationFailure

KNOWN_ACTIONS = frozenset(
    {"create", "read", "update", "delete", "navigate", "login", "logout", "export", "import"}
)

M = TypeVar("M", bound=BaseModel)


def _describe(err: Any) -> str:
    where = ".".join(str(p) for p in err["loc"]) or "record"
    return f"{where}: {err['msg']}"


def parse_input(model: type[M], record: M | Mapping[str, Any]) -> M:
    if isinstance(record, model):
        return record
    try:
        data = record.model_dump() if isinstance(record, BaseModel) else dict(record)
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure([_describe(err) for err in e.errors()]) from e
    except (TypeError, ValueError) as e:
        raise ValidationFailure([str(e)]) from e


class ActivityInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str | None = None
    user_name: str | None = None
    action: str = Field(min_length=1, max_length=64)
    resource: str = Field(min_length=1, max_length=128)
    resource_id: str | None = Field(default=None, max_length=128)
    duration_ms: float | None = Field(default=None, ge=0)
    success: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str = Field(min_length=1)
    severity: Severity
    stack: str | None = None
    component: str | None = Field(default=None, max_length=256)
    action: str | None = Field(default=None, max_length=256)
    user_id: str | None = None
    user_name: str | None = None
    tags: list[str] = Field(default_factory=list)


class PerformanceInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric_name: str = Field(min_length=1, max_length=128)
    value: float = Field(allow_inf_nan=False)
    unit: str = Field(default="ms", min_length=1, max_length=16)
    context: dict[str, Any] = Field(default_factory=dict)


class SystemMetricsInput(BaseModel):
    model_config = ConfigDict(extra="forbid")

    cpu: float = Field(ge=0, le=100)
    memory: float = Field(ge=0)
    active_users: int | None = Field(default=None, ge=0)
    # Derived from recent telemetry when the reporter leaves them out.
    response_time: float | None = Field(default=None, ge=0)
    error_rate: float | None = Field(default=None, ge=0)
    network_status: NetworkStatus = NetworkStatus.online
    battery_level: float | None = Field(default=None, ge=0, le=100)
    connection_type: str | None = Field(default=None, max_length=32)

    @field_validator("cpu", "memory", "response_time", "error_rate")
    @classmethod
    def _finite(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError("must be a finite number")
        return v


class SystemMetricsView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    cpu: float
    memory: float
    active_users: int
    response_time: float
    error_rate: float
    network_status: NetworkStatus
    battery_level: float | None = None
    connection_type: str | None = None
    created_at: datetime


class ErrorLogView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    message: str
    stack: str | None = None
    severity: Severity
    user_id: str | None = None
    user_name: str | None = None
    component: str | None = None
    action: str | None = None
    environment: str
    tags: list[str] = Field(default_factory=list)
    resolved: bool
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime


class ActivityView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    user_name: str
    action: str
    resource: str
    resource_id: str | None = None
    duration_ms: float | None = None
    success: bool
    created_at: datetime
