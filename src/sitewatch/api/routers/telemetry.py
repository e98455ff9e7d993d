"""
sitewatch.api.routers.telemetry

Write path for client-side telemetry.

Activity and performance records need an authenticated caller; error reports are
accepted anonymously and simply carry no user fields.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from starlette.status import HTTP_201_CREATED

from sitewatch.api.deps import collector_dep
from sitewatch.auth.deps import get_optional_principal, get_principal
from sitewatch.auth.models import Principal
from sitewatch.telemetry.collector import TelemetryCollector
from sitewatch.telemetry.schemas import ActivityInput, ErrorInput, PerformanceInput

router = APIRouter(prefix="/v1/telemetry", tags=["telemetry"])


# User fields in the body are ignored: records are attributed to the caller only.
_AS_CALLER = {"user_id": None, "user_name": None}


class RecordCreated(BaseModel):
    id: uuid.UUID | None


@router.post("/activity", response_model=RecordCreated, status_code=HTTP_201_CREATED)
async def log_activity(
    body: ActivityInput,
    principal: Principal = Depends(get_principal),
    collector: TelemetryCollector = Depends(collector_dep),
) -> RecordCreated:
    record = body.model_copy(update=_AS_CALLER)
    return RecordCreated(id=await collector.log_user_activity(record, principal=principal))


@router.post("/errors", response_model=RecordCreated, status_code=HTTP_201_CREATED)
async def log_error(
    body: ErrorInput,
    principal: Principal | None = Depends(get_optional_principal),
    collector: TelemetryCollector = Depends(collector_dep),
) -> RecordCreated:
    record = body.model_copy(update=_AS_CALLER)
    return RecordCreated(id=await collector.log_error(record, principal=principal))


@router.post("/performance", response_model=RecordCreated, status_code=HTTP_201_CREATED)
async def log_performance(
    body: PerformanceInput,
    principal: Principal = Depends(get_principal),
    collector: TelemetryCollector = Depends(collector_dep),
) -> RecordCreated:
    return RecordCreated(id=await collector.log_performance_metric(body))
