"""
sitewatch.api.routers.health

Liveness (`/healthz`) and readiness (`/readyz`, store reachable) probes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sitewatch.api.deps import db_session
from sitewatch.errors import UpstreamUnavailable

router = APIRouter()


@router.get("/healthz")
async def healthz() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz")
async def readyz(session: AsyncSession = Depends(db_session)) -> dict[str, str]:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        raise UpstreamUnavailable("readiness_probe") from e
    return {"status": "ready"}
