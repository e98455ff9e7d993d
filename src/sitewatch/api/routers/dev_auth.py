from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_404_NOT_FOUND

from sitewatch.api.deps import sessionmaker_from_app, settings_dep
from sitewatch.auth.deps import jwt_cfg
from sitewatch.auth.jwt import issue_token
from sitewatch.db.models import Role
from sitewatch.db.repositories.access import AccountRepo
from sitewatch.db.session import run_write
from sitewatch.settings import Settings

router = APIRouter(prefix="/v1/dev", tags=["dev"])


class DevTokenRequest(BaseModel):
    subject: str = Field(min_length=1, max_length=128)
    display_name: str = Field(default="", max_length=256)
    # Only applied when given; an existing account otherwise keeps its role.
    role: Role | None = None
    ttl_minutes: int = Field(default=60, ge=1, le=24 * 60)


class DevTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    role: Role


@router.post("/token", response_model=DevTokenResponse)
async def mint_dev_token(
    body: DevTokenRequest,
    settings: Settings = Depends(settings_dep),
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
) -> DevTokenResponse:
    if settings.env == "prod":
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Not found")

    display_name = body.display_name or body.subject

    async def work(session: AsyncSession) -> Role:
        acct = await AccountRepo(session).upsert(
            user_id=body.subject, display_name=display_name, role=body.role
        )
        return acct.role

    role = await run_write(session_factory, work, operation="dev_token", settings=settings)
    token = issue_token(
        cfg=jwt_cfg(settings),
        subject=body.subject,
        name=display_name,
        ttl=timedelta(minutes=body.ttl_minutes),
    )
    return DevTokenResponse(access_token=token, role=role)
