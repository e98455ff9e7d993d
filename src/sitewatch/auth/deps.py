"""
sitewatch.auth.deps

FastAPI dependency functions for authentication and authorization.

Responsibilities:
- Convert an optional bearer token into a typed `Principal`.
- Load the caller's access snapshot through the Permission Store.
- Enforce permissions via reusable dependency factories (403 with a fixed message).
"""

from __future__ import annotations

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.status import HTTP_401_UNAUTHORIZED, HTTP_403_FORBIDDEN

from sitewatch.api.deps import sessionmaker_from_app, settings_dep
from sitewatch.auth.evaluator import AccessSnapshot
from sitewatch.auth.jwt import JwtConfig, JwtValidationError, decode_and_validate
from sitewatch.auth.models import Principal
from sitewatch.auth.permissions import canonical_permission
from sitewatch.auth.store import PermissionStore
from sitewatch.errors import NotFound
from sitewatch.observability.logging import get_logger
from sitewatch.settings import Settings

log = get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


def jwt_cfg(settings: Settings) -> JwtConfig:
    return JwtConfig(
        alg=settings.jwt_alg,
        issuer=settings.jwt_issuer,
        audience=settings.jwt_audience,
        secret=settings.jwt_secret,
    )


def principal_from_token(token: str, settings: Settings) -> Principal:
    payload = decode_and_validate(cfg=jwt_cfg(settings), token=token)
    subject = str(payload.get("sub", ""))
    if not subject:
        raise JwtValidationError("empty subject")
    return Principal(subject=subject, display_name=str(payload.get("name") or ""))


def get_optional_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
    settings: Settings = Depends(settings_dep),
) -> Principal | None:
    # No token means anonymous; a bad token is still an authentication failure.
    if creds is None or not creds.credentials:
        return None
    try:
        principal = principal_from_token(creds.credentials, settings)
    except JwtValidationError as e:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {e}") from e
    structlog.contextvars.bind_contextvars(user_id=principal.subject)
    return principal


def get_principal(principal: Principal | None = Depends(get_optional_principal)) -> Principal:
    if principal is None:
        raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    return principal


async def load_access(
    principal: Principal | None,
    *,
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> AccessSnapshot:
    if principal is None:
        return AccessSnapshot.signed_out()
    store = PermissionStore(session_factory=session_factory, settings=settings)
    try:
        record = await store.load(principal.subject)
    except NotFound:
        log.warning("unknown_principal", user_id=principal.subject)
        return AccessSnapshot.unresolved(principal)
    return AccessSnapshot.from_record(principal, record)


async def get_access(
    principal: Principal | None = Depends(get_optional_principal),
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
    settings: Settings = Depends(settings_dep),
) -> AccessSnapshot:
    return await load_access(principal, session_factory=session_factory, settings=settings)


def require_permission(permission: str):
    required = canonical_permission(permission)

    async def _dep(access: AccessSnapshot = Depends(get_access)) -> AccessSnapshot:
        if not access.authenticated:
            raise HTTPException(status_code=HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
        decision = access.require_permission(required)
        if not decision.allowed:
            # The permission name goes to the log only, never to the caller.
            log.info("access_denied", user_id=access.principal.subject, permission=required)
            raise HTTPException(
                status_code=HTTP_403_FORBIDDEN,
                detail={"reason": decision.reason, "suggested_action": decision.suggested_action},
            )
        return access

    return _dep


# --- Module Notes -----------------------------------------------------------
# Access is resolved per request, so a role change takes effect on the next call.
