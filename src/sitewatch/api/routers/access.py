"""
sitewatch.api.routers.access

Authorization endpoints.

Responsibilities:
- Report the caller's role, effective permissions and role predicates.
- Answer permission / resource-action checks with a non-leaking decision.
- Admin operations: change a user's role, grant or revoke explicit permissions
  (each recorded as a user activity).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sitewatch.api.deps import collector_dep, sessionmaker_from_app, settings_dep
from sitewatch.auth.deps import get_access, get_principal, require_permission
from sitewatch.auth.evaluator import AccessSnapshot
from sitewatch.auth.models import AuthorizationDecision, Principal
from sitewatch.auth.permissions import Permission, canonical_permission
from sitewatch.auth.store import PermissionStore
from sitewatch.db.models import Role
from sitewatch.settings import Settings
from sitewatch.telemetry.collector import TelemetryCollector

router = APIRouter(prefix="/v1/access", tags=["access"])


class AccessResponse(BaseModel):
    user_id: str
    display_name: str
    role: Role | None
    permissions: list[str]
    is_admin: bool
    is_manager: bool
    is_user: bool


class CheckRequest(BaseModel):
    permission: str | None = Field(default=None, max_length=128)
    resource: str | None = Field(default=None, max_length=64)
    action: str | None = Field(default=None, max_length=64)

    @model_validator(mode="after")
    def _one_form(self) -> CheckRequest:
        by_pair = self.resource is not None or self.action is not None
        if (self.permission is None) == (not by_pair):
            raise ValueError("give either permission, or resource and action")
        if by_pair and (self.resource is None or self.action is None):
            raise ValueError("resource and action go together")
        return self


class DecisionResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    suggested_action: str | None = None
    pending: bool = False


class RoleChangeRequest(BaseModel):
    role: Role


class RoleChangeResponse(BaseModel):
    user_id: str
    role: Role


class GrantResponse(BaseModel):
    user_id: str
    permission: str
    changed: bool


def store_dep(
    session_factory: async_sessionmaker[AsyncSession] = Depends(sessionmaker_from_app),
    settings: Settings = Depends(settings_dep),
) -> PermissionStore:
    return PermissionStore(session_factory=session_factory, settings=settings)


def _audit(
    collector: TelemetryCollector,
    principal: Principal,
    *,
    action: str,
    user_id: str,
    details: dict[str, str],
) -> None:
    collector.fire_and_forget(
        collector.log_user_activity(
            {
                "action": action,
                "resource": "user_access",
                "resource_id": user_id,
                "metadata": details,
            },
            principal=principal,
        ),
        operation="audit_access_change",
    )


@router.get("/me", response_model=AccessResponse)
async def me(
    principal: Principal = Depends(get_principal),
    access: AccessSnapshot = Depends(get_access),
) -> AccessResponse:
    return AccessResponse(
        user_id=principal.subject,
        display_name=principal.display_name,
        role=access.role,
        permissions=sorted(access.permissions),
        is_admin=access.is_admin,
        is_manager=access.is_manager,
        is_user=access.is_user,
    )


@router.post("/check", response_model=DecisionResponse)
async def check(
    body: CheckRequest,
    access: AccessSnapshot = Depends(get_access),
) -> DecisionResponse:
    # Anonymous callers get a plain denial, never a 401: absence of a principal is a "no".
    if body.permission is not None:
        decision = access.require_permission(body.permission)
    elif access.can_perform(body.resource or "", body.action or ""):
        decision = AuthorizationDecision.allow()
    else:
        decision = AuthorizationDecision.deny()
    return DecisionResponse(
        allowed=decision.allowed,
        reason=decision.reason,
        suggested_action=decision.suggested_action,
        pending=decision.pending,
    )


@router.put("/users/{user_id}/role", response_model=RoleChangeResponse)
async def change_role(
    user_id: str,
    body: RoleChangeRequest,
    access: AccessSnapshot = Depends(require_permission(Permission.manage_users)),
    store: PermissionStore = Depends(store_dep),
    collector: TelemetryCollector = Depends(collector_dep),
) -> RoleChangeResponse:
    role = await store.set_role(user_id, body.role)
    _audit(
        collector, access.principal, action="update", user_id=user_id, details={"role": str(role)}
    )
    return RoleChangeResponse(user_id=user_id, role=role)


@router.post("/users/{user_id}/grants/{permission}", response_model=GrantResponse)
async def grant_permission(
    user_id: str,
    permission: str,
    access: AccessSnapshot = Depends(require_permission(Permission.manage_users)),
    store: PermissionStore = Depends(store_dep),
    collector: TelemetryCollector = Depends(collector_dep),
) -> GrantResponse:
    added = await store.grant(user_id, permission, granted_by=access.principal.subject)
    canonical = canonical_permission(permission)
    _audit(
        collector, access.principal, action="create", user_id=user_id, details={"grant": canonical}
    )
    return GrantResponse(user_id=user_id, permission=canonical, changed=added)


@router.delete("/users/{user_id}/grants/{permission}", response_model=GrantResponse)
async def revoke_permission(
    user_id: str,
    permission: str,
    access: AccessSnapshot = Depends(require_permission(Permission.manage_users)),
    store: PermissionStore = Depends(store_dep),
    collector: TelemetryCollector = Depends(collector_dep),
) -> GrantResponse:
    removed = await store.revoke(user_id, permission)
    canonical = canonical_permission(permission)
    _audit(
        collector, access.principal, action="delete", user_id=user_id, details={"grant": canonical}
    )
    return GrantResponse(user_id=user_id, permission=canonical, changed=removed)
