"""
sitewatch.auth.evaluator

Authorization Evaluator: pure decisions over a loaded access snapshot.

Responsibilities:
- Single, all-of, any-of and resource/action permission checks.
- Policy decisions with a fixed, non-leaking denial message.
- Role predicates derived from the loaded role only.

Every check answers "no" while there is no principal or while the principal's
access is still loading; callers tell those apart through `authenticated` and
`loading`, never through the check result.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sitewatch.auth.models import AuthorizationDecision, Principal
from sitewatch.auth.permissions import canonical_permission, permission_for
from sitewatch.auth.store import AccessRecord
from sitewatch.db.models import Role


@dataclass(frozen=True, slots=True)
class AccessSnapshot:
    principal: Principal | None = None
    role: Role | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)
    loading: bool = False

    @classmethod
    def signed_out(cls) -> AccessSnapshot:
        return cls()

    @classmethod
    def pending(cls, principal: Principal) -> AccessSnapshot:
        return cls(principal=principal, loading=True)

    @classmethod
    def unresolved(cls, principal: Principal) -> AccessSnapshot:
        # Known principal whose access could not be resolved: everything denied.
        return cls(principal=principal)

    @classmethod
    def from_record(cls, principal: Principal, record: AccessRecord) -> AccessSnapshot:
        return cls(principal=principal, role=record.role, permissions=record.permissions)

    @property
    def authenticated(self) -> bool:
        return self.principal is not None

    @property
    def _ready(self) -> bool:
        return self.principal is not None and not self.loading

    def has_permission(self, permission: str) -> bool:
        if not self._ready:
            return False
        try:
            return canonical_permission(permission) in self.permissions
        except ValueError:
            return False

    def has_all(self, permissions: Iterable[str]) -> bool:
        if not self._ready:
            return False
        return all(self.has_permission(p) for p in permissions)

    def has_any(self, permissions: Iterable[str]) -> bool:
        if not self._ready:
            return False
        return any(self.has_permission(p) for p in permissions)

    def can_perform(self, resource: str, action: str) -> bool:
        try:
            return self.has_permission(permission_for(resource, action))
        except ValueError:
            return False

    def require_permission(self, permission: str) -> AuthorizationDecision:
        if self.principal is not None and self.loading:
            return AuthorizationDecision.wait()
        if self.has_permission(permission):
            return AuthorizationDecision.allow()
        return AuthorizationDecision.deny()

    @property
    def is_admin(self) -> bool:
        return self._ready and self.role == Role.admin

    @property
    def is_manager(self) -> bool:
        return self._ready and self.role == Role.project_manager

    @property
    def is_user(self) -> bool:
        return self._ready and self.role == Role.standard_user
