"""
sitewatch.auth.models

Auth domain models.

Responsibilities:
- Define the authenticated identity type (`Principal`).
- Define the authorization decision returned by policy checks.
"""

from __future__ import annotations

from dataclasses import dataclass

from sitewatch.db.models import Role

__all__ = ["AuthorizationDecision", "Principal", "Role"]

DENIED_REASON = "You do not have permission to perform this action."
DENIED_SUGGESTION = "Contact your administrator to request access."
PENDING_REASON = "Access rights are still loading."
PENDING_SUGGESTION = "Retry once access rights have loaded."


@dataclass(frozen=True, slots=True)
class Principal:
    """
    Authenticated caller identity.

    The role is deliberately not carried here: it is fetched from the permission
    store, because it can change while the principal stays signed in.
    """

    subject: str
    display_name: str = ""


@dataclass(frozen=True, slots=True)
class AuthorizationDecision:
    allowed: bool
    reason: str | None = None
    suggested_action: str | None = None
    pending: bool = False

    @classmethod
    def allow(cls) -> AuthorizationDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls) -> AuthorizationDecision:
        return cls(allowed=False, reason=DENIED_REASON, suggested_action=DENIED_SUGGESTION)

    @classmethod
    def wait(cls) -> AuthorizationDecision:
        return cls(
            allowed=False,
            reason=PENDING_REASON,
            suggested_action=PENDING_SUGGESTION,
            pending=True,
        )
