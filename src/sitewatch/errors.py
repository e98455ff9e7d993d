"""
sitewatch.errors

Error taxonomy shared by the authorization and observability layers.

Absence of a principal is deliberately not an exception: authorization checks
report it as a denied/false outcome.
"""

from __future__ import annotations


class SitewatchError(Exception):
    pass


class NotFound(SitewatchError):
    def __init__(self, kind: str, ident: str) -> None:
        super().__init__(f"{kind} not found: {ident}")
        self.kind = kind
        self.ident = ident


class UpstreamUnavailable(SitewatchError):
    def __init__(self, operation: str) -> None:
        super().__init__(f"store unavailable during {operation}")
        self.operation = operation


class ValidationFailure(SitewatchError):
    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) or "invalid input")
        self.errors = list(errors)
