"""
sitewatch.auth

Authentication/authorization package.

Responsibilities:
- JWT helpers and validation.
- Permission catalog, Permission Store and Authorization Evaluator.
- Session-bound access tracking and FastAPI auth dependencies.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Authorization checks never raise for a missing principal or permission; only the
# HTTP edge (`auth.deps`) turns a denial into a 401/403 response.
