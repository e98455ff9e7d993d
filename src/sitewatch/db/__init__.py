"""
sitewatch.db

Persistence package (SQLAlchemy async).

Responsibilities:
- Provide ORM models, engine/session setup, and repositories.
- Translate store faults into `UpstreamUnavailable`.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# The rest of the core only relies on point reads, appends, in-place updates and
# filtered/ordered queries, so the backend can be swapped without touching services.
