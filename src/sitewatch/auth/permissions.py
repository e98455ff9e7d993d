"""
sitewatch.auth.permissions

Permission catalog and role bundles.

Responsibilities:
- Define the known `resource:action` permissions of the construction app.
- Canonicalize legacy `action_resource` names (e.g. `edit_rab`) to `resource:action`.
- Map each role to the permission bundle it implicitly grants.
"""

from __future__ import annotations

import enum
import re

from sitewatch.db.models import Role

_SEGMENT = re.compile(r"^[a-z][a-z0-9_]*$")


class Permission(enum.StrEnum):
    # Member names keep the legacy identifiers; values are canonical.
    view_dashboard = "dashboard:view"
    view_rab = "rab:view"
    edit_rab = "rab:edit"
    approve_rab = "rab:approve"
    delete_rab = "rab:delete"
    view_gantt = "gantt:view"
    view_daily_reports = "daily_reports:view"
    create_daily_reports = "daily_reports:create"
    view_progress = "progress:view"
    update_progress = "progress:update"
    view_attendance = "attendance:view"
    manage_attendance = "attendance:manage"
    view_finances = "finances:view"
    manage_expenses = "expenses:manage"
    view_evm = "evm:view"
    view_logistics = "logistics:view"
    manage_logistics = "logistics:manage"
    create_po = "po:create"
    approve_po = "po:approve"
    manage_inventory = "inventory:manage"
    view_documents = "documents:view"
    manage_documents = "documents:manage"
    delete_documents = "documents:delete"
    delete_projects = "projects:delete"
    view_reports = "reports:view"
    view_users = "users:view"
    manage_users = "users:manage"
    view_master_data = "master_data:view"
    manage_master_data = "master_data:manage"
    view_audit_trail = "audit_trail:view"
    view_monitoring = "monitoring:view"
    manage_monitoring = "monitoring:manage"


def canonical_permission(raw: str) -> str:
    """
    Normalize a permission identifier to `resource:action`.

    Accepts the canonical form or the legacy `action_resource` form; anything
    else raises `ValueError`. Comparison after normalization is exact equality.
    """

    value = str(raw).strip()
    if ":" in value:
        resource, _, action = value.partition(":")
    elif "_" in value:
        action, _, resource = value.partition("_")
    else:
        raise ValueError(f"malformed permission: {raw!r}")
    if not (_SEGMENT.match(resource) and _SEGMENT.match(action)):
        raise ValueError(f"malformed permission: {raw!r}")
    return f"{resource}:{action}"


def permission_for(resource: str, action: str) -> str:
    return canonical_permission(f"{resource}:{action}")


_STANDARD_USER = frozenset(
    {
        Permission.view_dashboard,
        Permission.view_rab,
        Permission.view_gantt,
        Permission.view_daily_reports,
        Permission.view_progress,
        Permission.view_attendance,
        Permission.view_finances,
        Permission.view_evm,
        Permission.view_logistics,
        Permission.view_documents,
        Permission.view_reports,
    }
)

_PROJECT_MANAGER = _STANDARD_USER | {
    Permission.edit_rab,
    Permission.approve_rab,
    Permission.create_daily_reports,
    Permission.update_progress,
    Permission.manage_attendance,
    Permission.manage_expenses,
    Permission.manage_logistics,
    Permission.create_po,
    Permission.approve_po,
    Permission.manage_inventory,
    Permission.manage_documents,
    Permission.delete_documents,
    Permission.view_users,
    Permission.view_master_data,
    Permission.view_audit_trail,
    Permission.view_monitoring,
}

_ADMIN = frozenset(Permission)


_BUNDLES: dict[Role, frozenset[Permission]] = {
    Role.admin: _ADMIN,
    Role.project_manager: _PROJECT_MANAGER,
    Role.standard_user: _STANDARD_USER,
}


def role_permissions(role: Role) -> frozenset[str]:
    """Permission bundle implied by a role (canonical strings)."""

    return frozenset(str(p) for p in _BUNDLES.get(role, frozenset()))


# --- Module Notes -----------------------------------------------------------
# Delete capabilities are dedicated permissions; they are never implied by a
# view permission.
