"""
Agency Core - Access Module

Role-based access control: roles, permissions and capability checks.

Usage:
    from agency_core.api.access import Permission, has_permission

    if has_permission(user, Permission.AUDIT_CLIENT):
        ...
"""

from agency_core.api.access.rbac import (
    Role,
    Permission,
    ROLE_HIERARCHY,
    ROLE_PERMISSIONS,
    get_role_permissions,
    has_permission,
    has_any_permission,
    highest_scope,
    is_role_at_least,
    parse_role,
)

__all__ = [
    "Role",
    "Permission",
    "ROLE_HIERARCHY",
    "ROLE_PERMISSIONS",
    "get_role_permissions",
    "has_permission",
    "has_any_permission",
    "highest_scope",
    "is_role_at_least",
    "parse_role",
]
