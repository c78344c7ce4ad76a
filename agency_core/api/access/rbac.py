"""
Agency Core - Role-Based Access Control (RBAC)

Defines roles, permissions, and authorization logic.
This is the authoritative source for access control.

Authorization decisions at the data boundary use has_permission() only.
The role rank exists for UI-level "at least as senior as" comparisons.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional, Protocol, Tuple, Union

from agency_core.api.errors import PermissionConfigError


# ============================================================
# Permissions
# ============================================================


class Permission(str, Enum):
    """All permissions in the system, as ``verb:scope`` strings."""

    # Own records
    READ_OWN = "read:own"
    WRITE_OWN = "write:own"

    # Tenant (client/agency) scope
    READ_CLIENT = "read:client"
    WRITE_CLIENT = "write:client"
    DELETE_CLIENT = "delete:client"
    ADMIN_CLIENT = "admin:client"
    AUDIT_CLIENT = "audit:client"

    # Global scope
    READ_ALL = "read:all"
    WRITE_ALL = "write:all"
    DELETE_ALL = "delete:all"
    ADMIN_ALL = "admin:all"
    AUDIT_ALL = "audit:all"

    # Reporting
    READ_AGENCY_METRICS = "read:agency_metrics"

    @property
    def verb(self) -> str:
        return self.value.split(":", 1)[0]

    @property
    def scope(self) -> str:
        return self.value.split(":", 1)[1]


WILDCARD_SCOPE = "all"


# ============================================================
# Roles
# ============================================================


class Role(str, Enum):
    """System roles."""

    CEO = "ceo"
    ADMIN = "admin"
    SALES = "sales"
    AGENCY_USER = "agency_user"
    CLIENT_USER = "client_user"


# Coarse seniority only. Never consulted for permission decisions.
ROLE_HIERARCHY: Dict[Role, int] = {
    Role.CLIENT_USER: 1,
    Role.AGENCY_USER: 2,
    Role.SALES: 2,
    Role.ADMIN: 3,
    Role.CEO: 4,
}


# ============================================================
# Role Permission Mappings
# ============================================================


RAW_ROLE_PERMISSIONS: Dict[str, Tuple[str, ...]] = {
    "ceo": ("read:all", "write:all", "delete:all", "admin:all", "audit:all"),
    "admin": ("read:client", "write:client", "delete:client", "admin:client", "audit:client"),
    "sales": ("read:own", "write:own", "read:agency_metrics"),
    "agency_user": ("read:own", "write:own"),
    "client_user": ("read:own",),
}


def build_role_permissions(
    raw: Mapping[str, Iterable[str]],
) -> Dict[Role, Tuple[Permission, ...]]:
    """
    Build the role -> permissions table, validating every entry.

    Raises:
        PermissionConfigError: If a role or permission string is undefined,
            or a defined role has no entry.
    """
    table: Dict[Role, Tuple[Permission, ...]] = {}
    for raw_role, raw_permissions in raw.items():
        try:
            role = Role(raw_role)
        except ValueError:
            raise PermissionConfigError(
                f"Undefined role in permission table: {raw_role!r}",
                code="UNDEFINED_ROLE",
            ) from None

        permissions = []
        for raw_permission in raw_permissions:
            try:
                permission = Permission(raw_permission)
            except ValueError:
                raise PermissionConfigError(
                    f"Role {raw_role!r} references undefined permission {raw_permission!r}",
                    code="UNDEFINED_PERMISSION",
                ) from None
            if permission not in permissions:
                permissions.append(permission)
        table[role] = tuple(permissions)

    missing = set(Role) - set(table)
    if missing:
        raise PermissionConfigError(
            f"Roles without a permission entry: {sorted(r.value for r in missing)}",
            code="MISSING_ROLE",
        )
    return table


ROLE_PERMISSIONS: Dict[Role, Tuple[Permission, ...]] = build_role_permissions(
    RAW_ROLE_PERMISSIONS
)


# ============================================================
# Checks
# ============================================================


class HasPermissions(Protocol):
    permissions: FrozenSet[Permission]


def parse_role(value: Union[str, Role, None]) -> Optional[Role]:
    """Parse a role claim; None if it is not a defined role."""
    if isinstance(value, Role):
        return value
    if not value:
        return None
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def get_role_permissions(role: Union[Role, str]) -> FrozenSet[Permission]:
    """Derive the permission set for a role. Unknown roles get nothing."""
    parsed = parse_role(role)
    if parsed is None:
        return frozenset()
    return frozenset(ROLE_PERMISSIONS[parsed])


def permission_granted(
    permissions: Iterable[Permission], action: Union[Permission, str]
) -> bool:
    """
    True iff ``action`` is literally held, or the matching ``verb:all``
    wildcard is held. Malformed or undefined action strings are denied.
    """
    held = frozenset(permissions)
    try:
        permission = Permission(action)
    except ValueError:
        return False

    if permission in held:
        return True
    return Permission(f"{permission.verb}:{WILDCARD_SCOPE}") in held


def has_permission(user: Optional[HasPermissions], action: Union[Permission, str]) -> bool:
    """Check whether a user (or None for anonymous) may perform ``action``."""
    if user is None:
        return False
    return permission_granted(user.permissions, action)


def has_any_permission(
    user: Optional[HasPermissions], actions: Iterable[Union[Permission, str]]
) -> bool:
    """Check if the user has any of the specified permissions."""
    return any(has_permission(user, action) for action in actions)


def role_rank(role: Union[Role, str]) -> int:
    """Numeric seniority of a role; 0 for unknown roles."""
    parsed = parse_role(role)
    return ROLE_HIERARCHY.get(parsed, 0) if parsed else 0


def is_role_at_least(role: Union[Role, str], minimum: Union[Role, str]) -> bool:
    """UI-level comparison: is ``role`` at least as senior as ``minimum``."""
    required = role_rank(minimum)
    return required > 0 and role_rank(role) >= required


def highest_scope(user: Optional[HasPermissions], verb: str) -> Optional[str]:
    """
    Widest scope the user holds for ``verb``: "all", "client", "own" or None.

    Used by handlers to narrow queries (own rows, tenant rows, everything).
    """
    for scope in (WILDCARD_SCOPE, "client", "own"):
        if has_permission(user, f"{verb}:{scope}"):
            return scope
    return None
