"""
Role-based permission table.

Routers ask for a Permission instead of listing roles, so the mapping
from role to capability lives in one place.
"""
import enum
from typing import Dict, FrozenSet

from app.models.user import UserRole


class Permission(str, enum.Enum):
    REQUEST_LEAVE = "request_leave"
    VIEW_ALL_LEAVE = "view_all_leave"
    VIEW_TEAM_LEAVE = "view_team_leave"
    APPROVE_LEAVE = "approve_leave"
    MANAGE_LEAVE = "manage_leave"
    MANAGE_POLICIES = "manage_policies"
    MANAGE_BALANCES = "manage_balances"
    VIEW_AUDIT_LOGS = "view_audit_logs"


ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[Permission]] = {
    UserRole.ADMIN: frozenset(Permission),
    UserRole.HR: frozenset(Permission),
    UserRole.MANAGER: frozenset({
        Permission.REQUEST_LEAVE,
        Permission.VIEW_TEAM_LEAVE,
        Permission.APPROVE_LEAVE,
    }),
    UserRole.EMPLOYEE: frozenset({
        Permission.REQUEST_LEAVE,
    }),
}


def has_permission(role: UserRole, permission: Permission) -> bool:
    return permission in ROLE_PERMISSIONS[UserRole(role)]
