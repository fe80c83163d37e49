import pytest

from app.core.permissions import ROLE_PERMISSIONS, Permission, has_permission
from app.models.user import UserRole


def test_every_role_is_mapped():
    assert set(ROLE_PERMISSIONS) == set(UserRole)


@pytest.mark.parametrize("role", [UserRole.ADMIN, UserRole.HR])
def test_administrators_hold_every_permission(role):
    assert all(has_permission(role, p) for p in Permission)


def test_manager_approves_but_does_not_administer():
    assert has_permission(UserRole.MANAGER, Permission.APPROVE_LEAVE)
    assert has_permission(UserRole.MANAGER, Permission.VIEW_TEAM_LEAVE)
    assert not has_permission(UserRole.MANAGER, Permission.MANAGE_LEAVE)
    assert not has_permission(UserRole.MANAGER, Permission.VIEW_ALL_LEAVE)


def test_employee_can_only_request_leave():
    granted = {p for p in Permission if has_permission(UserRole.EMPLOYEE, p)}
    assert granted == {Permission.REQUEST_LEAVE}


def test_role_given_as_string():
    assert has_permission("HR", Permission.MANAGE_POLICIES)
