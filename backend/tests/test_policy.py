import pytest

from core.policy import POLICY, Permission, Role, adjustment_permission, has_permission, parse_role


def test_every_role_has_a_policy_entry():
    assert set(POLICY) == set(Role)


def test_administrator_holds_every_permission():
    assert all(has_permission(Role.ADMINISTRATOR, p) for p in Permission)


@pytest.mark.parametrize(
    "role, permission, allowed",
    [
        (Role.STAFF, Permission.ADJUST_STOCK_UP, True),
        (Role.STAFF, Permission.ADJUST_STOCK_DOWN, False),
        (Role.STAFF, Permission.RECORD_SALES, True),
        (Role.STAFF, Permission.MANAGE_USERS, False),
        (Role.SALE_MANAGER, Permission.ADJUST_STOCK_DOWN, True),
        (Role.SALE_MANAGER, Permission.MANAGE_BRANCHES, True),
        (Role.SALE_MANAGER, Permission.MANAGE_USERS, False),
        (Role.AUDITOR, Permission.VIEW_SALES, True),
        (Role.AUDITOR, Permission.RECORD_SALES, False),
        (Role.AUDITOR, Permission.ADJUST_STOCK_UP, False),
    ],
)
def test_permission_table(role, permission, allowed):
    assert has_permission(role, permission) is allowed


def test_unknown_role_string_falls_back_to_staff():
    assert parse_role("Sale_Manager") is Role.SALE_MANAGER
    assert parse_role("Overlord") is Role.STAFF
    assert has_permission("Overlord", Permission.MANAGE_USERS) is False


def test_adjustment_permission_follows_sign():
    assert adjustment_permission(3) is Permission.ADJUST_STOCK_UP
    assert adjustment_permission(-3) is Permission.ADJUST_STOCK_DOWN
