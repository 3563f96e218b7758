"""
Role/permission policy.

Roles are a closed set; every route asks for one Permission through
`require_permission` (see core.auth) and this table is the only place that
decides who holds it.
"""
from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    ADMINISTRATOR = "Administrator"
    SALE_MANAGER = "Sale_Manager"
    STAFF = "Staff"
    AUDITOR = "Auditor"


class Permission(str, Enum):
    VIEW_INVENTORY = "view_inventory"
    MANAGE_INVENTORY = "manage_inventory"
    ADJUST_STOCK_UP = "adjust_stock_up"
    ADJUST_STOCK_DOWN = "adjust_stock_down"
    DELETE_INVENTORY = "delete_inventory"
    VIEW_SALES = "view_sales"
    RECORD_SALES = "record_sales"
    RECORD_OUTGOING = "record_outgoing"
    MANAGE_BRANCHES = "manage_branches"
    MANAGE_CATEGORIES = "manage_categories"
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"
    VIEW_ANALYTICS = "view_analytics"
    POST_REMARKS = "post_remarks"


_STAFF: FrozenSet[Permission] = frozenset({
    Permission.VIEW_INVENTORY,
    Permission.MANAGE_INVENTORY,
    Permission.ADJUST_STOCK_UP,
    Permission.VIEW_SALES,
    Permission.RECORD_SALES,
    Permission.RECORD_OUTGOING,
    Permission.POST_REMARKS,
})

_MANAGER: FrozenSet[Permission] = _STAFF | {
    Permission.ADJUST_STOCK_DOWN,
    Permission.DELETE_INVENTORY,
    Permission.MANAGE_BRANCHES,
    Permission.MANAGE_CATEGORIES,
    Permission.VIEW_USERS,
    Permission.VIEW_ANALYTICS,
}

POLICY: Dict[Role, FrozenSet[Permission]] = {
    Role.ADMINISTRATOR: frozenset(Permission),
    Role.SALE_MANAGER: _MANAGER,
    Role.STAFF: _STAFF,
    # Auditors read the books but never write them.
    Role.AUDITOR: frozenset({
        Permission.VIEW_INVENTORY,
        Permission.VIEW_SALES,
        Permission.VIEW_ANALYTICS,
    }),
}


def parse_role(value) -> Role:
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return Role.STAFF


def has_permission(role, permission: Permission) -> bool:
    return permission in POLICY.get(parse_role(role), frozenset())


def adjustment_permission(delta: int) -> Permission:
    """Permission needed for a manual adjustment of the given sign."""
    return Permission.ADJUST_STOCK_DOWN if delta < 0 else Permission.ADJUST_STOCK_UP
