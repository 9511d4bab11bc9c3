# Overview: Default role-to-permission mappings used when bootstrapping a tenant.

from .definitions import PERMISSION_DEFINITIONS


DEFAULT_ROLE_PERMISSIONS = {
    "admin": [perm[0] for perm in PERMISSION_DEFINITIONS],
    "manager": [
        "VIEW_INVENTORY",
        "ADJUST_INVENTORY",
        "CREATE_SALE",
        "CREATE_CREDIT_SALE",
        "CREATE_PURCHASE",
        "DECIDE_APPROVALS",
        "VIEW_OFFLINE",
        "MANAGE_OFFLINE",
    ],
    "cashier": [
        "VIEW_INVENTORY",
        "CREATE_SALE",
        "VIEW_OFFLINE",
        "MANAGE_OFFLINE",
    ],
}
