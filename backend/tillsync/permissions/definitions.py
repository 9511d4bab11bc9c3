# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- INVENTORY --

INVENTORY_PERMISSIONS = [
    (
        "VIEW_INVENTORY",
        "View Inventory",
        "View stock snapshots and movements",
        PermissionCategory.INVENTORY,
    ),
    (
        "ADJUST_INVENTORY",
        "Adjust Inventory",
        "Create stock adjustments (corrections, shrink, etc.); also required to pick a sale batch",
        PermissionCategory.INVENTORY,
    ),
]


# -- SALES --

SALES_PERMISSIONS = [
    (
        "CREATE_SALE",
        "Create Sale",
        "Draft and complete sales",
        PermissionCategory.SALES,
    ),
    (
        "CREATE_CREDIT_SALE",
        "Create Credit Sale",
        "Complete sales with an outstanding balance",
        PermissionCategory.SALES,
    ),
]


# -- PURCHASING --

PURCHASING_PERMISSIONS = [
    (
        "CREATE_PURCHASE",
        "Create Purchase",
        "Create draft purchases from suppliers",
        PermissionCategory.PURCHASING,
    ),
]


# -- APPROVALS --

APPROVAL_PERMISSIONS = [
    (
        "DECIDE_APPROVALS",
        "Decide Approvals",
        "Approve or reject pending approval requests",
        PermissionCategory.APPROVALS,
    ),
]


# -- OFFLINE --

OFFLINE_PERMISSIONS = [
    (
        "VIEW_OFFLINE",
        "View Offline Status",
        "View offline device status, risk overview and conflicts",
        PermissionCategory.OFFLINE,
    ),
    (
        "MANAGE_OFFLINE",
        "Manage Offline Devices",
        "Register and revoke devices, sync queued actions, resolve conflicts",
        PermissionCategory.OFFLINE,
    ),
]


# -- SYSTEM --

SYSTEM_PERMISSIONS = [
    (
        "SYSTEM_ADMIN",
        "System Administration",
        "Full tenant administration",
        PermissionCategory.SYSTEM,
    ),
]


PERMISSION_DEFINITIONS = (
    INVENTORY_PERMISSIONS
    + SALES_PERMISSIONS
    + PURCHASING_PERMISSIONS
    + APPROVAL_PERMISSIONS
    + OFFLINE_PERMISSIONS
    + SYSTEM_PERMISSIONS
)
