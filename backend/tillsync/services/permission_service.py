# Overview: Service-layer operations for permission; role bootstrap and permission resolution.

"""
Permission Resolution with Multi-Tenant Support

WHY: Enforce role-based access control per business. The offline engine
re-resolves a user's permissions at replay time, so this module is the
single source of truth for "what may this user do right now".

DESIGN PRINCIPLES:
- Fail closed: Deny by default, require explicit permission grant
- Tenant isolation: roles and overrides are scoped by business_id
- DENY overrides beat role grants; protected permissions ignore overrides
"""

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Role, UserRole, RolePermission, Permission, UserPermissionOverride
from ..permissions import PERMISSION_DEFINITIONS, DEFAULT_ROLE_PERMISSIONS, validate_permission_code


# Admin-level permissions cannot be altered by per-user overrides.
PROTECTED_PERMISSIONS = {
    "SYSTEM_ADMIN",
}


class PermissionDeniedError(Exception):
    """Raised when user lacks required permission."""
    pass


@dataclass
class UserAccess:
    """Resolved access for one user in one business."""
    permissions: list[str] = field(default_factory=list)
    role_ids: list[int] = field(default_factory=list)

    def has(self, permission_code: str) -> bool:
        return permission_code in self.permissions

    def to_dict(self) -> dict:
        return {"permissions": list(self.permissions), "role_ids": list(self.role_ids)}


def initialize_permissions() -> None:
    """Create Permission rows for every definition (idempotent)."""
    existing = {p.code for p in db.session.query(Permission).all()}
    for code, name, description, category in PERMISSION_DEFINITIONS:
        if code in existing:
            continue
        db.session.add(Permission(code=code, name=name, description=description, category=category))
    db.session.flush()


def create_default_roles(business_id: int) -> dict[str, Role]:
    """
    Ensure admin/manager/cashier roles exist for a business and carry their
    default permissions. Safe to call repeatedly.
    """
    initialize_permissions()
    permissions_by_code = {p.code: p for p in db.session.query(Permission).all()}

    roles: dict[str, Role] = {}
    for role_name, codes in DEFAULT_ROLE_PERMISSIONS.items():
        role = db.session.query(Role).filter_by(business_id=business_id, name=role_name).first()
        if not role:
            role = Role(business_id=business_id, name=role_name, description=f"Default {role_name} role")
            db.session.add(role)
            db.session.flush()

        granted = {
            rp.permission_id
            for rp in db.session.query(RolePermission).filter_by(role_id=role.id).all()
        }
        for code in codes:
            permission = permissions_by_code[code]
            if permission.id not in granted:
                db.session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        roles[role_name] = role

    db.session.flush()
    return roles


def assign_role(user_id: int, role: Role) -> UserRole:
    existing = db.session.query(UserRole).filter_by(user_id=user_id, role_id=role.id).first()
    if existing:
        return existing
    user_role = UserRole(user_id=user_id, role_id=role.id)
    db.session.add(user_role)
    db.session.flush()
    return user_role


def resolve_user_access(user_id: int, business_id: int) -> UserAccess:
    """
    Get all permission codes and role ids for a user within a business.

    Collects the union of the user's business roles, then applies active
    per-user GRANT/DENY overrides.
    """
    role_rows = (
        db.session.query(Role)
        .join(UserRole, UserRole.role_id == Role.id)
        .filter(UserRole.user_id == user_id, Role.business_id == business_id)
        .all()
    )
    role_ids = sorted(role.id for role in role_rows)

    permission_codes: set[str] = set()
    if role_ids:
        rows = (
            db.session.query(Permission.code)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .filter(RolePermission.role_id.in_(role_ids))
            .all()
        )
        permission_codes.update(code for (code,) in rows)

    overrides = db.session.query(UserPermissionOverride).filter_by(
        business_id=business_id,
        user_id=user_id,
        is_active=True,
    ).all()

    for override in overrides:
        # Never allow overrides to change protected permissions
        if override.permission_code in PROTECTED_PERMISSIONS:
            continue
        if override.override_type == "GRANT":
            permission_codes.add(override.permission_code)
        elif override.override_type == "DENY":
            permission_codes.discard(override.permission_code)

    return UserAccess(permissions=sorted(permission_codes), role_ids=role_ids)


def user_has_permission(user_id: int, business_id: int, permission_code: str) -> bool:
    return resolve_user_access(user_id, business_id).has(permission_code)


def require_permission(user_id: int, business_id: int, permission_code: str) -> None:
    """Raise PermissionDeniedError unless the user holds permission_code in the business."""
    if not user_has_permission(user_id, business_id, permission_code):
        raise PermissionDeniedError(f"Permission denied: {permission_code}")


def set_permission_override(
    *,
    business_id: int,
    user_id: int,
    permission_code: str,
    override_type: str,
    reason: str | None = None,
) -> UserPermissionOverride:
    """
    Grant or deny a permission via per-user override.

    override_type must be "GRANT" or "DENY".
    Admin-level permissions cannot be altered via overrides.
    """
    if permission_code in PROTECTED_PERMISSIONS:
        raise ValueError("Permission overrides cannot modify admin permissions")
    if override_type not in ("GRANT", "DENY"):
        raise ValueError("override_type must be GRANT or DENY")
    if not validate_permission_code(permission_code):
        raise ValueError(f"Unknown permission: {permission_code}")

    override = db.session.query(UserPermissionOverride).filter_by(
        business_id=business_id,
        user_id=user_id,
        permission_code=permission_code,
    ).first()
    if override:
        override.override_type = override_type
        override.reason = reason
        override.is_active = True
    else:
        override = UserPermissionOverride(
            business_id=business_id,
            user_id=user_id,
            permission_code=permission_code,
            override_type=override_type,
            reason=reason,
        )
        db.session.add(override)

    db.session.commit()
    return override
