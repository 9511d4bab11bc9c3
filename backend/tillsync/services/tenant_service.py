"""
Tenant Service: Business bootstrap and membership lookups

WHY: Every offline device and every replayed action is scoped to a
(business, user) pair, and only ACTIVE memberships may act. This module
owns that lookup plus the bootstrap used by the CLI.

SECURITY INVARIANTS:
1. Every authenticated request has g.business_id and g.user_id set
2. A user acts in a business only through an ACTIVE BusinessUser row
3. Roles are created per business; nothing is shared across tenants
"""

from ..extensions import db
from ..models import Branch, Business, BusinessUser, User
from .permission_service import assign_role, create_default_roles


def get_membership(business_id: int, user_id: int) -> BusinessUser | None:
    return db.session.query(BusinessUser).filter_by(business_id=business_id, user_id=user_id).first()


def is_active_member(business_id: int, user_id: int) -> bool:
    membership = get_membership(business_id, user_id)
    return membership is not None and membership.status == "ACTIVE"


def create_business(
    *,
    name: str,
    owner_username: str,
    branch_name: str = "Main",
    subscription_tier: str = "BUSINESS",
) -> tuple[Business, User, Branch]:
    """
    Create a business with one branch, default roles and an admin owner.

    The owner user is created if the username is new, otherwise reused.
    """
    business = Business(name=name, subscription_tier=subscription_tier, subscription_status="ACTIVE")
    db.session.add(business)
    db.session.flush()

    branch = Branch(business_id=business.id, name=branch_name)
    db.session.add(branch)

    owner = db.session.query(User).filter_by(username=owner_username).first()
    if not owner:
        owner = User(username=owner_username, email=f"{owner_username}@localhost")
        db.session.add(owner)
        db.session.flush()

    roles = create_default_roles(business.id)
    add_member(business.id, owner.id, role=roles["admin"])

    db.session.commit()
    return business, owner, branch


def add_member(business_id: int, user_id: int, *, role=None, status: str = "ACTIVE") -> BusinessUser:
    """Add (or re-activate) a user's membership; flushes, caller commits."""
    membership = get_membership(business_id, user_id)
    if membership:
        membership.status = status
    else:
        membership = BusinessUser(business_id=business_id, user_id=user_id, status=status)
        db.session.add(membership)
    if role is not None:
        assign_role(user_id, role)
    db.session.flush()
    return membership
