from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    WHY: Shared-database multi-tenancy with strict isolation.
    All branches, catalog, stock and offline devices belong to exactly one business.

    SUBSCRIPTION:
    - subscription_tier drives default limits (STARTER, BUSINESS, ENTERPRISE)
    - subscription_status gates offline mode (EXPIRED/SUSPENDED disable it)
    - subscription_limits holds per-tenant overrides merged over tier defaults
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    subscription_tier = db.Column(db.String(16), nullable=False, default="BUSINESS")
    subscription_status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # TRIAL, ACTIVE, GRACE, EXPIRED, SUSPENDED
    subscription_limits = db.Column(db.JSON, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "subscription_tier": self.subscription_tier,
            "subscription_status": self.subscription_status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BusinessUser(db.Model):
    """
    Membership of a user in a business.

    A user may belong to several businesses; only ACTIVE memberships may
    register offline devices or replay queued actions.
    """
    __tablename__ = "business_users"
    __table_args__ = (
        db.UniqueConstraint("business_id", "user_id", name="uq_business_users"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INVITED, DISABLED

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("memberships", lazy=True))
    user = db.relationship("User", backref=db.backref("memberships", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Branch(db.Model):
    """
    Branch (store location) within a business.

    MULTI-TENANT: Branch names are unique within a business, not globally.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("business_id", "name", name="uq_branches_business_name"),
        db.Index("ix_branches_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("branches", lazy=True))

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_list_id": self.price_list_id,
        }
