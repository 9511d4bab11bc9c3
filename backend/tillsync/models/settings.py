from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class BusinessSettings(db.Model):
    """
    Tenant policy documents.

    Each JSON column holds only the keys the tenant overrode; the settings
    service merges them over DEFAULT_POS_POLICIES / DEFAULT_STOCK_POLICIES /
    DEFAULT_APPROVAL_DEFAULTS on read.
    """
    __tablename__ = "business_settings"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, unique=True)

    pos_policies = db.Column(db.JSON, nullable=True)
    stock_policies = db.Column(db.JSON, nullable=True)
    approval_defaults = db.Column(db.JSON, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    business = db.relationship("Business", backref=db.backref("settings", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "business_id": self.business_id,
            "pos_policies": self.pos_policies or {},
            "stock_policies": self.stock_policies or {},
            "approval_defaults": self.approval_defaults or {},
            "updated_at": to_utc_z(self.updated_at),
        }
