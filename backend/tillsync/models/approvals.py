from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class Approval(db.Model):
    """
    Human sign-off request.

    Created by the sales and stock pipelines when a tenant approval policy
    applies (discount thresholds, stock adjustments). Offline actions parked
    in CONFLICT/APPROVAL_REQUIRED reference one of these by id and are
    settled by polling its status.
    """
    __tablename__ = "approvals"
    __table_args__ = (
        db.Index("ix_approvals_target", "business_id", "target_type", "target_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    action_type = db.Column(db.String(32), nullable=False)  # SALE_DISCOUNT, STOCK_ADJUSTMENT
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, APPROVED, REJECTED

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    decided_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    amount = db.Column(db.Integer, nullable=True)
    percent = db.Column(db.Float, nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)

    target_type = db.Column(db.String(32), nullable=True)
    target_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "action_type": self.action_type,
            "status": self.status,
            "requested_by_user_id": self.requested_by_user_id,
            "decided_by_user_id": self.decided_by_user_id,
            "decided_at": to_utc_z(self.decided_at) if self.decided_at else None,
            "amount": self.amount,
            "percent": self.percent,
            "reason": self.reason,
            "target_type": self.target_type,
            "target_id": self.target_id,
            "created_at": to_utc_z(self.created_at),
        }
