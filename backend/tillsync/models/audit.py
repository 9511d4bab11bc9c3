from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class AuditEvent(db.Model):
    """
    Append-only audit trail.

    - No updates/deletes of existing events.
    - occurred_at is business time; created_at is system time (DB default).
    - metadata_json is small, structured context (action_type, conflict_reason, device_id, ...).
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_business_occurred", "business_id", "occurred_at"),
        db.Index("ix_audit_events_resource", "resource_type", "resource_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # What happened
    action = db.Column(db.String(64), nullable=False, index=True)  # e.g., OFFLINE_ACTION_APPLIED, SALE_COMPLETE
    outcome = db.Column(db.String(16), nullable=False, default="SUCCESS")  # SUCCESS, FAILURE

    # What it refers to (generic pointer)
    resource_type = db.Column(db.String(64), nullable=False)
    resource_id = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reason = db.Column(db.String(255), nullable=True)
    metadata_json = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "action": self.action,
            "outcome": self.outcome,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
            "reason": self.reason,
            "metadata": self.metadata_json or {},
        }
