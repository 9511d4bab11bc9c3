from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z, utcnow


class OfflineDevice(db.Model):
    """
    Registered POS terminal allowed to queue actions while disconnected.

    LIFECYCLE:
    - ACTIVE -> REVOKED (explicit operator action)
    - ACTIVE -> EXPIRED (offline duration ceiling breached, detected lazily on the next sync)
    - Re-registration by the owning (business, user) pair reactivates to ACTIVE

    last_seen_at is the only anchor for the offline duration ceiling.
    permissions_snapshot is what the device was allowed to do when last seen;
    replay never trusts it and always re-resolves permissions.
    """
    __tablename__ = "offline_devices"
    __table_args__ = (
        db.Index("ix_offline_devices_business_user", "business_id", "user_id"),
        db.Index("ix_offline_devices_business_status", "business_id", "status"),
    )

    id = db.Column(db.String(64), primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    device_name = db.Column(db.String(120), nullable=False)
    device_key = db.Column(db.String(128), nullable=False, unique=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, REVOKED, EXPIRED
    permissions_snapshot = db.Column(db.JSON, nullable=True)

    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<OfflineDevice id={self.id!r} status={self.status} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "user_id": self.user_id,
            "device_name": self.device_name,
            "status": self.status,
            "permissions_snapshot": self.permissions_snapshot,
            "last_seen_at": to_utc_z(self.last_seen_at) if self.last_seen_at else None,
            "created_at": to_utc_z(self.created_at),
            "revoked_at": to_utc_z(self.revoked_at) if self.revoked_at else None,
        }


class OfflineAction(db.Model):
    """
    One business action queued by a device while offline.

    IDEMPOTENCY: (business_id, device_id, checksum) is unique. A resubmitted
    action collides on insert and the stored record is returned instead of
    being replayed. This constraint is the only at-most-once guarantee.

    STATUS:
    - PENDING at intake
    - each replay attempt assigns exactly one of APPLIED, CONFLICT, REJECTED, FAILED
    - APPLIED is final; CONFLICT/REJECTED may be re-resolved by an operator
    """
    __tablename__ = "offline_actions"
    __table_args__ = (
        db.UniqueConstraint("business_id", "device_id", "checksum", name="uq_offline_actions_checksum"),
        db.Index("ix_offline_actions_device_status", "business_id", "device_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    device_id = db.Column(db.String(64), db.ForeignKey("offline_devices.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    action_type = db.Column(db.String(32), nullable=False)  # SALE_COMPLETE, PURCHASE_DRAFT, STOCK_ADJUSTMENT
    payload = db.Column(db.JSON, nullable=False)
    checksum = db.Column(db.String(128), nullable=False)
    local_audit_id = db.Column(db.String(128), nullable=True)
    provisional_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    result = db.Column(db.JSON, nullable=True)
    conflict_reason = db.Column(db.String(32), nullable=True)
    conflict_payload = db.Column(db.JSON, nullable=True)
    error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    applied_at = db.Column(db.DateTime(timezone=True), nullable=True)

    device = db.relationship("OfflineDevice", backref=db.backref("actions", lazy=True))

    def to_result(self) -> dict:
        """Per-action entry of the sync response."""
        return {
            "id": self.id,
            "action_type": self.action_type,
            "checksum": self.checksum,
            "local_audit_id": self.local_audit_id,
            "status": self.status,
            "result": self.result,
            "conflict_reason": self.conflict_reason,
            "error_message": self.error_message,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "device_id": self.device_id,
            "user_id": self.user_id,
            "action_type": self.action_type,
            "payload": self.payload,
            "checksum": self.checksum,
            "local_audit_id": self.local_audit_id,
            "provisional_at": to_utc_z(self.provisional_at) if self.provisional_at else None,
            "status": self.status,
            "result": self.result,
            "conflict_reason": self.conflict_reason,
            "conflict_payload": self.conflict_payload,
            "error_message": self.error_message,
            "created_at": to_utc_z(self.created_at),
            "synced_at": to_utc_z(self.synced_at) if self.synced_at else None,
            "applied_at": to_utc_z(self.applied_at) if self.applied_at else None,
        }
