# Overview: Service-layer operations for offline devices; registration, revocation and heartbeats.

from __future__ import annotations

import secrets
import uuid

from ..extensions import db
from ..models import OfflineDevice
from tillsync.time_utils import parse_iso_datetime, utcnow
from .audit_service import AuditRecord
from .offline_collaborators import OfflineCollaborators
from .subscription_service import SubscriptionLimitError
from .tenant_service import is_active_member
"""
Offline Device Invariants (authoritative)

- A device belongs to exactly one (business, user) pair; lookups always filter by both
  except revocation, which any operator of the business may perform.
- Status moves ACTIVE -> REVOKED or ACTIVE -> EXPIRED; only re-registration
  by the owner brings a device back to ACTIVE.
- Registering a new device counts against the subscription's offline_devices
  limit. Re-activating an owned device does not take a new slot.
- permissions_snapshot is informational. Nothing trusts it at replay time.
"""


DEVICE_STATUSES = {"ACTIVE", "REVOKED", "EXPIRED"}
HEARTBEAT_STATUSES = {"ONLINE", "OFFLINE"}


class OfflineForbiddenError(Exception):
    """Caller may not use offline mode right now (subscription, membership, device state)."""
    pass


class OfflineRequestError(Exception):
    """Request is malformed or references something that does not exist."""
    pass


def _new_device_key() -> str:
    return f"dev-{secrets.token_hex(16)}"


class DeviceRegistry:
    """Lifecycle of the POS terminals allowed to queue work while offline."""

    def __init__(self, collaborators: OfflineCollaborators | None = None):
        self.collaborators = collaborators or OfflineCollaborators.default()

    def _audit(self, business_id: int, user_id: int, action: str, device_id: str, *, outcome: str = "SUCCESS", metadata: dict | None = None) -> None:
        self.collaborators.audit.log_event(AuditRecord(
            business_id=business_id,
            user_id=user_id,
            action=action,
            outcome=outcome,
            resource_type="OfflineDevice",
            resource_id=device_id,
            metadata={"offline": True, **(metadata or {})},
        ))

    def get_owned_device(self, business_id: int, user_id: int, device_id: str) -> OfflineDevice | None:
        return db.session.query(OfflineDevice).filter_by(
            id=device_id,
            business_id=business_id,
            user_id=user_id,
        ).first()

    def register_device(
        self,
        business_id: int,
        user_id: int,
        device_name: str,
        device_id: str | None = None,
    ) -> OfflineDevice:
        """
        Register a device, or re-activate one the caller already owns.

        Raises OfflineForbiddenError when offline mode is not available for
        this subscription, the membership is not ACTIVE, or the device
        ceiling is reached.
        """
        if not device_name or not str(device_name).strip():
            raise OfflineRequestError("device_name is required")

        subscription = self.collaborators.subscriptions.get_subscription(business_id)
        if not subscription or not subscription.offline_enabled:
            raise OfflineForbiddenError("Offline mode not enabled for this subscription.")
        if not is_active_member(business_id, user_id):
            raise OfflineForbiddenError("User not active for this business.")

        existing = self.get_owned_device(business_id, user_id, device_id) if device_id else None
        if existing is None:
            if device_id and db.session.get(OfflineDevice, device_id) is not None:
                raise OfflineForbiddenError("Device id is registered to another user.")
            try:
                self.collaborators.subscriptions.assert_limit(business_id, "offline_devices")
            except SubscriptionLimitError as exc:
                raise OfflineForbiddenError(str(exc))

        access = self.collaborators.permissions.resolve_user_access(user_id, business_id)

        if existing is not None:
            device = existing
            device.device_name = device_name
            device.status = "ACTIVE"
            device.revoked_at = None
            # Reactivation starts a fresh offline window
            device.last_seen_at = utcnow()
            device.permissions_snapshot = access.to_dict()
        else:
            device = OfflineDevice(
                id=device_id or str(uuid.uuid4()),
                business_id=business_id,
                user_id=user_id,
                device_name=device_name,
                device_key=_new_device_key(),
                status="ACTIVE",
                permissions_snapshot=access.to_dict(),
            )
            db.session.add(device)
        db.session.flush()

        self._audit(business_id, user_id, "OFFLINE_DEVICE_REGISTER", device.id, metadata={"reactivated": existing is not None})
        db.session.commit()
        return device

    def revoke_device(self, business_id: int, user_id: int, device_id: str) -> OfflineDevice:
        """Revoke a device. Revoking twice re-stamps revoked_at."""
        device = db.session.query(OfflineDevice).filter_by(id=device_id, business_id=business_id).first()
        if not device:
            raise OfflineRequestError("Device not found.")

        device.status = "REVOKED"
        device.revoked_at = utcnow()

        self._audit(business_id, user_id, "OFFLINE_DEVICE_REVOKE", device.id)
        db.session.commit()
        return device

    def record_status(
        self,
        business_id: int,
        user_id: int,
        device_id: str,
        status: str,
        since: str | None = None,
    ) -> OfflineDevice:
        """
        Heartbeat from the device.

        ONLINE stamps last_seen_at with now. OFFLINE stamps it with the moment
        the device went offline (`since`, ISO-8601) so the duration ceiling is
        measured from there.
        """
        if status not in HEARTBEAT_STATUSES:
            raise OfflineRequestError("status must be ONLINE or OFFLINE")

        device = self.get_owned_device(business_id, user_id, device_id)
        if not device:
            raise OfflineRequestError("Device not registered for this user.")

        if status == "ONLINE":
            device.last_seen_at = utcnow()
        else:
            try:
                offline_since = parse_iso_datetime(since) if since else None
            except ValueError:
                raise OfflineRequestError("since must be an ISO-8601 datetime")
            device.last_seen_at = offline_since or utcnow()

        self._audit(
            business_id,
            user_id,
            "OFFLINE_ENTRY" if status == "OFFLINE" else "OFFLINE_EXIT",
            device.id,
            metadata={"since": since},
        )
        db.session.commit()
        return device

    def list_devices(self, business_id: int, user_id: int | None = None, status: str | None = None) -> list[OfflineDevice]:
        query = db.session.query(OfflineDevice).filter_by(business_id=business_id)
        if user_id is not None:
            query = query.filter(OfflineDevice.user_id == user_id)
        if status is not None:
            if status not in DEVICE_STATUSES:
                raise OfflineRequestError(f"Unknown device status: {status}")
            query = query.filter(OfflineDevice.status == status)
        return query.order_by(OfflineDevice.created_at.asc(), OfflineDevice.id.asc()).all()
