# Overview: Service-layer operations for offline ceilings; limit resolution, duration and queue checks.

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import OfflineAction, OfflineDevice
from tillsync.time_utils import normalize_datetime, utcnow
from .audit_service import AuditRecord
from .offline_collaborators import OfflineCollaborators
from .offline_device_service import OfflineForbiddenError, OfflineRequestError
from .settings_service import BusinessSettingsSnapshot


# A ceiling <= 0 disables that check
TIER_OFFLINE_LIMITS = {
    "STARTER": {"max_duration_hours": 0, "max_sales_count": 0, "max_total_value_cents": 0},
    "BUSINESS": {"max_duration_hours": 72, "max_sales_count": 200, "max_total_value_cents": 500_000_000},
    "ENTERPRISE": {"max_duration_hours": 168, "max_sales_count": 2000, "max_total_value_cents": 500_000_000},
}

SALE_ACTION = "SALE_COMPLETE"


@dataclass(frozen=True)
class OfflineLimits:
    max_duration_hours: int
    max_sales_count: int
    max_total_value_cents: int

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_offline_limits(tier: str | None, settings: BusinessSettingsSnapshot | None) -> OfflineLimits:
    """Tenant offline_limits from pos_policies merged over the tier's defaults."""
    defaults = TIER_OFFLINE_LIMITS.get(tier or "", TIER_OFFLINE_LIMITS["BUSINESS"])
    configured = {}
    if settings is not None:
        configured = (settings.pos_policies or {}).get("offline_limits") or {}

    resolved = {}
    for key, default in defaults.items():
        value = configured.get(key)
        resolved[key] = int(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else default
    return OfflineLimits(**resolved)


def sale_value_cents(payload: dict | None) -> int:
    """Declared value of a queued sale (payload total_cents); junk counts as zero."""
    value = (payload or {}).get("total_cents")
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


class LimitGovernor:
    """Per-device ceilings checked before any action is admitted."""

    def __init__(self, collaborators: OfflineCollaborators | None = None):
        self.collaborators = collaborators or OfflineCollaborators.default()

    def enforce_duration(self, device: OfflineDevice, limits: OfflineLimits, user_id: int, now: datetime | None = None) -> None:
        """
        Expire the device if it has been offline longer than allowed.

        Measured from last_seen_at (or created_at for a device never seen).
        The EXPIRED status is committed before the call is refused.
        """
        if limits.max_duration_hours <= 0:
            return

        now = now or utcnow()
        anchor = normalize_datetime(device.last_seen_at or device.created_at)
        elapsed_hours = (now - anchor).total_seconds() / 3600
        if elapsed_hours <= limits.max_duration_hours:
            return

        device.status = "EXPIRED"
        self.collaborators.audit.log_event(AuditRecord(
            business_id=device.business_id,
            user_id=user_id,
            action="OFFLINE_DURATION_EXCEEDED",
            outcome="FAILURE",
            resource_type="OfflineDevice",
            resource_id=device.id,
            metadata={
                "elapsed_hours": round(elapsed_hours, 2),
                "max_duration_hours": limits.max_duration_hours,
                "offline": True,
            },
        ))
        db.session.commit()
        raise OfflineForbiddenError("Offline session duration exceeded.")

    def pending_sales(self, business_id: int, device_id: str) -> tuple[int, int]:
        """(count, total value in cents) of this device's PENDING sale actions."""
        payloads = (
            db.session.query(OfflineAction.payload)
            .filter_by(business_id=business_id, device_id=device_id, status="PENDING", action_type=SALE_ACTION)
            .all()
        )
        return len(payloads), sum(sale_value_cents(payload) for (payload,) in payloads)

    def enforce_queue(self, business_id: int, device_id: str, actions: list[dict], limits: OfflineLimits) -> None:
        """Reject the whole batch if pending plus incoming sales break either ceiling."""
        incoming = [action for action in actions if action.get("action_type") == SALE_ACTION]
        existing_count, existing_value = self.pending_sales(business_id, device_id)

        if limits.max_sales_count > 0 and existing_count + len(incoming) > limits.max_sales_count:
            raise OfflineRequestError("Offline sale queue exceeds maximum allowed.")

        if limits.max_total_value_cents > 0:
            incoming_value = sum(sale_value_cents(action.get("payload")) for action in incoming)
            if existing_value + incoming_value > limits.max_total_value_cents:
                raise OfflineRequestError("Offline sale total exceeds maximum allowed.")


def count_pending_actions(business_id: int, device_id: str) -> int:
    return (
        db.session.query(func.count(OfflineAction.id))
        .filter_by(business_id=business_id, device_id=device_id, status="PENDING")
        .scalar()
        or 0
    )
