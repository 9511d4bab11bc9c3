# Overview: Service-layer operations for subscriptions; tier limits and limit assertions.

from __future__ import annotations

from dataclasses import dataclass, field

from ..extensions import db
from ..models import Business, OfflineDevice


# -1 means unlimited
DEFAULT_LIMITS = {
    "STARTER": {
        "offline": False,
        "offline_devices": 0,
    },
    "BUSINESS": {
        "offline": True,
        "offline_devices": 5,
    },
    "ENTERPRISE": {
        "offline": True,
        "offline_devices": -1,
    },
}

INACTIVE_STATUSES = {"EXPIRED", "SUSPENDED"}


class SubscriptionLimitError(Exception):
    """Raised when a subscription limit would be exceeded."""
    pass


@dataclass
class SubscriptionSnapshot:
    tier: str
    status: str
    limits: dict = field(default_factory=dict)

    @property
    def offline_enabled(self) -> bool:
        return bool(self.limits.get("offline"))

    @property
    def is_inactive(self) -> bool:
        return self.status in INACTIVE_STATUSES


def get_subscription(business_id: int) -> SubscriptionSnapshot | None:
    """Tier defaults merged with the business's stored limit overrides."""
    business = db.session.query(Business).filter_by(id=business_id).first()
    if not business:
        return None

    limits = dict(DEFAULT_LIMITS.get(business.subscription_tier, DEFAULT_LIMITS["BUSINESS"]))
    limits.update(business.subscription_limits or {})

    return SubscriptionSnapshot(
        tier=business.subscription_tier,
        status=business.subscription_status,
        limits=limits,
    )


def _count_usage(business_id: int, key: str) -> int:
    if key == "offline_devices":
        # Revoked devices free their slot; expired ones still hold it until re-registered or revoked
        return db.session.query(OfflineDevice).filter(
            OfflineDevice.business_id == business_id,
            OfflineDevice.status != "REVOKED",
        ).count()
    raise SubscriptionLimitError(f"Unknown subscription limit: {key}")


def assert_limit(business_id: int, key: str, amount: int = 1) -> None:
    """
    Raise SubscriptionLimitError if adding `amount` units of `key` would
    exceed the subscription limit. Negative or missing limits are unlimited.
    """
    subscription = get_subscription(business_id)
    if not subscription:
        raise SubscriptionLimitError("Subscription not found.")

    limit = subscription.limits.get(key)
    if not isinstance(limit, int) or isinstance(limit, bool) or limit < 0:
        return

    count = _count_usage(business_id, key)
    if count + max(amount, 0) > limit:
        raise SubscriptionLimitError(f"Subscription limit exceeded for {key}.")
