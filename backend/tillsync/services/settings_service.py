from __future__ import annotations

import copy
from dataclasses import dataclass, field

from ..extensions import db
from ..models import Business, BusinessSettings


# Money values are cents; durations are hours.
DEFAULT_POS_POLICIES = {
    "credit_enabled": False,
    "discount_threshold_percent": 10,
    "discount_threshold_amount_cents": 5_000_000,
    "offline_price_variance_percent": 3,
    "offline_limits": {
        "max_duration_hours": 72,
        "max_sales_count": 200,
        "max_total_value_cents": 500_000_000,
    },
}

DEFAULT_STOCK_POLICIES = {
    "negative_stock_allowed": False,
    "fifo_mode": "FIFO",  # FIFO or FEFO
    "batch_tracking_enabled": False,
    "low_stock_threshold": 5,
}

DEFAULT_APPROVAL_DEFAULTS = {
    "stock_adjust": True,
    "stock_adjust_threshold_amount": None,
    "discount_threshold_percent": 10,
    "discount_threshold_amount_cents": None,
}

# Policy documents whose nested dicts are merged key-by-key instead of replaced
NESTED_KEYS = {"offline_limits"}


class SettingsError(ValueError):
    pass


@dataclass
class BusinessSettingsSnapshot:
    business_id: int
    pos_policies: dict = field(default_factory=dict)
    stock_policies: dict = field(default_factory=dict)
    approval_defaults: dict = field(default_factory=dict)


def _merge(defaults: dict, stored: dict | None) -> dict:
    merged = copy.deepcopy(defaults)
    for key, value in (stored or {}).items():
        if key in NESTED_KEYS and isinstance(value, dict):
            nested = dict(merged.get(key) or {})
            nested.update(value)
            merged[key] = nested
        else:
            merged[key] = value
    return merged


def get_settings(business_id: int) -> BusinessSettingsSnapshot:
    """Effective tenant policies: stored overrides merged over code defaults."""
    row = db.session.query(BusinessSettings).filter_by(business_id=business_id).first()
    return BusinessSettingsSnapshot(
        business_id=business_id,
        pos_policies=_merge(DEFAULT_POS_POLICIES, row.pos_policies if row else None),
        stock_policies=_merge(DEFAULT_STOCK_POLICIES, row.stock_policies if row else None),
        approval_defaults=_merge(DEFAULT_APPROVAL_DEFAULTS, row.approval_defaults if row else None),
    )


def update_settings(
    business_id: int,
    *,
    pos_policies: dict | None = None,
    stock_policies: dict | None = None,
    approval_defaults: dict | None = None,
) -> BusinessSettingsSnapshot:
    """
    Store policy overrides for a business.

    Only the keys passed are changed; nested offline_limits merge key-by-key.
    """
    if not db.session.query(Business).filter_by(id=business_id).first():
        raise SettingsError("Business not found")

    row = db.session.query(BusinessSettings).filter_by(business_id=business_id).first()
    if not row:
        row = BusinessSettings(business_id=business_id, pos_policies={}, stock_policies={}, approval_defaults={})
        db.session.add(row)

    # JSON columns are not mutation-tracked; always assign fresh dicts
    if pos_policies:
        row.pos_policies = _merge(row.pos_policies or {}, pos_policies)
    if stock_policies:
        row.stock_policies = _merge(row.stock_policies or {}, stock_policies)
    if approval_defaults:
        row.approval_defaults = _merge(row.approval_defaults or {}, approval_defaults)

    db.session.commit()
    return get_settings(business_id)
