# Overview: Read-only offline risk signal for a business; device and queue health rolled into a score.

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_

from ..extensions import db
from ..models import OfflineAction, OfflineDevice
from tillsync.time_utils import utcnow


DEFAULT_STALE_THRESHOLD_HOURS = 2


def risk_level(score: int) -> str:
    if score >= 5:
        return "HIGH"
    if score >= 3:
        return "MEDIUM"
    return "LOW"


def risk_score(*, expired: int, failed: int, conflicts: int, stale: int, pending: int) -> int:
    score = 0
    if expired > 0:
        score += 3
    if failed > 0:
        score += 3
    if conflicts > 0:
        score += 2
    if stale > 0:
        score += 1
    if pending > 20:
        score += 2
    elif pending > 5:
        score += 1
    return score


def _count_devices(business_id: int, status: str, *criteria) -> int:
    return (
        db.session.query(func.count(OfflineDevice.id))
        .filter(OfflineDevice.business_id == business_id, OfflineDevice.status == status, *criteria)
        .scalar()
        or 0
    )


def _count_actions(business_id: int, status: str) -> int:
    return (
        db.session.query(func.count(OfflineAction.id))
        .filter(OfflineAction.business_id == business_id, OfflineAction.status == status)
        .scalar()
        or 0
    )


def get_risk_overview(
    business_id: int,
    *,
    offline_enabled: bool,
    stale_threshold_hours: int = DEFAULT_STALE_THRESHOLD_HOURS,
    now: datetime | None = None,
) -> dict:
    """
    Counts and a LOW/MEDIUM/HIGH level. Pure read; nothing is written.

    A device is stale when it is ACTIVE and was last seen (or, if never
    seen, created) at or before now - stale_threshold_hours.
    """
    cutoff = (now or utcnow()) - timedelta(hours=stale_threshold_hours)

    active = _count_devices(business_id, "ACTIVE")
    stale = _count_devices(
        business_id,
        "ACTIVE",
        or_(
            OfflineDevice.last_seen_at <= cutoff,
            and_(OfflineDevice.last_seen_at.is_(None), OfflineDevice.created_at <= cutoff),
        ),
    )
    expired = _count_devices(business_id, "EXPIRED")

    pending = _count_actions(business_id, "PENDING")
    failed = _count_actions(business_id, "FAILED")
    conflicts = _count_actions(business_id, "CONFLICT")

    score = risk_score(expired=expired, failed=failed, conflicts=conflicts, stale=stale, pending=pending)
    return {
        "offline_enabled": offline_enabled,
        "risk_level": risk_level(score),
        "risk_score": score,
        "stale_threshold_hours": stale_threshold_hours,
        "devices": {"active": active, "stale": stale, "expired": expired},
        "actions": {"pending": pending, "failed": failed, "conflicts": conflicts},
    }
