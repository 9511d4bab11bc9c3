# Overview: Service-layer operations for approvals; policy resolution, requests and decisions.

"""
Approval Requests

WHY: Some write paths (large sale discounts, stock adjustments) need a
second pair of eyes. The writer asks this module whether an approval is
required; if so a PENDING Approval row is created and the writer returns an
ApprovalRequired marker instead of completing.

POLICY (from BusinessSettings.approval_defaults):
- SALE_DISCOUNT: percent threshold first, then amount threshold; neither -> no approval
- STOCK_ADJUSTMENT: required when stock_adjust is on and the quantity meets
  stock_adjust_threshold_amount (no threshold -> always)

Deciding an approval only flips its status. Whoever parked work behind it
(the offline engine polls via SYNC_APPROVAL) finishes that work.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..extensions import db
from ..models import Approval
from tillsync.time_utils import utcnow
from .audit_service import AuditRecord, log_event
from .settings_service import get_settings


class ApprovalError(Exception):
    """Raised for approval lookup/decision errors."""
    pass


@dataclass(frozen=True)
class ApprovalRequired:
    """Returned by writers instead of a record when human sign-off is pending."""
    approval_id: int
    target_id: int | None = None


@dataclass(frozen=True)
class ApprovalPolicy:
    threshold_type: str  # NONE, PERCENT, AMOUNT
    threshold_value: float | None = None


def _resolve_default_policy(business_id: int, action_type: str) -> ApprovalPolicy | None:
    defaults = get_settings(business_id).approval_defaults

    if action_type == "SALE_DISCOUNT":
        percent = defaults.get("discount_threshold_percent")
        amount = defaults.get("discount_threshold_amount_cents")
        if isinstance(percent, (int, float)) and percent > 0:
            return ApprovalPolicy("PERCENT", float(percent))
        if isinstance(amount, (int, float)) and amount > 0:
            return ApprovalPolicy("AMOUNT", float(amount))
        return None

    if action_type == "STOCK_ADJUSTMENT":
        if not defaults.get("stock_adjust"):
            return None
        threshold = defaults.get("stock_adjust_threshold_amount")
        if isinstance(threshold, (int, float)) and threshold > 0:
            return ApprovalPolicy("AMOUNT", float(threshold))
        return ApprovalPolicy("NONE")

    return None


def request_approval(
    *,
    business_id: int,
    action_type: str,
    requested_by_user_id: int,
    amount: int | None = None,
    percent: float | None = None,
    reason: str | None = None,
    metadata: dict | None = None,
    target_type: str | None = None,
    target_id: int | None = None,
) -> Approval | None:
    """
    Create a PENDING approval if the tenant's policy requires one.

    Returns the Approval (flushed, not committed) or None when no sign-off is needed.
    """
    policy = _resolve_default_policy(business_id, action_type)
    if policy is None:
        return None

    if policy.threshold_type == "PERCENT" and percent is not None and percent < policy.threshold_value:
        return None
    if policy.threshold_type == "AMOUNT" and amount is not None and amount < policy.threshold_value:
        return None

    approval = Approval(
        business_id=business_id,
        action_type=action_type,
        status="PENDING",
        requested_by_user_id=requested_by_user_id,
        amount=amount,
        percent=percent,
        reason=reason,
        metadata_json=metadata,
        target_type=target_type,
        target_id=target_id,
    )
    db.session.add(approval)
    db.session.flush()

    log_event(AuditRecord(
        business_id=business_id,
        user_id=requested_by_user_id,
        action="APPROVAL_REQUEST",
        resource_type="Approval",
        resource_id=approval.id,
        reason=reason,
        metadata={"action_type": action_type, "target_type": target_type, "target_id": target_id},
    ))
    return approval


def get_approval(business_id: int, approval_id: int) -> Approval | None:
    return db.session.query(Approval).filter_by(id=approval_id, business_id=business_id).first()


def find_approval_for_target(business_id: int, action_type: str, target_type: str, target_id: int) -> Approval | None:
    """Most recent approval for a target, whatever its status."""
    return (
        db.session.query(Approval)
        .filter_by(business_id=business_id, action_type=action_type, target_type=target_type, target_id=target_id)
        .order_by(Approval.id.desc())
        .first()
    )


def decide_approval(business_id: int, approval_id: int, user_id: int, *, approve: bool) -> Approval:
    """Approve or reject a PENDING approval."""
    approval = get_approval(business_id, approval_id)
    if not approval:
        raise ApprovalError("Approval not found")
    if approval.status != "PENDING":
        raise ApprovalError(f"Approval already {approval.status}")

    approval.status = "APPROVED" if approve else "REJECTED"
    approval.decided_by_user_id = user_id
    approval.decided_at = utcnow()

    log_event(AuditRecord(
        business_id=business_id,
        user_id=user_id,
        action="APPROVAL_APPROVE" if approve else "APPROVAL_REJECT",
        resource_type="Approval",
        resource_id=approval.id,
        metadata={"action_type": approval.action_type},
    ))
    db.session.commit()
    return approval
