# Overview: Domain appliers for replayed offline actions; each wraps one write path and classifies its outcome.

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Callable

from ..extensions import db
from ..models import Variant
from .approval_service import ApprovalRequired
from .offline_collaborators import OfflineCollaborators
from .permission_service import UserAccess
from .purchase_service import PurchaseError
from .inventory_service import StockAdjustmentError
from .sales_service import BatchDepletedError, InsufficientStockError, SaleError, SalePermissionError
"""
Offline Outcome Classification (authoritative)

CONFLICT (operator can resolve):
- PRICE_VARIANCE    offline price strays from the catalog beyond the tenant threshold
- APPROVAL_REQUIRED the write path parked the action behind an approval
- BATCH_DEPLETED    no usable batch for a line while batch tracking is on

REJECTED (terminal unless retried):
- STOCK_OVERSELL     not enough stock and negative stock is not allowed
- PERMISSION_REVOKED the user no longer holds the action's permission
- any other validation failure of the write path (no reason, message kept)

FAILED: purchase creation errors. Unexpected exceptions are turned into
FAILED one level up, by the replay loop.

Appliers never commit on their own; the write paths they call do.
Whenever an applier swallows a typed error it rolls the session back first.
"""


DEFAULT_VARIANCE_THRESHOLD = 3

REQUIRED_PERMISSIONS = {
    "SALE_COMPLETE": "CREATE_SALE",
    "STOCK_ADJUSTMENT": "ADJUST_INVENTORY",
    "PURCHASE_DRAFT": "CREATE_PURCHASE",
}

ACTION_TYPES = frozenset(REQUIRED_PERMISSIONS)


@dataclass
class ApplyOutcome:
    status: str
    result: dict | None = None
    conflict_reason: str | None = None
    conflict_payload: dict | None = None
    error_message: str | None = None


@dataclass
class ApplyContext:
    business_id: int
    user_id: int
    device_id: str
    access: UserAccess
    collaborators: OfflineCollaborators
    allow_price_variance: bool = False


def permission_revoked() -> ApplyOutcome:
    return ApplyOutcome(
        status="REJECTED",
        conflict_reason="PERMISSION_REVOKED",
        error_message="Permission revoked for action.",
    )


def price_variance_breaches(business_id: int, lines: list[dict], threshold: float) -> list[dict]:
    """Lines whose offline price deviates from the current catalog price by more than `threshold` percent."""
    variant_ids = {line.get("variant_id") for line in lines}
    current_prices = {
        variant_id: price
        for variant_id, price in db.session.query(Variant.id, Variant.default_price_cents).filter(
            Variant.business_id == business_id,
            Variant.id.in_(variant_ids),
        ).all()
    }

    breaches = []
    for line in lines:
        current = current_prices.get(line.get("variant_id")) or 0
        offline = line.get("unit_price_cents")
        if offline is None:
            continue
        # bool is an int subclass
        if isinstance(offline, bool) or not isinstance(offline, int) or offline < 0:
            raise SaleError("Unit price must be a non-negative integer.")
        if current <= 0:
            continue
        variance = abs(current - offline) / current * 100
        if variance > threshold:
            breaches.append({
                "variant_id": line.get("variant_id"),
                "offline_price_cents": offline,
                "current_price_cents": current,
                "variance_percent": round(variance, 2),
            })
    return breaches


def _classify_sale_error(exc: SaleError) -> ApplyOutcome:
    db.session.rollback()
    message = str(exc)
    if isinstance(exc, InsufficientStockError):
        return ApplyOutcome(status="REJECTED", conflict_reason="STOCK_OVERSELL", error_message=message)
    if isinstance(exc, SalePermissionError):
        return ApplyOutcome(status="REJECTED", conflict_reason="PERMISSION_REVOKED", error_message=message)
    if isinstance(exc, BatchDepletedError):
        return ApplyOutcome(status="CONFLICT", conflict_reason="BATCH_DEPLETED", error_message=message)
    return ApplyOutcome(status="REJECTED", error_message=message)


def _parse_due_date(value) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise SaleError("credit_due_date must be an ISO-8601 date.")


def _complete(ctx: ApplyContext, payload: dict, sale_id: int) -> ApplyOutcome:
    completion = ctx.collaborators.sales.complete_sale(
        ctx.business_id,
        sale_id,
        ctx.user_id,
        payments=payload.get("payments") or [],
        permissions=ctx.access.permissions,
        credit_due_date=_parse_due_date(payload.get("credit_due_date")),
        idempotency_key=payload.get("idempotency_key"),
    )
    if isinstance(completion, ApprovalRequired):
        return ApplyOutcome(
            status="CONFLICT",
            conflict_reason="APPROVAL_REQUIRED",
            conflict_payload={"approval_id": completion.approval_id, "sale_id": sale_id},
        )
    return ApplyOutcome(
        status="APPLIED",
        result={"sale_id": completion.id, "receipt_number": completion.receipt_number},
    )


def apply_sale(ctx: ApplyContext, payload: dict) -> ApplyOutcome:
    lines = payload.get("lines")
    if not isinstance(lines, list) or not lines:
        return ApplyOutcome(status="REJECTED", error_message="Sale must contain at least one line.")

    pos_policies = ctx.collaborators.settings.get_settings(ctx.business_id).pos_policies
    threshold = pos_policies.get("offline_price_variance_percent")
    if threshold is None:
        threshold = DEFAULT_VARIANCE_THRESHOLD

    try:
        breaches = price_variance_breaches(ctx.business_id, lines, threshold)
    except SaleError as exc:
        return _classify_sale_error(exc)
    if breaches and not ctx.allow_price_variance:
        return ApplyOutcome(
            status="CONFLICT",
            conflict_reason="PRICE_VARIANCE",
            conflict_payload={"variance_breaches": breaches, "variance_threshold": threshold},
        )

    try:
        draft = ctx.collaborators.sales.create_draft(
            ctx.business_id,
            ctx.user_id,
            ctx.access.permissions,
            {
                "branch_id": payload.get("branch_id"),
                "customer_id": payload.get("customer_id"),
                "cart_discount_cents": payload.get("cart_discount_cents"),
                "lines": lines,
            },
            offline_device_id=ctx.device_id,
        )
        if isinstance(draft, ApprovalRequired):
            return ApplyOutcome(
                status="CONFLICT",
                conflict_reason="APPROVAL_REQUIRED",
                conflict_payload={"approval_id": draft.approval_id, "sale_id": draft.target_id},
            )
        return _complete(ctx, payload, draft.id)
    except SaleError as exc:
        return _classify_sale_error(exc)


def apply_purchase_draft(ctx: ApplyContext, payload: dict) -> ApplyOutcome:
    try:
        purchase = ctx.collaborators.purchases.create_draft_purchase(ctx.business_id, ctx.user_id, payload)
    except PurchaseError as exc:
        db.session.rollback()
        return ApplyOutcome(status="FAILED", error_message=str(exc) or "Draft purchase creation failed.")
    return ApplyOutcome(status="APPLIED", result={"purchase_id": purchase.id})


def _adjustment_data(payload: dict) -> dict:
    return {
        "branch_id": payload.get("branch_id"),
        "variant_id": payload.get("variant_id"),
        "quantity": payload.get("quantity"),
        "type": payload.get("type"),
        "reason": payload.get("reason"),
        "loss_reason": payload.get("loss_reason"),
        "batch_id": payload.get("batch_id"),
        "idempotency_key": payload.get("idempotency_key"),
    }


def _adjust(ctx: ApplyContext, payload: dict, approval_id: int | None = None) -> ApplyOutcome:
    try:
        movement = ctx.collaborators.stock.create_adjustment(
            ctx.business_id,
            ctx.user_id,
            _adjustment_data(payload),
            approval_id=approval_id,
        )
    except StockAdjustmentError as exc:
        db.session.rollback()
        return ApplyOutcome(status="REJECTED", error_message=str(exc))

    if isinstance(movement, ApprovalRequired):
        return ApplyOutcome(
            status="CONFLICT",
            conflict_reason="APPROVAL_REQUIRED",
            conflict_payload={"approval_id": movement.approval_id},
        )
    return ApplyOutcome(status="APPLIED", result={"movement_id": movement.id})


def apply_stock_adjustment(ctx: ApplyContext, payload: dict) -> ApplyOutcome:
    return _adjust(ctx, payload)


Applier = Callable[[ApplyContext, dict], ApplyOutcome]

APPLIERS: dict[str, Applier] = {
    "SALE_COMPLETE": apply_sale,
    "PURCHASE_DRAFT": apply_purchase_draft,
    "STOCK_ADJUSTMENT": apply_stock_adjustment,
}


# Approved approvals: finish the work that was parked behind them


def finalize_approved_sale(ctx: ApplyContext, payload: dict, conflict_payload: dict) -> ApplyOutcome:
    sale_id = conflict_payload.get("sale_id")
    if not sale_id:
        return ApplyOutcome(status="FAILED", error_message="Sale reference missing.")
    try:
        return _complete(ctx, payload, sale_id)
    except SaleError as exc:
        return _classify_sale_error(exc)


def finalize_approved_adjustment(ctx: ApplyContext, payload: dict, conflict_payload: dict) -> ApplyOutcome:
    return _adjust(ctx, payload, approval_id=conflict_payload.get("approval_id"))


APPROVAL_FINALIZERS: dict[str, Callable[[ApplyContext, dict, dict], ApplyOutcome]] = {
    "SALE_COMPLETE": finalize_approved_sale,
    "STOCK_ADJUSTMENT": finalize_approved_adjustment,
}
