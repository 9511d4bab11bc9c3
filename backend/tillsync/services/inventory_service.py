# Overview: Service-layer operations for inventory; snapshot reads, atomic stock deltas and adjustments.

from __future__ import annotations

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Batch, Branch, StockMovement, StockSnapshot, Variant
from .approval_service import ApprovalRequired, request_approval
from .audit_service import AuditRecord, log_event
from .settings_service import get_settings
"""
Stock Invariants (authoritative)

Quantity model:
- StockSnapshot.quantity is the current on-hand position per (business, branch, variant).
- Every change is written as one StockMovement row plus one atomic
  UPDATE ... SET quantity = quantity + :delta on the snapshot.
- Read-then-compare checks (negative stock, oversell) are optimistic; two
  concurrent writers may both pass the check. The atomic delta keeps the
  arithmetic right, the policy check is best effort.

Adjustments:
- POSITIVE adds, NEGATIVE removes; quantity is always given as a positive integer.
- NEGATIVE adjustments require a loss_reason.
- batch_id is ignored unless batch tracking is enabled for the business.
- Approval policy runs before anything is written; an approval-backed replay
  (approval_id given) skips the policy and is keyed "approval:<id>" for idempotency.
"""


ADJUSTMENT_TYPES = {"POSITIVE", "NEGATIVE"}
LOSS_REASONS = {"DAMAGED", "LOST", "STOLEN", "EXPIRED", "SHRINKAGE", "OTHER"}


class StockAdjustmentError(Exception):
    """Raised when a stock adjustment is rejected by validation or policy."""
    pass


def get_snapshot_quantity(business_id: int, branch_id: int, variant_id: int) -> int:
    quantity = (
        db.session.query(StockSnapshot.quantity)
        .filter_by(business_id=business_id, branch_id=branch_id, variant_id=variant_id)
        .scalar()
    )
    return int(quantity or 0)


def apply_stock_delta(*, business_id: int, branch_id: int, variant_id: int, delta: int) -> None:
    """
    Add `delta` (may be negative) to the snapshot in one SQL statement.

    Creates the snapshot row on first touch. Losing the insert race to a
    concurrent writer falls back to the UPDATE.
    """
    stmt = (
        update(StockSnapshot)
        .where(
            StockSnapshot.business_id == business_id,
            StockSnapshot.branch_id == branch_id,
            StockSnapshot.variant_id == variant_id,
        )
        .values(quantity=StockSnapshot.quantity + delta)
    )
    result = db.session.execute(stmt)
    if result.rowcount:
        return

    try:
        with db.session.begin_nested():
            db.session.add(StockSnapshot(
                business_id=business_id,
                branch_id=branch_id,
                variant_id=variant_id,
                quantity=delta,
                in_transit_quantity=0,
            ))
    except IntegrityError:
        result = db.session.execute(stmt)
        if not result.rowcount:
            raise


def _parse_quantity(value) -> int:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise StockAdjustmentError("Quantity must be a positive integer.")
    return value


def create_adjustment(
    business_id: int,
    user_id: int,
    data: dict,
    *,
    approval_id: int | None = None,
) -> StockMovement | ApprovalRequired:
    """
    Adjust stock for one variant at one branch.

    Returns the StockMovement, or ApprovalRequired when the tenant's approval
    policy parks the adjustment. Raises StockAdjustmentError on invalid input
    or a policy violation.
    """
    branch_id = data.get("branch_id")
    variant_id = data.get("variant_id")
    adjustment_type = data.get("type")

    branch = db.session.query(Branch).filter_by(id=branch_id, business_id=business_id).first()
    if not branch:
        raise StockAdjustmentError("Branch not found.")
    variant = db.session.query(Variant).filter_by(id=variant_id, business_id=business_id).first()
    if not variant:
        raise StockAdjustmentError("Variant not found.")
    if variant.status != "ACTIVE":
        raise StockAdjustmentError("Variant is inactive or archived.")
    if not variant.track_stock:
        raise StockAdjustmentError("Variant does not track stock.")
    if adjustment_type not in ADJUSTMENT_TYPES:
        raise StockAdjustmentError("Adjustment type must be POSITIVE or NEGATIVE.")

    quantity = _parse_quantity(data.get("quantity"))
    loss_reason = data.get("loss_reason")
    if adjustment_type == "NEGATIVE":
        if not loss_reason:
            raise StockAdjustmentError("Loss reason is required for negative adjustments.")
        if loss_reason not in LOSS_REASONS:
            raise StockAdjustmentError(f"Unknown loss reason: {loss_reason}")

    stock_policies = get_settings(business_id).stock_policies

    batch_id = data.get("batch_id") if stock_policies.get("batch_tracking_enabled") else None
    if batch_id is not None:
        batch = db.session.query(Batch).filter_by(
            id=batch_id,
            business_id=business_id,
            branch_id=branch_id,
            variant_id=variant_id,
        ).first()
        if not batch:
            raise StockAdjustmentError("Batch not found.")

    if adjustment_type == "NEGATIVE" and not stock_policies.get("negative_stock_allowed"):
        if get_snapshot_quantity(business_id, branch_id, variant_id) - quantity < 0:
            raise StockAdjustmentError("Negative stock is not allowed.")

    if approval_id is None:
        approval = request_approval(
            business_id=business_id,
            action_type="STOCK_ADJUSTMENT",
            requested_by_user_id=user_id,
            amount=quantity,
            reason=data.get("reason"),
            metadata={
                "branch_id": branch_id,
                "variant_id": variant_id,
                "quantity": quantity,
                "type": adjustment_type,
                "loss_reason": loss_reason,
                "batch_id": batch_id,
            },
            target_type="Variant",
            target_id=variant_id,
        )
        if approval is not None:
            db.session.commit()
            return ApprovalRequired(approval_id=approval.id, target_id=variant_id)

    idempotency_key = data.get("idempotency_key") or (f"approval:{approval_id}" if approval_id else None)
    if idempotency_key:
        existing = db.session.query(StockMovement).filter_by(
            business_id=business_id,
            idempotency_key=idempotency_key,
        ).first()
        if existing:
            return existing

    movement = StockMovement(
        business_id=business_id,
        branch_id=branch_id,
        variant_id=variant_id,
        batch_id=batch_id,
        created_by_user_id=user_id,
        movement_type="ADJUSTMENT_POSITIVE" if adjustment_type == "POSITIVE" else "ADJUSTMENT_NEGATIVE",
        quantity=quantity,
        reason=data.get("reason"),
        loss_reason=loss_reason if adjustment_type == "NEGATIVE" else None,
        idempotency_key=idempotency_key,
    )
    db.session.add(movement)
    db.session.flush()

    apply_stock_delta(
        business_id=business_id,
        branch_id=branch_id,
        variant_id=variant_id,
        delta=quantity if adjustment_type == "POSITIVE" else -quantity,
    )

    log_event(AuditRecord(
        business_id=business_id,
        user_id=user_id,
        action="STOCK_ADJUST",
        resource_type="StockMovement",
        resource_id=movement.id,
        reason=data.get("reason"),
        metadata={
            "branch_id": branch_id,
            "variant_id": variant_id,
            "type": adjustment_type,
            "quantity": quantity,
            "approval_id": approval_id,
        },
    ))
    db.session.commit()
    return movement
