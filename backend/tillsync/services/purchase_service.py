# Overview: Service-layer operations for purchasing; draft purchase documents.

from __future__ import annotations

from ..extensions import db
from ..models import Branch, Purchase, PurchaseLine, Supplier, Variant
from .audit_service import AuditRecord, log_event


class PurchaseError(Exception):
    """Raised for purchase validation errors."""
    pass


def _validate_line(business_id: int, line: dict) -> PurchaseLine:
    variant = db.session.query(Variant).filter_by(id=line.get("variant_id"), business_id=business_id).first()
    if not variant:
        raise PurchaseError("Variant not found.")

    quantity = line.get("quantity")
    unit_cost = line.get("unit_cost_cents")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise PurchaseError("Quantity must be a positive integer.")
    if isinstance(unit_cost, bool) or not isinstance(unit_cost, int) or unit_cost < 0:
        raise PurchaseError("Unit cost must be a non-negative integer.")

    return PurchaseLine(variant_id=variant.id, quantity=quantity, unit_cost_cents=unit_cost)


def create_draft_purchase(business_id: int, user_id: int, data: dict) -> Purchase:
    """
    Create a DRAFT purchase from a supplier for one branch.

    A repeated idempotency_key returns the purchase it first created.
    """
    idempotency_key = data.get("idempotency_key")
    if idempotency_key:
        existing = db.session.query(Purchase).filter_by(
            business_id=business_id,
            idempotency_key=idempotency_key,
        ).first()
        if existing:
            return existing

    branch = db.session.query(Branch).filter_by(id=data.get("branch_id"), business_id=business_id).first()
    if not branch:
        raise PurchaseError("Branch not found.")
    supplier = db.session.query(Supplier).filter_by(
        id=data.get("supplier_id"), business_id=business_id, status="ACTIVE"
    ).first()
    if not supplier:
        raise PurchaseError("Supplier not found.")

    raw_lines = data.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise PurchaseError("Purchase must contain at least one line.")
    lines = [_validate_line(business_id, line) for line in raw_lines]

    purchase = Purchase(
        business_id=business_id,
        branch_id=branch.id,
        supplier_id=supplier.id,
        created_by_user_id=user_id,
        status="DRAFT",
        total_cost_cents=sum(line.quantity * line.unit_cost_cents for line in lines),
        idempotency_key=idempotency_key,
    )
    db.session.add(purchase)
    db.session.flush()
    for line in lines:
        line.purchase_id = purchase.id
        db.session.add(line)

    log_event(AuditRecord(
        business_id=business_id,
        user_id=user_id,
        action="PURCHASE_DRAFT",
        resource_type="Purchase",
        resource_id=purchase.id,
        metadata={"supplier_id": supplier.id, "total_cost_cents": purchase.total_cost_cents},
    ))
    db.session.commit()
    return purchase
