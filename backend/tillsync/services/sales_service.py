"""
Sales Service - Document-first sale processing

WHY: A sale is a document with a lifecycle (DRAFT -> COMPLETED), not just a
stock decrement. Drafting validates pricing and discounts; completion takes
payment, moves stock and allocates the receipt number. Offline replays go
through exactly the same two steps as a live till.
"""

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Batch, Branch, Customer, PriceListItem, Sale, SaleLine, SalePayment, StockMovement, Variant
from tillsync.time_utils import utcnow
from .approval_service import ApprovalRequired, find_approval_for_target, request_approval
from .audit_service import AuditRecord, log_event
from .concurrency import lock_for_update, run_with_retry
from .document_service import next_document_number
from .inventory_service import apply_stock_delta, get_snapshot_quantity
from .settings_service import get_settings


PAYMENT_METHODS = {"CASH", "CARD", "MOBILE_MONEY", "BANK_TRANSFER", "OTHER"}


class SaleError(Exception):
    """Raised for sale operation errors."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStockError(SaleError):
    """Not enough stock on hand and negative stock is not allowed."""
    pass


class SalePermissionError(SaleError):
    """The acting user lacks a permission the sale needs (batch override, credit)."""
    pass


class BatchDepletedError(SaleError):
    """No usable batch for a line while batch tracking is on."""
    pass


def _positive_int(value, label: str) -> int:
    # bool is an int subclass
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SaleError(f"{label} must be a positive integer.")
    return value


def _log_rejection(business_id: int, user_id: int, action: str, metadata: dict) -> None:
    log_event(AuditRecord(
        business_id=business_id,
        user_id=user_id,
        action=action,
        outcome="FAILURE",
        resource_type="Sale",
        metadata=metadata,
    ))
    db.session.commit()


def _requires_discount_approval(pos_policies: dict, subtotal: int, discount_total: int) -> tuple[bool, float]:
    percent = (discount_total / subtotal * 100) if subtotal > 0 else 0.0
    if discount_total <= 0:
        return False, percent
    threshold_percent = pos_policies.get("discount_threshold_percent") or 10
    threshold_amount = pos_policies.get("discount_threshold_amount_cents") or 0
    required = percent >= threshold_percent or (threshold_amount > 0 and discount_total >= threshold_amount)
    return required, percent


def create_draft(
    business_id: int,
    user_id: int,
    permissions: list[str],
    data: dict,
    *,
    offline_device_id: str | None = None,
) -> Sale | ApprovalRequired:
    """
    Price and validate a cart, then store it as a DRAFT sale.

    Line prices come from the request, then the customer's or branch's price
    list, then the variant default. Returns ApprovalRequired (with the draft's
    id as target) when the discount needs sign-off.
    """
    branch = db.session.query(Branch).filter_by(id=data.get("branch_id"), business_id=business_id).first()
    if not branch:
        raise SaleError("Branch not found.")

    customer = None
    if data.get("customer_id"):
        customer = db.session.query(Customer).filter_by(
            id=data["customer_id"], business_id=business_id, status="ACTIVE"
        ).first()
        if not customer:
            raise SaleError("Customer not found.")

    lines = data.get("lines")
    if not isinstance(lines, list) or not lines:
        raise SaleError("Sale must contain at least one line.")

    settings = get_settings(business_id)

    variant_ids = {line.get("variant_id") for line in lines}
    variants = {
        v.id: v
        for v in db.session.query(Variant).filter(
            Variant.business_id == business_id,
            Variant.id.in_(variant_ids),
        ).all()
    }

    price_list_id = (customer.price_list_id if customer else None) or branch.price_list_id
    price_list_prices = {}
    if price_list_id:
        price_list_prices = {
            item.variant_id: item.price_cents
            for item in db.session.query(PriceListItem).filter(
                PriceListItem.price_list_id == price_list_id,
                PriceListItem.variant_id.in_(variant_ids),
            ).all()
        }

    priced_lines = []
    for line in lines:
        variant = variants.get(line.get("variant_id"))
        if not variant:
            raise SaleError("Variant not found.")
        if variant.status != "ACTIVE":
            raise SaleError("Variant is inactive or archived.")

        quantity = _positive_int(line.get("quantity"), "Quantity")
        unit_price = line.get("unit_price_cents")
        if unit_price is None:
            unit_price = price_list_prices.get(variant.id, variant.default_price_cents)
        if unit_price is None:
            raise SaleError("Unit price required for sale line.")
        if isinstance(unit_price, bool) or not isinstance(unit_price, int) or unit_price < 0:
            raise SaleError("Unit price must be a non-negative integer.")

        if variant.min_price_cents is not None and unit_price < variant.min_price_cents:
            _log_rejection(business_id, user_id, "SALE_MIN_PRICE_BLOCK", {
                "variant_id": variant.id,
                "min_price_cents": variant.min_price_cents,
                "unit_price_cents": unit_price,
            })
            raise SaleError("Unit price below minimum allowed.")

        if line.get("batch_id") and "ADJUST_INVENTORY" not in permissions:
            _log_rejection(business_id, user_id, "SALE_BATCH_OVERRIDE_BLOCK", {
                "variant_id": variant.id,
                "batch_id": line.get("batch_id"),
            })
            raise SalePermissionError("Batch selection requires stock permission.")

        line_discount = int(line.get("line_discount_cents") or 0)
        priced_lines.append(SaleLine(
            variant_id=variant.id,
            batch_id=line.get("batch_id"),
            quantity=quantity,
            unit_price_cents=unit_price,
            line_discount_cents=line_discount,
            line_total_cents=unit_price * quantity - line_discount,
            barcode_snapshot=line.get("barcode"),
        ))

    cart_discount = int(data.get("cart_discount_cents") or 0)
    subtotal = sum(line.unit_price_cents * line.quantity for line in priced_lines)
    discount_total = sum(line.line_discount_cents for line in priced_lines) + cart_discount
    total = sum(line.line_total_cents for line in priced_lines) - cart_discount
    if total < 0:
        raise SaleError("Discounts cannot exceed the sale subtotal.")

    sale = Sale(
        business_id=business_id,
        branch_id=branch.id,
        cashier_id=data.get("cashier_id") or user_id,
        customer_id=customer.id if customer else None,
        status="DRAFT",
        is_offline=offline_device_id is not None,
        offline_device_id=offline_device_id,
        subtotal_cents=subtotal,
        cart_discount_cents=cart_discount,
        discount_total_cents=discount_total,
        total_cents=total,
        paid_cents=0,
        outstanding_cents=total,
    )
    db.session.add(sale)
    db.session.flush()
    for line in priced_lines:
        line.sale_id = sale.id
        db.session.add(line)
    db.session.flush()

    requires_approval, discount_percent = _requires_discount_approval(settings.pos_policies, subtotal, discount_total)
    if requires_approval:
        approval = request_approval(
            business_id=business_id,
            action_type="SALE_DISCOUNT",
            requested_by_user_id=user_id,
            amount=discount_total,
            percent=discount_percent,
            metadata={"sale_id": sale.id, "discount_total_cents": discount_total},
            target_type="Sale",
            target_id=sale.id,
        )
        if approval is not None:
            db.session.commit()
            return ApprovalRequired(approval_id=approval.id, target_id=sale.id)

    log_event(AuditRecord(
        business_id=business_id,
        user_id=user_id,
        action="SALE_DRAFT",
        resource_type="Sale",
        resource_id=sale.id,
        metadata={"offline_device_id": offline_device_id} if offline_device_id else {},
    ))
    db.session.commit()
    return sale


def _pick_batch(business_id: int, branch_id: int, line: SaleLine, fifo_mode: str) -> int:
    if line.batch_id:
        batch = db.session.query(Batch).filter_by(
            id=line.batch_id, business_id=business_id, branch_id=branch_id
        ).first()
        if not batch:
            raise BatchDepletedError("Batch not found for sale line.")
        return batch.id

    query = db.session.query(Batch).filter_by(
        business_id=business_id, branch_id=branch_id, variant_id=line.variant_id
    )
    if fifo_mode == "FEFO":
        # Soonest expiry first; undated batches last
        query = query.order_by(Batch.expiry_date.is_(None), Batch.expiry_date.asc(), Batch.created_at.asc(), Batch.id.asc())
    else:
        query = query.order_by(Batch.created_at.asc(), Batch.id.asc())
    batch = query.first()
    if not batch:
        raise BatchDepletedError("No batch available for sale line.")
    return batch.id


def _validate_payments(payments: list[dict]) -> int:
    total = 0
    for payment in payments:
        if payment.get("method") not in PAYMENT_METHODS:
            raise SaleError(f"Unknown payment method: {payment.get('method')}")
        total += _positive_int(payment.get("amount_cents"), "Payment amount")
    return total


def complete_sale(
    business_id: int,
    sale_id: int,
    user_id: int,
    *,
    payments: list[dict] | None = None,
    permissions: list[str] | None = None,
    credit_due_date: date | None = None,
    idempotency_key: str | None = None,
) -> Sale | ApprovalRequired:
    """
    Complete a DRAFT sale: take payment, move stock, allocate the receipt number.

    - A repeated idempotency_key returns the sale it first completed.
    - A non-DRAFT sale is returned unchanged.
    - A pending discount approval returns ApprovalRequired; a rejected one raises.
    """
    payments = payments or []
    permissions = permissions or []

    if idempotency_key:
        existing = db.session.query(Sale).filter_by(business_id=business_id, completion_key=idempotency_key).first()
        if existing:
            return existing

    sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id, business_id=business_id)).first()
    if not sale:
        raise SaleError("Sale not found.")
    if sale.status != "DRAFT":
        return sale

    approval = find_approval_for_target(business_id, "SALE_DISCOUNT", "Sale", sale.id)
    if approval is not None and approval.status == "PENDING":
        return ApprovalRequired(approval_id=approval.id, target_id=sale.id)
    if approval is not None and approval.status == "REJECTED":
        raise SaleError("Discount approval was rejected.")

    settings = get_settings(business_id)
    lines = db.session.query(SaleLine).filter_by(sale_id=sale.id).order_by(SaleLine.id.asc()).all()
    variants = {
        v.id: v
        for v in db.session.query(Variant).filter(
            Variant.business_id == business_id,
            Variant.id.in_({line.variant_id for line in lines}),
        ).all()
    }
    for line in lines:
        variant = variants.get(line.variant_id)
        if not variant or variant.status != "ACTIVE":
            raise SaleError("Variant is inactive or archived.")

    stocked_lines = [line for line in lines if variants[line.variant_id].track_stock]

    if not settings.stock_policies.get("negative_stock_allowed"):
        required: dict[int, int] = {}
        for line in stocked_lines:
            required[line.variant_id] = required.get(line.variant_id, 0) + line.quantity
        insufficient = []
        for variant_id, quantity in required.items():
            on_hand = get_snapshot_quantity(business_id, sale.branch_id, variant_id)
            if on_hand < quantity:
                insufficient.append({"variant_id": variant_id, "requested_quantity": quantity, "on_hand": on_hand})
        if insufficient:
            raise InsufficientStockError("Insufficient stock for sale.", details={"items": insufficient})

    paid = _validate_payments(payments)
    credit_requested = paid < sale.total_cents
    if credit_requested and not settings.pos_policies.get("credit_enabled"):
        raise SaleError("Credit sales are disabled.")
    if credit_requested and "CREATE_CREDIT_SALE" not in permissions:
        raise SalePermissionError("Credit sales require permission.")
    if paid > sale.total_cents:
        raise SaleError("Payments cannot exceed sale total.")
    if not credit_requested and not payments:
        raise SaleError("Payment method required.")

    batch_tracking = settings.stock_policies.get("batch_tracking_enabled")
    fifo_mode = settings.stock_policies.get("fifo_mode") or "FIFO"
    # Resolved up front so a missing batch fails before any stock moves
    batch_ids = {
        line.id: _pick_batch(business_id, sale.branch_id, line, fifo_mode) if batch_tracking else line.batch_id
        for line in stocked_lines
    }

    def _op() -> Sale:
        for line in stocked_lines:
            line.batch_id = batch_ids[line.id]
            apply_stock_delta(
                business_id=business_id,
                branch_id=sale.branch_id,
                variant_id=line.variant_id,
                delta=-line.quantity,
            )
            db.session.add(StockMovement(
                business_id=business_id,
                branch_id=sale.branch_id,
                variant_id=line.variant_id,
                batch_id=line.batch_id,
                created_by_user_id=user_id,
                movement_type="SALE_OUT",
                quantity=line.quantity,
                sale_id=sale.id,
            ))

        for payment in payments:
            db.session.add(SalePayment(
                sale_id=sale.id,
                method=payment["method"],
                amount_cents=payment["amount_cents"],
                reference=payment.get("reference"),
            ))

        sale.receipt_number = next_document_number(branch_id=sale.branch_id, document_type="RECEIPT", prefix="R")
        sale.status = "COMPLETED"
        sale.paid_cents = paid
        sale.outstanding_cents = sale.total_cents - paid
        sale.credit_due_date = credit_due_date if credit_requested else None
        sale.completion_key = idempotency_key
        sale.completed_at = utcnow()

        log_event(AuditRecord(
            business_id=business_id,
            user_id=user_id,
            action="SALE_COMPLETE",
            resource_type="Sale",
            resource_id=sale.id,
            metadata={
                "receipt_number": sale.receipt_number,
                "total_cents": sale.total_cents,
                "paid_cents": paid,
                "is_offline": sale.is_offline,
            },
        ))
        db.session.commit()
        return sale

    return run_with_retry(_op, label="sale completion")
