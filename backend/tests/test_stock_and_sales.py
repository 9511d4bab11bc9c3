"""
Write-path tests for stock adjustments, sales, purchases and document numbers.
"""

import pytest

from tillsync.models import Batch, Sale, StockMovement
from tillsync.services import inventory_service, purchase_service, sales_service, settings_service
from tillsync.services.approval_service import ApprovalRequired
from tillsync.services.document_service import next_document_number
from tillsync.services.inventory_service import StockAdjustmentError
from tillsync.services.purchase_service import PurchaseError
from tillsync.services.sales_service import (
    BatchDepletedError,
    InsufficientStockError,
    SaleError,
    SalePermissionError,
)

from conftest import stock_on_hand

CASHIER_PERMISSIONS = ["VIEW_INVENTORY", "CREATE_SALE", "VIEW_OFFLINE", "MANAGE_OFFLINE"]


@pytest.fixture
def no_adjust_approval(business):
    settings_service.update_settings(business.id, approval_defaults={"stock_adjust": False})


def _cart(branch, variant, quantity=1, **line):
    return {"branch_id": branch.id, "lines": [{"variant_id": variant.id, "quantity": quantity, **line}]}


# ------------------------------------------------------------------
# stock adjustments


def test_negative_adjustment_records_loss(business, branch, variant, owner, no_adjust_approval):
    movement = inventory_service.create_adjustment(business.id, owner.id, {
        "branch_id": branch.id,
        "variant_id": variant.id,
        "type": "NEGATIVE",
        "quantity": 3,
        "loss_reason": "DAMAGED",
    })

    assert movement.movement_type == "ADJUSTMENT_NEGATIVE"
    assert movement.loss_reason == "DAMAGED"
    assert stock_on_hand(business.id, branch.id, variant.id) == 7


def test_negative_adjustment_cannot_go_below_zero(business, branch, variant, owner, no_adjust_approval):
    with pytest.raises(StockAdjustmentError, match="Negative stock"):
        inventory_service.create_adjustment(business.id, owner.id, {
            "branch_id": branch.id,
            "variant_id": variant.id,
            "type": "NEGATIVE",
            "quantity": 11,
            "loss_reason": "LOST",
        })


@pytest.mark.parametrize("quantity", [0, -2, 1.5, "3", True])
def test_adjustment_quantity_must_be_positive_int(business, branch, variant, owner, quantity):
    with pytest.raises(StockAdjustmentError, match="positive integer"):
        inventory_service.create_adjustment(business.id, owner.id, {
            "branch_id": branch.id, "variant_id": variant.id, "type": "POSITIVE", "quantity": quantity,
        })


def test_adjustment_idempotency_key(business, branch, variant, owner, db_session, no_adjust_approval):
    data = {
        "branch_id": branch.id,
        "variant_id": variant.id,
        "type": "POSITIVE",
        "quantity": 2,
        "idempotency_key": "count-2026-01",
    }
    first = inventory_service.create_adjustment(business.id, owner.id, data)
    second = inventory_service.create_adjustment(business.id, owner.id, data)

    assert first.id == second.id
    assert stock_on_hand(business.id, branch.id, variant.id) == 12


def test_adjustment_parks_behind_approval(business, branch, variant, owner, db_session):
    marker = inventory_service.create_adjustment(business.id, owner.id, {
        "branch_id": branch.id, "variant_id": variant.id, "type": "POSITIVE", "quantity": 2,
    })

    assert isinstance(marker, ApprovalRequired)
    assert marker.target_id == variant.id
    assert db_session.query(StockMovement).count() == 0


def test_adjustment_batch_must_match_when_tracking(business, branch, variant, owner, db_session, no_adjust_approval):
    settings_service.update_settings(business.id, stock_policies={"batch_tracking_enabled": True})

    with pytest.raises(StockAdjustmentError, match="Batch not found"):
        inventory_service.create_adjustment(business.id, owner.id, {
            "branch_id": branch.id, "variant_id": variant.id, "type": "POSITIVE", "quantity": 1, "batch_id": 424242,
        })


def test_first_touch_creates_snapshot(business, branch, variant, owner, db_session, no_adjust_approval):
    from tillsync.models import Branch

    second_branch = Branch(business_id=business.id, name="Airport")
    db_session.add(second_branch)
    db_session.commit()

    inventory_service.create_adjustment(business.id, owner.id, {
        "branch_id": second_branch.id, "variant_id": variant.id, "type": "POSITIVE", "quantity": 4,
    })

    assert stock_on_hand(business.id, second_branch.id, variant.id) == 4
    assert stock_on_hand(business.id, branch.id, variant.id) == 10


# ------------------------------------------------------------------
# sales


def test_draft_uses_catalog_price(business, branch, variant, cashier):
    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, quantity=2))

    assert sale.status == "DRAFT"
    assert sale.total_cents == 2000
    assert sale.is_offline is False


def test_draft_blocks_price_below_minimum(business, branch, variant, cashier, db_session):
    variant.min_price_cents = 950
    db_session.commit()

    with pytest.raises(SaleError, match="below minimum"):
        sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, unit_price_cents=900))
    assert db_session.query(Sale).count() == 0


@pytest.mark.parametrize("price", ["900", 9.5, -100])
def test_draft_rejects_malformed_unit_price(business, branch, variant, cashier, db_session, price):
    with pytest.raises(SaleError, match="non-negative integer"):
        sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, unit_price_cents=price))
    assert db_session.query(Sale).count() == 0


def test_batch_pick_requires_stock_permission(business, branch, variant, cashier):
    with pytest.raises(SalePermissionError):
        sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, batch_id=1))


def test_complete_sale_moves_stock_and_numbers_receipt(business, branch, variant, cashier, db_session):
    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, quantity=3))

    completed = sales_service.complete_sale(
        business.id, sale.id, cashier.id,
        payments=[{"method": "CARD", "amount_cents": 3000}],
        permissions=CASHIER_PERMISSIONS,
        idempotency_key="pos-1",
    )

    assert completed.status == "COMPLETED"
    assert completed.receipt_number == f"R-{branch.id:03d}-0001"
    assert stock_on_hand(business.id, branch.id, variant.id) == 7
    assert db_session.query(StockMovement).filter_by(sale_id=sale.id, movement_type="SALE_OUT").count() == 1

    # Same completion key returns the first completion without moving stock again
    again = sales_service.complete_sale(
        business.id, sale.id, cashier.id,
        payments=[{"method": "CARD", "amount_cents": 3000}],
        permissions=CASHIER_PERMISSIONS,
        idempotency_key="pos-1",
    )
    assert again.id == completed.id
    assert stock_on_hand(business.id, branch.id, variant.id) == 7


def test_complete_sale_insufficient_stock(business, branch, variant, cashier):
    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant, quantity=12))

    with pytest.raises(InsufficientStockError) as excinfo:
        sales_service.complete_sale(
            business.id, sale.id, cashier.id,
            payments=[{"method": "CASH", "amount_cents": 12000}],
            permissions=CASHIER_PERMISSIONS,
        )
    assert excinfo.value.details["items"][0]["on_hand"] == 10


def test_credit_sale_requires_permission(business, branch, variant, cashier):
    settings_service.update_settings(business.id, pos_policies={"credit_enabled": True})
    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant))

    with pytest.raises(SalePermissionError, match="Credit"):
        sales_service.complete_sale(business.id, sale.id, cashier.id, payments=[], permissions=CASHIER_PERMISSIONS)


def test_fefo_picks_soonest_expiry(business, branch, variant, cashier, db_session):
    from datetime import date

    settings_service.update_settings(business.id, stock_policies={"batch_tracking_enabled": True, "fifo_mode": "FEFO"})
    late = Batch(business_id=business.id, branch_id=branch.id, variant_id=variant.id, code="LATE", expiry_date=date(2027, 6, 1))
    soon = Batch(business_id=business.id, branch_id=branch.id, variant_id=variant.id, code="SOON", expiry_date=date(2026, 12, 1))
    db_session.add_all([late, soon])
    db_session.commit()

    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant))
    sales_service.complete_sale(
        business.id, sale.id, cashier.id,
        payments=[{"method": "CASH", "amount_cents": 1000}],
        permissions=CASHIER_PERMISSIONS,
    )

    movement = db_session.query(StockMovement).filter_by(sale_id=sale.id).one()
    assert movement.batch_id == soon.id


def test_batch_tracking_without_batches_raises(business, branch, variant, cashier):
    settings_service.update_settings(business.id, stock_policies={"batch_tracking_enabled": True})
    sale = sales_service.create_draft(business.id, cashier.id, CASHIER_PERMISSIONS, _cart(branch, variant))

    with pytest.raises(BatchDepletedError):
        sales_service.complete_sale(
            business.id, sale.id, cashier.id,
            payments=[{"method": "CASH", "amount_cents": 1000}],
            permissions=CASHIER_PERMISSIONS,
        )


# ------------------------------------------------------------------
# purchases and numbering


def test_purchase_draft_is_idempotent(business, branch, variant, supplier, owner):
    data = {
        "branch_id": branch.id,
        "supplier_id": supplier.id,
        "idempotency_key": "po-1",
        "lines": [{"variant_id": variant.id, "quantity": 12, "unit_cost_cents": 550}],
    }
    first = purchase_service.create_draft_purchase(business.id, owner.id, data)
    second = purchase_service.create_draft_purchase(business.id, owner.id, data)

    assert first.id == second.id
    assert first.total_cost_cents == 6600


def test_purchase_requires_lines(business, branch, supplier, owner):
    with pytest.raises(PurchaseError, match="at least one line"):
        purchase_service.create_draft_purchase(business.id, owner.id, {
            "branch_id": branch.id, "supplier_id": supplier.id, "lines": [],
        })


def test_document_numbers_are_sequential_per_branch(branch, db_session):
    first = next_document_number(branch_id=branch.id, document_type="RECEIPT", prefix="R")
    second = next_document_number(branch_id=branch.id, document_type="RECEIPT", prefix="R")
    other_type = next_document_number(branch_id=branch.id, document_type="PURCHASE", prefix="P")
    db_session.commit()

    assert first == f"R-{branch.id:03d}-0001"
    assert second == f"R-{branch.id:03d}-0002"
    assert other_type == f"P-{branch.id:03d}-0001"


def _locked_error():
    from sqlalchemy.exc import OperationalError

    return OperationalError("UPDATE document_sequences", {}, Exception("database is locked"))


def test_retry_recovers_from_transient_lock(db_session):
    from tillsync.services.concurrency import run_with_retry

    attempts = []

    def flaky():
        attempts.append(1)
        if len(attempts) < 3:
            raise _locked_error()
        return "R-001-0001"

    assert run_with_retry(flaky, label="document number", backoff_base=0) == "R-001-0001"
    assert len(attempts) == 3


def test_retry_gives_up_after_last_attempt(db_session):
    from sqlalchemy.exc import OperationalError

    from tillsync.services.concurrency import run_with_retry

    attempts = []

    def always_locked():
        attempts.append(1)
        raise _locked_error()

    with pytest.raises(OperationalError):
        run_with_retry(always_locked, attempts=2, backoff_base=0)
    assert len(attempts) == 2
