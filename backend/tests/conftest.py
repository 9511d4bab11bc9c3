"""
Pytest fixtures for tillsync backend tests.

Provides test database setup, a seeded business with catalog and stock,
offline devices, and a test client whose identity comes from headers.
"""

from datetime import datetime, timedelta

import pytest
from flask import g, request

from tillsync import create_app
from tillsync.extensions import db
from tillsync.models import Product, Variant, StockSnapshot, Supplier, User, Role
from tillsync.services import tenant_service
from tillsync.services.offline_sync_service import OfflineSyncService
from tillsync.time_utils import utcnow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    # Stand-in for the upstream auth layer
    @app.before_request
    def load_identity_from_headers():
        business_id = request.headers.get('X-Business-Id')
        user_id = request.headers.get('X-User-Id')
        g.business_id = int(business_id) if business_id else None
        g.user_id = int(user_id) if user_id else None

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Business on the BUSINESS tier with one branch and an admin owner."""
    return tenant_service.create_business(name="Corner Shop", owner_username="owner")


@pytest.fixture(scope='function')
def business(tenant):
    return tenant[0]


@pytest.fixture(scope='function')
def owner(tenant):
    return tenant[1]


@pytest.fixture(scope='function')
def branch(tenant):
    return tenant[2]


@pytest.fixture(scope='function')
def cashier(db_session, business):
    """Active member with the default cashier role."""
    user = User(username="cashier", email="cashier@localhost")
    db_session.add(user)
    db_session.flush()

    role = db_session.query(Role).filter_by(business_id=business.id, name="cashier").first()
    tenant_service.add_member(business.id, user.id, role=role)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def variant(db_session, business, branch):
    """Stock-tracked variant priced at 10.00 with 10 on hand."""
    product = Product(business_id=business.id, name="Cola")
    db_session.add(product)
    db_session.flush()

    variant = Variant(
        business_id=business.id,
        product_id=product.id,
        name="Cola 500ml",
        sku="COLA-500",
        default_price_cents=1000,
    )
    db_session.add(variant)
    db_session.flush()

    db_session.add(StockSnapshot(
        business_id=business.id,
        branch_id=branch.id,
        variant_id=variant.id,
        quantity=10,
        in_transit_quantity=0,
    ))
    db_session.commit()
    return variant


@pytest.fixture(scope='function')
def supplier(db_session, business):
    supplier = Supplier(business_id=business.id, name="Wholesale Ltd")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def engine(db_session):
    return OfflineSyncService()


@pytest.fixture(scope='function')
def owner_device(engine, business, owner):
    return engine.devices.register_device(business.id, owner.id, "Back Office", "till-owner")


@pytest.fixture(scope='function')
def cashier_device(engine, business, cashier):
    return engine.devices.register_device(business.id, cashier.id, "Front Till", "till-cashier")


def stock_on_hand(business_id: int, branch_id: int, variant_id: int) -> int:
    snapshot = db.session.query(StockSnapshot).filter_by(
        business_id=business_id, branch_id=branch_id, variant_id=variant_id
    ).first()
    return snapshot.quantity if snapshot else 0


def sale_action(
    checksum: str,
    *,
    branch_id: int,
    variant_id: int,
    quantity: int = 1,
    unit_price_cents: int = 1000,
    cart_discount_cents: int = 0,
    provisional_at: datetime | None = None,
    local_audit_id: str | None = None,
) -> dict:
    """Queued SALE_COMPLETE action paid in full with cash."""
    total = unit_price_cents * quantity - cart_discount_cents
    payload = {
        "branch_id": branch_id,
        "lines": [{"variant_id": variant_id, "quantity": quantity, "unit_price_cents": unit_price_cents}],
        "payments": [{"method": "CASH", "amount_cents": total}],
        "total_cents": total,
    }
    if cart_discount_cents:
        payload["cart_discount_cents"] = cart_discount_cents
    return {
        "action_type": "SALE_COMPLETE",
        "checksum": checksum,
        "payload": payload,
        "provisional_at": (provisional_at or datetime(2026, 1, 5, 9, 0)).isoformat() + "Z",
        "local_audit_id": local_audit_id or checksum,
    }


def adjustment_action(checksum: str, *, branch_id: int, variant_id: int, quantity: int = 5, type: str = "POSITIVE", **extra) -> dict:
    return {
        "action_type": "STOCK_ADJUSTMENT",
        "checksum": checksum,
        "payload": {"branch_id": branch_id, "variant_id": variant_id, "quantity": quantity, "type": type, **extra},
        "provisional_at": "2026-01-05T09:30:00Z",
    }


def purchase_action(checksum: str, *, branch_id: int, supplier_id: int, variant_id: int) -> dict:
    return {
        "action_type": "PURCHASE_DRAFT",
        "checksum": checksum,
        "payload": {
            "branch_id": branch_id,
            "supplier_id": supplier_id,
            "lines": [{"variant_id": variant_id, "quantity": 24, "unit_cost_cents": 600}],
        },
        "provisional_at": "2026-01-05T10:00:00Z",
    }


def hours_ago(hours: float) -> datetime:
    return utcnow() - timedelta(hours=hours)


def identity_headers(business_id: int, user_id: int) -> dict:
    """Helper to create the identity headers the upstream auth layer would set."""
    return {'X-Business-Id': str(business_id), 'X-User-Id': str(user_id)}
