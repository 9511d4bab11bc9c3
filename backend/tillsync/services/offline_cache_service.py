# Overview: Builds the offline data extract returned to a device after every sync.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..models import (
    Barcode,
    Batch,
    Branch,
    Customer,
    PriceList,
    Product,
    StockSnapshot,
    Supplier,
    Unit,
    Variant,
)
from .permission_service import UserAccess
from .settings_service import BusinessSettingsSnapshot


def _active(model, business_id: int):
    return db.session.query(model).filter_by(business_id=business_id, status="ACTIVE").order_by(model.id.asc())


def build_offline_cache(business_id: int, access: UserAccess, settings: BusinessSettingsSnapshot) -> dict:
    """
    Everything a till needs to keep selling without a connection.

    Must run after the sync's actions are committed so stock and prices
    reflect them. Batches are only shipped when batch tracking is on.
    """
    batch_tracking = bool(settings.stock_policies.get("batch_tracking_enabled"))

    branches = _active(Branch, business_id).all()
    products = _active(Product, business_id).all()
    variants = _active(Variant, business_id).all()
    units = (
        db.session.query(Unit)
        .filter(or_(Unit.business_id == business_id, Unit.business_id.is_(None)))
        .order_by(Unit.id.asc())
        .all()
    )
    barcodes = (
        db.session.query(Barcode)
        .filter_by(business_id=business_id, is_active=True)
        .order_by(Barcode.id.asc())
        .all()
    )
    batches = (
        db.session.query(Batch).filter_by(business_id=business_id).order_by(Batch.id.asc()).all()
        if batch_tracking
        else []
    )
    snapshots = (
        db.session.query(StockSnapshot)
        .filter_by(business_id=business_id)
        .order_by(StockSnapshot.id.asc())
        .all()
    )

    return {
        "branches": [
            {"id": b.id, "name": b.name, "price_list_id": b.price_list_id}
            for b in branches
        ],
        "products": [p.to_dict() for p in products],
        "variants": [v.to_dict() for v in variants],
        "units": [u.to_dict() for u in units],
        "barcodes": [b.to_dict() for b in barcodes],
        "batches": [b.to_dict() for b in batches],
        "stock_snapshots": [s.to_dict() for s in snapshots],
        "customers": [c.to_dict() for c in _active(Customer, business_id).all()],
        "price_lists": [pl.to_dict() for pl in _active(PriceList, business_id).all()],
        "suppliers": [{"id": s.id, "name": s.name} for s in _active(Supplier, business_id).all()],
        "permissions": access.to_dict(),
        "settings": {
            "pos_policies": settings.pos_policies,
            "stock_policies": settings.stock_policies,
        },
    }
