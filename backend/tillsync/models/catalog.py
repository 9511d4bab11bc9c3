from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: Products are scoped to a business. Sellable units are
    Variants; the product only groups them for display.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    category_id = db.Column(db.Integer, nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")  # ACTIVE, INACTIVE, ARCHIVED

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category_id": self.category_id,
        }


class Variant(db.Model):
    """
    Sellable variant of a product.

    PRICING:
    - default_price_cents is the authoritative catalog price (offline price
      variance is measured against it)
    - min_price_cents blocks sales priced below the floor
    - track_stock=False variants never touch stock snapshots
    """
    __tablename__ = "variants"
    __table_args__ = (
        db.UniqueConstraint("business_id", "sku", name="uq_variants_business_sku"),
        db.Index("ix_variants_business_status", "business_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)

    default_price_cents = db.Column(db.Integer, nullable=True)
    min_price_cents = db.Column(db.Integer, nullable=True)
    vat_mode = db.Column(db.String(16), nullable=False, default="INCLUSIVE")  # INCLUSIVE, EXCLUSIVE, EXEMPT
    track_stock = db.Column(db.Boolean, nullable=False, default=True)
    base_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    sell_unit_id = db.Column(db.Integer, db.ForeignKey("units.id"), nullable=True)
    conversion_factor = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True))

    def __repr__(self) -> str:
        return f"<Variant id={self.id} sku={self.sku!r} business_id={self.business_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "name": self.name,
            "sku": self.sku,
            "default_price_cents": self.default_price_cents,
            "min_price_cents": self.min_price_cents,
            "vat_mode": self.vat_mode,
            "track_stock": self.track_stock,
            "base_unit_id": self.base_unit_id,
            "sell_unit_id": self.sell_unit_id,
            "conversion_factor": self.conversion_factor,
        }


class Unit(db.Model):
    """Unit of measure. business_id NULL marks a system-wide unit shared by all tenants."""
    __tablename__ = "units"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=True, index=True)
    code = db.Column(db.String(32), nullable=False)
    label = db.Column(db.String(64), nullable=False)
    unit_type = db.Column(db.String(16), nullable=False, default="COUNT")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "label": self.label,
            "unit_type": self.unit_type,
            "business_id": self.business_id,
        }


class Barcode(db.Model):
    __tablename__ = "barcodes"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_barcodes_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)
    code = db.Column(db.String(64), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "code": self.code,
            "is_active": self.is_active,
        }


class Batch(db.Model):
    """
    Stock batch (lot) at a branch.

    Only consulted when stock_policies.batch_tracking_enabled is on. Sales
    pick the oldest batch (FIFO) or the soonest-expiring one (FEFO).
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.Index("ix_batches_branch_variant", "branch_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    code = db.Column(db.String(64), nullable=False)
    expiry_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "code": self.code,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
        }


class PriceList(db.Model):
    __tablename__ = "price_lists"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "items": [item.to_dict() for item in self.items],
        }


class PriceListItem(db.Model):
    __tablename__ = "price_list_items"
    __table_args__ = (
        db.UniqueConstraint("price_list_id", "variant_id", name="uq_price_list_items"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)

    price_list = db.relationship("PriceList", backref=db.backref("items", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "variant_id": self.variant_id,
            "price_cents": self.price_cents,
        }


class Customer(db.Model):
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    price_list_id = db.Column(db.Integer, db.ForeignKey("price_lists.id"), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "price_list_id": self.price_list_id,
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }
