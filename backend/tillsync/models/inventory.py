from __future__ import annotations

from ..extensions import db
from tillsync.time_utils import to_utc_z


class StockSnapshot(db.Model):
    """
    Current stock position of a variant at a branch.

    CONCURRENCY: quantity is only ever changed through a single SQL
    UPDATE ... SET quantity = quantity + :delta (inventory_service.apply_stock_delta).
    Reads that precede the update (e.g., "enough stock to sell?") are
    optimistic and not locked.

    No version_id_col here: the atomic update bypasses the ORM unit of work.
    """
    __tablename__ = "stock_snapshots"
    __table_args__ = (
        db.UniqueConstraint("business_id", "branch_id", "variant_id", name="uq_stock_snapshots_scope"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    in_transit_quantity = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "in_transit_quantity": self.in_transit_quantity,
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    movement_type: SALE_OUT, ADJUSTMENT_POSITIVE, ADJUSTMENT_NEGATIVE.
    quantity is always positive; direction is carried by movement_type.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_scope", "business_id", "branch_id", "variant_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("variants.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("batches.id"), nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)
    loss_reason = db.Column(db.String(32), nullable=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True, index=True)
    idempotency_key = db.Column(db.String(128), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "branch_id": self.branch_id,
            "variant_id": self.variant_id,
            "batch_id": self.batch_id,
            "created_by_user_id": self.created_by_user_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reason": self.reason,
            "loss_reason": self.loss_reason,
            "sale_id": self.sale_id,
            "created_at": to_utc_z(self.created_at),
        }
