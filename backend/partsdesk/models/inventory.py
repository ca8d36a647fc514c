from __future__ import annotations

from ..extensions import db
from partsdesk.time_utils import to_utc_z


INCREASING_MOVEMENT_TYPES = frozenset({"IN", "RETURN", "ADJUSTMENT_IN"})
DECREASING_MOVEMENT_TYPES = frozenset({"OUT", "SALE", "ADJUSTMENT_OUT", "DAMAGED", "LOST"})
MOVEMENT_TYPES = INCREASING_MOVEMENT_TYPES | DECREASING_MOVEMENT_TYPES


class InventoryMovement(db.Model):
    """
    Stock ledger entry.

    Append-only: rows are never updated or deleted. Each row snapshots the
    product's stock before and after the movement, so
    new_stock - previous_stock == +quantity for increasing types and
    -quantity for decreasing types.
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_inventory_movements_quantity_positive"),
        db.Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    type = db.Column(db.String(32), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Actor; NULL for system-generated entries (expiration sweep)
    user_id = db.Column(db.String(64), nullable=True, index=True)
    reservation_id = db.Column(db.String(32), db.ForeignKey("reservations.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", lazy="joined", innerjoin=True)

    @property
    def signed_quantity(self) -> int:
        if self.type in INCREASING_MOVEMENT_TYPES:
            return self.quantity
        return -self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "type": self.type,
            "quantity": self.quantity,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "notes": self.notes,
            "user_id": self.user_id,
            "reservation_id": self.reservation_id,
            "created_at": to_utc_z(self.created_at),
        }
