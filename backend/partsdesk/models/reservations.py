from __future__ import annotations

from ..extensions import db
from partsdesk.time_utils import to_utc_z


TYPE_TEMPORARY = "TEMPORARY"
TYPE_DEPOSIT = "DEPOSIT"
RESERVATION_TYPES = frozenset({TYPE_TEMPORARY, TYPE_DEPOSIT})

STATUS_PENDING = "PENDING"
STATUS_DEPOSIT_VERIFIED = "DEPOSIT_VERIFIED"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUS_COMPLETED = "COMPLETED"
STATUS_CANCELLED = "CANCELLED"
STATUS_EXPIRED = "EXPIRED"

# Active reservations hold exactly one outstanding stock decrement.
ACTIVE_STATUSES = frozenset({STATUS_PENDING, STATUS_DEPOSIT_VERIFIED, STATUS_APPROVED})
TERMINAL_STATUSES = frozenset({STATUS_REJECTED, STATUS_COMPLETED, STATUS_CANCELLED, STATUS_EXPIRED})
RESERVATION_STATUSES = ACTIVE_STATUSES | TERMINAL_STATUSES


class Reservation(db.Model):
    """
    One customer's hold on a quantity of one product.

    PRICING: unit/total price and deposit amount are computed once at creation
    and frozen; later catalog price or settings changes do not touch them.

    VERIFICATION CODE: qr_code is generated once, independent of id, and stays
    a valid lookup key after the reservation reaches a terminal state.

    CONCURRENCY: version_id is an optimistic-lock counter. Two transitions
    racing on the same row cannot both commit; the loser raises StaleDataError
    and is retried against the fresh status.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.UniqueConstraint("qr_code", name="uq_reservations_qr_code"),
        db.CheckConstraint("quantity > 0", name="ck_reservations_quantity_positive"),
        db.Index("ix_reservations_status_expires", "status", "expires_at"),
        db.Index("ix_reservations_user_created", "user_id", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True)
    qr_code = db.Column(db.String(64), nullable=False)

    user_id = db.Column(db.String(64), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    type = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(24), nullable=False, default=STATUS_PENDING, index=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    deposit_amount_cents = db.Column(db.Integer, nullable=True)
    deposit_paid = db.Column(db.Boolean, nullable=False, default=False)

    payment_proof_url = db.Column(db.String(512), nullable=True)
    payment_method = db.Column(db.String(64), nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", lazy="joined", innerjoin=True)
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Reservation id={self.id} status={self.status} product_id={self.product_id} qty={self.quantity}>"

    @property
    def short_ref(self) -> str:
        return self.id[-8:]

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_code": self.qr_code,
            "user_id": self.user_id,
            "product_id": self.product_id,
            "product": {
                "id": self.product.id,
                "sku": self.product.sku,
                "name": self.product.name,
            } if self.product else None,
            "quantity": self.quantity,
            "type": self.type,
            "status": self.status,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "deposit_amount_cents": self.deposit_amount_cents,
            "deposit_paid": self.deposit_paid,
            "payment_proof_url": self.payment_proof_url,
            "payment_method": self.payment_method,
            "admin_notes": self.admin_notes,
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
