"""
Reservation Store

Creates customer holds against catalog stock and serves reservation reads.

CREATION (one DB transaction, all or nothing):
1. Insert the Reservation row (status PENDING) with frozen pricing.
2. Decrement products.stock by quantity (row-level, guarded by stock >= qty).
3. Append an OUT ledger entry referencing the reservation.

Expiry budget at creation:
- TEMPORARY: now + temp_reservation_minutes
- DEPOSIT:   now + pending_verification_hours (admin must verify the deposit)

Admin notification (new_reservation / deposit_received) is emitted only after
commit and can never roll the reservation back.
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta

from ..extensions import db
from ..identity import Actor
from ..models import Product, Reservation
from ..models.reservations import (
    RESERVATION_STATUSES,
    RESERVATION_TYPES,
    STATUS_PENDING,
    TYPE_DEPOSIT,
    TYPE_TEMPORARY,
)
from ..validation import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    coerce_int,
    coerce_optional_str,
)
from partsdesk.time_utils import normalize_utc, utcnow
from . import ledger_service, notification_service, settings_service
from .concurrency import lock_for_update, run_with_retry


def _new_reservation_id() -> str:
    return uuid.uuid4().hex


def _new_verification_code() -> str:
    # Independent of the id so the pickup token cannot be derived from it.
    return secrets.token_urlsafe(24)


def compute_deposit_cents(total_price_cents: int, deposit_percentage: int) -> int:
    """total * pct / 100, rounded half-up to the nearest cent."""
    return (total_price_cents * deposit_percentage + 50) // 100


def _describe_type(reservation_type: str) -> str:
    return "temporary" if reservation_type == TYPE_TEMPORARY else "deposit"


def create_reservation(
    actor: Actor,
    *,
    product_id,
    quantity=1,
    reservation_type: str = TYPE_TEMPORARY,
    payment_proof_url: str | None = None,
    payment_method: str | None = None,
    now: datetime | None = None,
) -> Reservation:
    """
    Reserve `quantity` units of a product for the calling customer.

    Raises:
        ForbiddenError: caller's account is not approved
        ValidationError: malformed input, or DEPOSIT without payment proof
        NotFoundError: product missing or inactive
        InsufficientStockError: not enough stock (context has available_stock)
    """
    if not actor.is_approved:
        raise ForbiddenError(
            "Your account must be approved before making reservations",
            approval_status=actor.approval_status,
        )

    if product_id is None or product_id == "":
        raise ValidationError("product_id is required", field="product_id")
    product_id = coerce_int(product_id, "product_id")
    quantity = coerce_int(quantity, "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")

    reservation_type = (coerce_optional_str(reservation_type, "type") or TYPE_TEMPORARY).upper()
    if reservation_type not in RESERVATION_TYPES:
        raise ValidationError(
            f"type must be one of: {', '.join(sorted(RESERVATION_TYPES))}",
            field="type",
        )

    payment_proof_url = coerce_optional_str(payment_proof_url, "payment_proof_url")
    payment_method = coerce_optional_str(payment_method, "payment_method")
    if reservation_type == TYPE_DEPOSIT and not payment_proof_url:
        raise ValidationError("Payment proof is required for deposit reservations", field="payment_proof_url")
    if reservation_type == TYPE_TEMPORARY:
        payment_proof_url = None
        payment_method = None

    now = normalize_utc(now) if now is not None else utcnow()
    settings = settings_service.get_snapshot()

    def _op():
        product = lock_for_update(
            db.session.query(Product).filter_by(id=product_id)
        ).first()
        if product is None or not product.is_active:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        if product.stock < quantity:
            raise InsufficientStockError(
                f"Insufficient stock: {product.stock} available, {quantity} requested",
                product_id=product_id,
                available_stock=product.stock,
                requested_quantity=quantity,
            )

        unit_price = product.unit_price_for_tier(actor.customer_tier)
        total_price = unit_price * quantity

        if reservation_type == TYPE_TEMPORARY:
            expires_at = now + timedelta(minutes=settings.temp_reservation_minutes)
            deposit_amount = None
        else:
            expires_at = now + timedelta(hours=settings.pending_verification_hours)
            deposit_amount = compute_deposit_cents(total_price, settings.deposit_percentage)

        reservation = Reservation(
            id=_new_reservation_id(),
            qr_code=_new_verification_code(),
            user_id=actor.user_id,
            product_id=product.id,
            quantity=quantity,
            type=reservation_type,
            status=STATUS_PENDING,
            unit_price_cents=unit_price,
            total_price_cents=total_price,
            deposit_amount_cents=deposit_amount,
            deposit_paid=False,
            payment_proof_url=payment_proof_url,
            payment_method=payment_method,
            expires_at=expires_at,
            created_at=now,
        )
        db.session.add(reservation)
        db.session.flush()

        movement = ledger_service.apply_stock_movement(
            product_id=product.id,
            movement_type="OUT",
            quantity=quantity,
            reason=f"Reservation ({_describe_type(reservation_type)}) #{reservation.short_ref}",
            user_id=actor.user_id,
            reservation_id=reservation.id,
        )

        db.session.commit()
        return reservation, movement

    reservation, movement = run_with_retry(_op)

    product = reservation.product
    if reservation.type == TYPE_DEPOSIT:
        event_type = notification_service.EVENT_DEPOSIT_RECEIVED
        title = "New deposit reservation"
    else:
        event_type = notification_service.EVENT_NEW_RESERVATION
        title = "New temporary reservation"
    notification_service.emit(
        event_type,
        title,
        f"User {reservation.user_id} reserved {reservation.quantity}x {product.name}",
        {
            "reservationId": reservation.id,
            "productName": product.name,
            "quantity": reservation.quantity,
            "totalPriceCents": reservation.total_price_cents,
            "userId": reservation.user_id,
        },
    )
    ledger_service.notify_if_low_stock(movement)

    return reservation


def list_reservations(
    actor: Actor,
    *,
    status: str | None = None,
    reservation_type: str | None = None,
) -> list[Reservation]:
    """Newest first. Customers only ever see their own reservations."""
    q = Reservation.query

    if not actor.is_admin:
        q = q.filter(Reservation.user_id == actor.user_id)

    if status:
        status = status.upper()
        if status not in RESERVATION_STATUSES:
            raise ValidationError(f"Unknown status '{status}'", field="status")
        q = q.filter(Reservation.status == status)

    if reservation_type:
        reservation_type = reservation_type.upper()
        if reservation_type not in RESERVATION_TYPES:
            raise ValidationError(f"Unknown type '{reservation_type}'", field="type")
        q = q.filter(Reservation.type == reservation_type)

    return q.order_by(Reservation.created_at.desc(), Reservation.id.desc()).all()


def get_reservation(actor: Actor, reservation_id: str) -> Reservation:
    reservation = db.session.get(Reservation, reservation_id)
    if reservation is None:
        raise NotFoundError(f"Reservation {reservation_id} not found", reservation_id=reservation_id)
    if not actor.is_admin and reservation.user_id != actor.user_id:
        raise ForbiddenError("You can only view your own reservations")
    return reservation
