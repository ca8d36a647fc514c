# Overview: Service-layer operations for the stock ledger; every stock change goes through here.

from __future__ import annotations

from sqlalchemy import select, update
from sqlalchemy.orm.util import identity_key

from ..extensions import db
from ..identity import Actor
from ..models import InventoryMovement, Product
from ..models.inventory import (
    DECREASING_MOVEMENT_TYPES,
    INCREASING_MOVEMENT_TYPES,
    MOVEMENT_TYPES,
)
from ..validation import ForbiddenError, InsufficientStockError, NotFoundError, ValidationError
from . import notification_service
from .concurrency import run_with_retry
"""
Stock Ledger Invariants (authoritative)

- Product.stock is only mutated by apply_stock_movement(), which appends an
  InventoryMovement row in the same DB transaction. The caller owns the
  transaction boundary (commit/rollback).
- Stock changes are row-level conditional UPDATEs (stock = stock +/- q), never
  read-then-write. Decreasing movements carry a `stock >= q` guard in the same
  statement, so concurrent reservations serialize on the row and stock never
  goes negative.
- previous_stock/new_stock are read back after the UPDATE inside the same
  transaction, so the snapshot is the one this transaction produced.
- The ledger is append-only (no updates/deletes).
"""


def _expire_cached_product(product_id: int) -> None:
    cached = db.session.identity_map.get(identity_key(Product, product_id))
    if cached is not None:
        db.session.expire(cached, ["stock", "updated_at"])


def apply_stock_movement(
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    notes: str | None = None,
    user_id: str | None = None,
    reservation_id: str | None = None,
) -> InventoryMovement:
    """
    Apply a signed stock change and append its ledger entry. Does not commit.

    Raises:
        ValidationError: unknown movement type or non-positive quantity
        NotFoundError: product does not exist
        InsufficientStockError: a decreasing movement would drive stock negative
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type '{movement_type}'", field="type")
    if quantity is None or quantity <= 0:
        raise ValidationError("quantity must be > 0", field="quantity")

    stmt = update(Product).where(Product.id == product_id)
    if movement_type in DECREASING_MOVEMENT_TYPES:
        stmt = stmt.where(Product.stock >= quantity).values(stock=Product.stock - quantity)
        signed = -quantity
    else:
        stmt = stmt.values(stock=Product.stock + quantity)
        signed = quantity

    result = db.session.execute(stmt.execution_options(synchronize_session=False))

    if result.rowcount == 0:
        current = db.session.execute(
            select(Product.stock).where(Product.id == product_id)
        ).scalar_one_or_none()
        if current is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        raise InsufficientStockError(
            f"Insufficient stock: {current} available, {quantity} requested",
            product_id=product_id,
            available_stock=current,
            requested_quantity=quantity,
        )

    _expire_cached_product(product_id)

    new_stock = db.session.execute(
        select(Product.stock).where(Product.id == product_id)
    ).scalar_one()

    movement = InventoryMovement(
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        previous_stock=new_stock - signed,
        new_stock=new_stock,
        reason=reason,
        notes=notes,
        user_id=user_id,
        reservation_id=reservation_id,
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def notify_if_low_stock(movement: InventoryMovement) -> None:
    """Post-commit hook: warn admins when a decrement reaches the product's minimum."""
    if movement.type in INCREASING_MOVEMENT_TYPES:
        return
    product = movement.product
    if product is None or movement.new_stock > product.min_stock:
        return
    notification_service.emit(
        notification_service.EVENT_LOW_STOCK,
        "Low stock",
        f"{product.name} is down to {movement.new_stock} (minimum {product.min_stock})",
        {
            "productId": product.id,
            "productName": product.name,
            "stock": movement.new_stock,
            "minStock": product.min_stock,
        },
    )


def record_manual_movement(
    actor: Actor,
    *,
    product_id: int,
    movement_type: str,
    quantity: int,
    reason: str | None = None,
    notes: str | None = None,
) -> InventoryMovement:
    """
    Admin-entered movement (receipts, damage, loss, count corrections).

    Committed on its own; reservation-driven movements use
    apply_stock_movement() inside the reservation's transaction instead.
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can record inventory movements")

    def _op():
        if db.session.get(Product, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found", product_id=product_id)
        movement = apply_stock_movement(
            product_id=product_id,
            movement_type=movement_type,
            quantity=quantity,
            reason=reason,
            notes=notes,
            user_id=actor.user_id,
        )
        db.session.commit()
        return movement

    movement = run_with_retry(_op)
    notify_if_low_stock(movement)
    return movement


def list_movements(
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    reservation_id: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[InventoryMovement], int]:
    """Ledger entries newest first, with the unpaginated total."""
    if movement_type is not None and movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"Unknown movement type '{movement_type}'", field="type")

    q = InventoryMovement.query
    if product_id is not None:
        q = q.filter(InventoryMovement.product_id == product_id)
    if movement_type is not None:
        q = q.filter(InventoryMovement.type == movement_type)
    if reservation_id is not None:
        q = q.filter(InventoryMovement.reservation_id == reservation_id)

    total = q.count()
    items = (
        q.order_by(InventoryMovement.created_at.desc(), InventoryMovement.id.desc())
        .offset(max(0, offset))
        .limit(max(1, min(limit, 500)))
        .all()
    )
    return items, total
