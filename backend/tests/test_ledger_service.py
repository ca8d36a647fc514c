"""
Stock ledger tests.

Verifies:
- Every stock change appends exactly one movement with a consistent snapshot
- Decreasing movements never drive stock negative
- Manual movements are admin-only and emit low_stock at the threshold
"""

import pytest

from partsdesk.models import InventoryMovement, Product
from partsdesk.services import ledger_service
from partsdesk.validation import (
    ForbiddenError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)


def _stock(db_session, product_id):
    db_session.expire_all()
    return db_session.get(Product, product_id).stock


class TestApplyStockMovement:

    def test_increase_records_snapshot(self, db_session, product):
        movement = ledger_service.apply_stock_movement(
            product_id=product.id, movement_type="RETURN", quantity=3, reason="Customer return",
        )
        db_session.commit()

        assert movement.previous_stock == 10
        assert movement.new_stock == 13
        assert movement.signed_quantity == 3
        assert _stock(db_session, product.id) == 13

    def test_decrease_records_snapshot(self, db_session, product):
        movement = ledger_service.apply_stock_movement(
            product_id=product.id, movement_type="DAMAGED", quantity=4,
        )
        db_session.commit()

        assert movement.previous_stock == 10
        assert movement.new_stock == 6
        assert movement.new_stock - movement.previous_stock == movement.signed_quantity

    def test_decrease_beyond_stock_is_rejected(self, db_session, product):
        with pytest.raises(InsufficientStockError) as exc:
            ledger_service.apply_stock_movement(
                product_id=product.id, movement_type="OUT", quantity=11,
            )
        db_session.rollback()

        assert exc.value.context["available_stock"] == 10
        assert exc.value.context["requested_quantity"] == 11
        assert _stock(db_session, product.id) == 10

    def test_decrease_to_exactly_zero_is_allowed(self, db_session, product):
        movement = ledger_service.apply_stock_movement(
            product_id=product.id, movement_type="OUT", quantity=10,
        )
        db_session.commit()
        assert movement.new_stock == 0
        assert _stock(db_session, product.id) == 0

    def test_unknown_product(self, db_session):
        with pytest.raises(NotFoundError):
            ledger_service.apply_stock_movement(product_id=999, movement_type="IN", quantity=1)

    @pytest.mark.parametrize("movement_type,quantity", [("TELEPORT", 1), ("IN", 0), ("OUT", -2)])
    def test_rejects_bad_input(self, db_session, product, movement_type, quantity):
        with pytest.raises(ValidationError):
            ledger_service.apply_stock_movement(
                product_id=product.id, movement_type=movement_type, quantity=quantity,
            )

    def test_ledger_sum_matches_stock(self, db_session, product):
        for movement_type, qty in [("OUT", 2), ("IN", 5), ("LOST", 1), ("ADJUSTMENT_IN", 3)]:
            ledger_service.apply_stock_movement(
                product_id=product.id, movement_type=movement_type, quantity=qty,
            )
            db_session.commit()

        movements = InventoryMovement.query.filter_by(product_id=product.id).all()
        assert sum(m.signed_quantity for m in movements) == _stock(db_session, product.id) == 15


class TestManualMovements:

    def test_admin_records_movement(self, db_session, product, admin):
        movement = ledger_service.record_manual_movement(
            admin, product_id=product.id, movement_type="IN", quantity=5, reason="Supplier delivery",
        )
        assert movement.id is not None
        assert movement.user_id == "admin-1"
        assert movement.reservation_id is None
        assert _stock(db_session, product.id) == 15

    def test_customer_cannot_record_movement(self, db_session, product, customer):
        with pytest.raises(ForbiddenError):
            ledger_service.record_manual_movement(
                customer, product_id=product.id, movement_type="IN", quantity=5,
            )
        assert _stock(db_session, product.id) == 10

    def test_low_stock_notification(self, db_session, admin, events, make_product):
        low = make_product(sku="FLT-9", name="Oil filter", stock=4, min_stock=2)
        events()

        ledger_service.record_manual_movement(
            admin, product_id=low.id, movement_type="DAMAGED", quantity=1,
        )
        assert [e for e in events() if e.type == "low_stock"] == []

        ledger_service.record_manual_movement(
            admin, product_id=low.id, movement_type="DAMAGED", quantity=1,
        )
        low_stock = [e for e in events() if e.type == "low_stock"]
        assert len(low_stock) == 1
        assert low_stock[0].data["productId"] == low.id
        assert low_stock[0].data["stock"] == 2


class TestListMovements:

    def test_newest_first_with_total(self, db_session, product, admin):
        for qty in (1, 2, 3):
            ledger_service.record_manual_movement(
                admin, product_id=product.id, movement_type="OUT", quantity=qty,
            )

        items, total = ledger_service.list_movements(product_id=product.id, limit=2)
        assert total == 4  # opening stock + three manual entries
        assert len(items) == 2
        assert items[0].quantity == 3
        assert items[1].quantity == 2

    def test_filter_by_type(self, db_session, product, admin):
        ledger_service.record_manual_movement(
            admin, product_id=product.id, movement_type="LOST", quantity=1,
        )
        items, total = ledger_service.list_movements(movement_type="LOST")
        assert total == 1
        assert items[0].type == "LOST"

    def test_unknown_type_filter(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.list_movements(movement_type="NOPE")
