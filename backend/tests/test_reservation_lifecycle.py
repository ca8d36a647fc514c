"""
Reservation state machine tests.

Verifies:
- Every action in the transition table from each legal source state
- Illegal transitions are rejected without any write
- Stock is returned exactly once (cancel/reject/expire) and never on complete
- Authorization: owner vs admin vs system
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm.exc import StaleDataError

from partsdesk.identity import SYSTEM_ACTOR
from partsdesk.models import InventoryMovement, Product, Reservation
from partsdesk.services import reservation_lifecycle_service as lifecycle
from partsdesk.services import reservation_service
from partsdesk.services.concurrency import run_with_retry
from partsdesk.validation import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


NOW = datetime(2026, 10, 19, 12, 0, 0)


def _stock(db_session, product_id):
    db_session.expire_all()
    return db_session.get(Product, product_id).stock


def _movements(reservation_id):
    return (
        InventoryMovement.query
        .filter_by(reservation_id=reservation_id)
        .order_by(InventoryMovement.id.asc())
        .all()
    )


def _drive_to(status, admin, customer, reservation_id):
    """Move a fresh PENDING reservation into the given terminal status."""
    if status == "COMPLETED":
        lifecycle.apply_action(admin, reservation_id, "approve", now=NOW)
        lifecycle.apply_action(admin, reservation_id, "complete", now=NOW)
    elif status == "REJECTED":
        lifecycle.apply_action(admin, reservation_id, "reject", now=NOW)
    elif status == "CANCELLED":
        lifecycle.apply_action(customer, reservation_id, "cancel", now=NOW)
    elif status == "EXPIRED":
        lifecycle.expire_reservation(SYSTEM_ACTOR, reservation_id, now=NOW + timedelta(hours=1))


@pytest.fixture
def temporary(db_session, product, customer):
    return reservation_service.create_reservation(customer, product_id=product.id, quantity=2, now=NOW)


@pytest.fixture
def deposit(db_session, product, customer):
    return reservation_service.create_reservation(
        customer,
        product_id=product.id,
        quantity=1,
        reservation_type="DEPOSIT",
        payment_proof_url="proof://deposit",
        now=NOW,
    )


class TestCancel:

    def test_owner_cancels_pending(self, db_session, product, customer, temporary, events):
        events()
        reservation = lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)

        assert reservation.status == "CANCELLED"
        assert _stock(db_session, product.id) == 10

        movements = _movements(temporary.id)
        assert [m.type for m in movements] == ["OUT", "IN"]
        assert movements[1].quantity == 2
        assert movements[1].previous_stock == 8
        assert movements[1].new_stock == 10
        assert movements[1].user_id == "cust-1"
        assert "cancelled" in movements[1].reason

        updated = [e for e in events() if e.type == "reservation_updated"]
        assert len(updated) == 1
        assert updated[0].data["reservationId"] == temporary.id

    def test_admin_cancel_does_not_notify(self, db_session, admin, temporary, events):
        events()
        lifecycle.apply_action(admin, temporary.id, "cancel", now=NOW)
        assert [e for e in events() if e.type == "reservation_updated"] == []

    def test_other_customer_cannot_cancel(self, db_session, product, other_customer, temporary):
        with pytest.raises(ForbiddenError):
            lifecycle.apply_action(other_customer, temporary.id, "cancel", now=NOW)

        db_session.expire_all()
        assert db_session.get(Reservation, temporary.id).status == "PENDING"
        assert _stock(db_session, product.id) == 8

    def test_double_cancel_returns_stock_once(self, db_session, product, customer, temporary):
        lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)

        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)

        assert exc.value.context["current_status"] == "CANCELLED"
        assert _stock(db_session, product.id) == 10
        assert len(_movements(temporary.id)) == 2

    def test_cancel_keeps_notes_when_omitted(self, db_session, admin, customer, temporary):
        lifecycle.apply_action(admin, temporary.id, "approve", admin_notes="Call before pickup", now=NOW)
        reservation = lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)
        assert reservation.admin_notes == "Call before pickup"


class TestDepositFlow:

    def test_verify_deposit_extends_hold_then_complete(self, db_session, product, admin, deposit):
        verified = lifecycle.apply_action(admin, deposit.id, "verify_deposit", now=NOW + timedelta(hours=1))

        assert verified.status == "DEPOSIT_VERIFIED"
        assert verified.deposit_paid is True
        assert verified.expires_at == NOW + timedelta(hours=1) + timedelta(hours=48)

        completed = lifecycle.apply_action(admin, deposit.id, "complete", now=NOW + timedelta(hours=2))
        assert completed.status == "COMPLETED"
        assert _stock(db_session, product.id) == 9
        assert [m.type for m in _movements(deposit.id)] == ["OUT"]

    def test_verify_requires_deposit_type(self, db_session, admin, temporary):
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.apply_action(admin, temporary.id, "verify_deposit", now=NOW)
        assert exc.value.context["current_status"] == "PENDING"

    def test_verify_only_from_pending(self, db_session, admin, deposit):
        lifecycle.apply_action(admin, deposit.id, "approve", now=NOW)
        with pytest.raises(InvalidTransitionError):
            lifecycle.apply_action(admin, deposit.id, "verify_deposit", now=NOW)

    def test_customer_cannot_verify(self, db_session, customer, deposit):
        with pytest.raises(ForbiddenError):
            lifecycle.apply_action(customer, deposit.id, "verify_deposit", now=NOW)

    def test_verify_uses_current_deposit_hours(self, db_session, admin, deposit):
        from partsdesk.services import settings_service
        settings_service.update_settings(admin, {"deposit_reservation_hours": 72})

        verified = lifecycle.apply_action(admin, deposit.id, "verify_deposit", now=NOW)
        assert verified.expires_at == NOW + timedelta(hours=72)


class TestAdminActions:

    def test_approve_then_complete_never_returns_stock(self, db_session, product, admin, temporary):
        lifecycle.apply_action(admin, temporary.id, "approve", now=NOW)
        completed = lifecycle.apply_action(admin, temporary.id, "complete", now=NOW)

        assert completed.status == "COMPLETED"
        assert _stock(db_session, product.id) == 8
        assert len(_movements(temporary.id)) == 1

    def test_reject_returns_stock_and_stores_notes(self, db_session, product, admin, temporary):
        rejected = lifecycle.apply_action(admin, temporary.id, "reject", admin_notes="Out of season", now=NOW)

        assert rejected.status == "REJECTED"
        assert rejected.admin_notes == "Out of season"
        assert _stock(db_session, product.id) == 10

        movements = _movements(temporary.id)
        assert [m.type for m in movements] == ["OUT", "IN"]
        assert movements[1].user_id == "admin-1"

    def test_complete_from_pending_is_invalid(self, db_session, product, admin, temporary):
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.apply_action(admin, temporary.id, "complete", admin_notes="nope", now=NOW)

        assert exc.value.context["current_status"] == "PENDING"
        db_session.expire_all()
        stored = db_session.get(Reservation, temporary.id)
        assert stored.status == "PENDING"
        assert stored.admin_notes is None
        assert _stock(db_session, product.id) == 8

    @pytest.mark.parametrize("action", ["approve", "reject", "complete"])
    def test_customer_cannot_run_admin_actions(self, db_session, customer, temporary, action):
        with pytest.raises(ForbiddenError):
            lifecycle.apply_action(customer, temporary.id, action, now=NOW)

    @pytest.mark.parametrize("terminal", ["COMPLETED", "REJECTED", "CANCELLED", "EXPIRED"])
    @pytest.mark.parametrize("action", ["cancel", "approve", "reject", "complete", "verify_deposit"])
    def test_terminal_states_reject_every_action(
        self, db_session, product, admin, customer, temporary, terminal, action
    ):
        _drive_to(terminal, admin, customer, temporary.id)
        stock_before = _stock(db_session, product.id)
        movements_before = len(_movements(temporary.id))

        actor = customer if action == "cancel" else admin
        with pytest.raises(InvalidTransitionError) as exc:
            lifecycle.apply_action(actor, temporary.id, action, now=NOW)

        assert exc.value.context["current_status"] == terminal
        assert _stock(db_session, product.id) == stock_before
        assert len(_movements(temporary.id)) == movements_before

    def test_owner_cannot_cancel_completed(self, db_session, product, admin, customer, temporary):
        _drive_to("COMPLETED", admin, customer, temporary.id)

        with pytest.raises(InvalidTransitionError):
            lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)

        assert _stock(db_session, product.id) == 8
        db_session.expire_all()
        assert db_session.get(Reservation, temporary.id).status == "COMPLETED"

    def test_customer_cancel_ignores_admin_notes(self, db_session, customer, temporary):
        reservation = lifecycle.apply_action(
            customer, temporary.id, "cancel", admin_notes="approved by manager", now=NOW,
        )
        assert reservation.status == "CANCELLED"
        assert reservation.admin_notes is None


class TestFailureOrder:

    def test_unknown_action(self, db_session, admin, temporary):
        with pytest.raises(ValidationError):
            lifecycle.apply_action(admin, temporary.id, "teleport", now=NOW)

    def test_expire_is_not_a_public_action(self, db_session, admin, temporary):
        with pytest.raises(ValidationError):
            lifecycle.apply_action(admin, temporary.id, "expire", now=NOW)

    def test_unknown_action_beats_missing_reservation(self, db_session, admin):
        with pytest.raises(ValidationError):
            lifecycle.apply_action(admin, "0" * 32, "teleport", now=NOW)

    def test_missing_reservation(self, db_session, admin):
        with pytest.raises(NotFoundError):
            lifecycle.apply_action(admin, "0" * 32, "approve", now=NOW)

    def test_forbidden_beats_invalid_transition(self, db_session, customer, other_customer, temporary):
        lifecycle.apply_action(customer, temporary.id, "cancel", now=NOW)
        with pytest.raises(ForbiddenError):
            lifecycle.apply_action(other_customer, temporary.id, "cancel", now=NOW)


class TestExpireTransition:

    def test_system_expires_overdue(self, db_session, product, temporary):
        expired = lifecycle.expire_reservation(SYSTEM_ACTOR, temporary.id, now=NOW + timedelta(minutes=30))

        assert expired.status == "EXPIRED"
        assert _stock(db_session, product.id) == 10
        movements = _movements(temporary.id)
        assert movements[-1].type == "IN"
        assert movements[-1].user_id is None
        assert "expired" in movements[-1].reason

    def test_not_yet_due(self, db_session, temporary):
        with pytest.raises(InvalidTransitionError):
            lifecycle.expire_reservation(SYSTEM_ACTOR, temporary.id, now=NOW + timedelta(minutes=29))

    def test_only_system_may_expire(self, db_session, admin, temporary):
        with pytest.raises(ForbiddenError):
            lifecycle.expire_reservation(admin, temporary.id, now=NOW + timedelta(hours=1))


class TestRetry:

    def test_stale_data_is_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) == 1:
                raise StaleDataError("concurrent update")
            return "ok"

        assert run_with_retry(_op, backoff_base=0) == "ok"
        assert len(calls) == 2

    def test_domain_errors_are_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise InvalidTransitionError("no")

        with pytest.raises(InvalidTransitionError):
            run_with_retry(_op, backoff_base=0)
        assert len(calls) == 1


class TestStockConservation:

    def test_mixed_sequence_balances_ledger(self, db_session, product, admin, customer):
        initial = _stock(db_session, product.id)
        opening = sum(m.signed_quantity for m in InventoryMovement.query.all())

        def _reserve(quantity):
            return reservation_service.create_reservation(
                customer, product_id=product.id, quantity=quantity, now=NOW,
            ).id

        cancelled, rejected, expired, completed, active = (_reserve(q) for q in (1, 2, 1, 3, 2))

        lifecycle.apply_action(customer, cancelled, "cancel", now=NOW)
        lifecycle.apply_action(admin, rejected, "reject", now=NOW)
        lifecycle.expire_reservation(SYSTEM_ACTOR, expired, now=NOW + timedelta(hours=1))
        lifecycle.apply_action(admin, completed, "approve", now=NOW)
        lifecycle.apply_action(admin, completed, "complete", now=NOW)

        db_session.expire_all()
        held = sum(
            r.quantity for r in Reservation.query.all()
            if r.status in ("PENDING", "DEPOSIT_VERIFIED", "APPROVED")
        )
        sold = sum(r.quantity for r in Reservation.query.filter_by(status="COMPLETED"))
        current = _stock(db_session, product.id)

        assert held == 2
        assert sold == 3
        assert current == initial - held - sold
        ledger_delta = sum(m.signed_quantity for m in InventoryMovement.query.all()) - opening
        assert ledger_delta == current - initial
        assert db_session.get(Reservation, active).status == "PENDING"
