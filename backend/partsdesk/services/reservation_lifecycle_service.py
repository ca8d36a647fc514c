# Overview: Service-layer operations for the reservation state machine.

"""
Reservation Lifecycle Service

================================================================================
PURPOSE: Enforce legal reservation transitions and their stock side effects
================================================================================

STATE MACHINE:
    PENDING ----------> DEPOSIT_VERIFIED, APPROVED, REJECTED, CANCELLED, EXPIRED
    DEPOSIT_VERIFIED -> APPROVED, COMPLETED, REJECTED, CANCELLED, EXPIRED
    APPROVED ---------> COMPLETED, REJECTED, CANCELLED, EXPIRED

    COMPLETED, REJECTED, CANCELLED, EXPIRED are terminal.

RULES (NON-NEGOTIABLE):
1. The TRANSITIONS table is the only source of truth for who may do what from
   which state. Routes and the sweeper never re-implement these checks.
2. Leaving an active state through CANCELLED, REJECTED or EXPIRED returns the
   reserved quantity to stock exactly once, with an IN ledger entry in the
   same DB transaction.
3. COMPLETED never returns stock (goods physically left inventory).
4. Every transition re-reads the reservation inside its own transaction
   (SELECT ... FOR UPDATE) and re-checks the source state before writing.
   The version_id counter turns a lost race into StaleDataError, which
   run_with_retry() retries against the fresh state.
5. A rejected attempt performs no write at all (admin_notes included).

================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from ..extensions import db
from ..identity import Actor
from ..models import Reservation
from ..models.reservations import (
    ACTIVE_STATUSES,
    STATUS_APPROVED,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_DEPOSIT_VERIFIED,
    STATUS_EXPIRED,
    STATUS_PENDING,
    STATUS_REJECTED,
    TYPE_DEPOSIT,
)
from ..validation import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    coerce_optional_str,
)
from partsdesk.time_utils import normalize_utc, utcnow
from . import ledger_service, notification_service, settings_service
from .concurrency import lock_for_update, run_with_retry


ACTION_CANCEL = "cancel"
ACTION_VERIFY_DEPOSIT = "verify_deposit"
ACTION_APPROVE = "approve"
ACTION_REJECT = "reject"
ACTION_COMPLETE = "complete"
ACTION_EXPIRE = "expire"

# Who may attempt an action
ACTOR_OWNER = "OWNER"
ACTOR_ADMIN = "ADMIN"
ACTOR_SYSTEM = "SYSTEM"


@dataclass(frozen=True)
class TransitionRule:
    action: str
    actors: frozenset[str]
    sources: frozenset[str]
    target: str
    returns_stock: bool = False
    requires_type: str | None = None
    ledger_reason: str | None = None


TRANSITIONS: dict[str, TransitionRule] = {
    ACTION_CANCEL: TransitionRule(
        action=ACTION_CANCEL,
        actors=frozenset({ACTOR_OWNER, ACTOR_ADMIN}),
        sources=ACTIVE_STATUSES,
        target=STATUS_CANCELLED,
        returns_stock=True,
        ledger_reason="Reservation cancelled #{ref}",
    ),
    ACTION_VERIFY_DEPOSIT: TransitionRule(
        action=ACTION_VERIFY_DEPOSIT,
        actors=frozenset({ACTOR_ADMIN}),
        sources=frozenset({STATUS_PENDING}),
        target=STATUS_DEPOSIT_VERIFIED,
        requires_type=TYPE_DEPOSIT,
    ),
    ACTION_APPROVE: TransitionRule(
        action=ACTION_APPROVE,
        actors=frozenset({ACTOR_ADMIN}),
        sources=frozenset({STATUS_PENDING, STATUS_DEPOSIT_VERIFIED}),
        target=STATUS_APPROVED,
    ),
    ACTION_REJECT: TransitionRule(
        action=ACTION_REJECT,
        actors=frozenset({ACTOR_ADMIN}),
        sources=ACTIVE_STATUSES,
        target=STATUS_REJECTED,
        returns_stock=True,
        ledger_reason="Reservation rejected #{ref}",
    ),
    ACTION_COMPLETE: TransitionRule(
        action=ACTION_COMPLETE,
        actors=frozenset({ACTOR_ADMIN}),
        sources=frozenset({STATUS_APPROVED, STATUS_DEPOSIT_VERIFIED}),
        target=STATUS_COMPLETED,
    ),
    ACTION_EXPIRE: TransitionRule(
        action=ACTION_EXPIRE,
        actors=frozenset({ACTOR_SYSTEM}),
        sources=ACTIVE_STATUSES,
        target=STATUS_EXPIRED,
        returns_stock=True,
        ledger_reason="Reservation expired - stock returned #{ref}",
    ),
}

# Actions callers may request through the API (expire is sweeper-only)
PUBLIC_ACTIONS = frozenset(TRANSITIONS) - {ACTION_EXPIRE}


def actor_capacities(actor: Actor, reservation: Reservation) -> set[str]:
    capacities = set()
    if actor.is_system:
        capacities.add(ACTOR_SYSTEM)
    if actor.is_admin:
        capacities.add(ACTOR_ADMIN)
    if actor.user_id is not None and reservation.user_id == actor.user_id:
        capacities.add(ACTOR_OWNER)
    return capacities


def is_authorized(rule: TransitionRule, actor: Actor, reservation: Reservation) -> bool:
    """The single authorization predicate for every transition attempt."""
    return bool(rule.actors & actor_capacities(actor, reservation))


def can_transition(rule: TransitionRule, reservation: Reservation) -> bool:
    if reservation.status not in rule.sources:
        return False
    if rule.requires_type is not None and reservation.type != rule.requires_type:
        return False
    return True


def get_rule(action: str) -> TransitionRule:
    rule = TRANSITIONS.get(action) if isinstance(action, str) else None
    if rule is None or action not in PUBLIC_ACTIONS:
        raise ValidationError(
            f"Invalid action '{action}'. Must be one of: {', '.join(sorted(PUBLIC_ACTIONS))}",
            field="action",
        )
    return rule


def _invalid(rule: TransitionRule, reservation: Reservation, reason: str | None = None) -> InvalidTransitionError:
    message = reason or (
        f"Cannot {rule.action.replace('_', ' ')} reservation #{reservation.short_ref}: "
        f"current status is '{reservation.status}'"
    )
    return InvalidTransitionError(
        message,
        reservation_id=reservation.id,
        action=rule.action,
        current_status=reservation.status,
        reservation_type=reservation.type,
    )


def _apply(
    rule: TransitionRule,
    actor: Actor,
    reservation_id: str,
    *,
    admin_notes: str | None,
    now: datetime,
    require_unexpired: bool = False,
    require_expired: bool = False,
) -> Reservation:
    """
    One transition, one transaction. Everything is re-checked after the
    locked re-read, so a retry after StaleDataError sees the winner's state.
    """
    def _op():
        reservation = lock_for_update(
            db.session.query(Reservation).filter_by(id=reservation_id)
        ).first()
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found", reservation_id=reservation_id)

        if not is_authorized(rule, actor, reservation):
            raise ForbiddenError(
                f"Not allowed to {rule.action.replace('_', ' ')} this reservation",
                action=rule.action,
            )

        if not can_transition(rule, reservation):
            if rule.requires_type is not None and reservation.type != rule.requires_type:
                raise _invalid(
                    rule,
                    reservation,
                    f"Only {rule.requires_type} reservations can be verified",
                )
            raise _invalid(rule, reservation)

        expires_at = normalize_utc(reservation.expires_at)
        if require_unexpired and expires_at < now:
            raise _invalid(rule, reservation, "This reservation has expired")
        if require_expired and expires_at > now:
            raise _invalid(rule, reservation, "This reservation has not expired yet")

        if rule.returns_stock:
            ledger_service.apply_stock_movement(
                product_id=reservation.product_id,
                movement_type="IN",
                quantity=reservation.quantity,
                reason=rule.ledger_reason.format(ref=reservation.short_ref),
                user_id=actor.user_id,
                reservation_id=reservation.id,
            )

        if rule.action == ACTION_VERIFY_DEPOSIT:
            settings = settings_service.get_snapshot()
            reservation.deposit_paid = True
            reservation.expires_at = now + timedelta(hours=settings.deposit_reservation_hours)

        reservation.status = rule.target
        if admin_notes is not None:
            reservation.admin_notes = admin_notes

        db.session.commit()
        return reservation

    return run_with_retry(_op)


def apply_action(
    actor: Actor,
    reservation_id: str,
    action: str,
    *,
    admin_notes: str | None = None,
    now: datetime | None = None,
) -> Reservation:
    """
    Drive the state machine on behalf of a caller.

    Raises:
        ValidationError: unknown action
        NotFoundError: no such reservation
        ForbiddenError: actor not allowed for this action/reservation
        InvalidTransitionError: illegal source state or reservation type
    """
    rule = get_rule(action)
    now = normalize_utc(now) if now is not None else utcnow()
    # Notes are staff-only; customer cancels leave them untouched.
    admin_notes = coerce_optional_str(admin_notes, "admin_notes") if actor.is_admin else None

    if rule.action == ACTION_VERIFY_DEPOSIT:
        # Creates the settings row outside the transition's transaction if needed.
        settings_service.get_or_default()

    reservation = _apply(rule, actor, reservation_id, admin_notes=admin_notes, now=now)

    if rule.action == ACTION_CANCEL and not actor.is_admin:
        notification_service.emit(
            notification_service.EVENT_RESERVATION_UPDATED,
            "Reservation cancelled",
            f"User {reservation.user_id} cancelled reservation #{reservation.short_ref}",
            {"reservationId": reservation.id},
        )

    return reservation


def complete_unexpired(actor: Actor, reservation_id: str, *, now: datetime | None = None) -> Reservation:
    """`complete` that additionally refuses reservations already past expires_at."""
    now = normalize_utc(now) if now is not None else utcnow()
    return _apply(
        TRANSITIONS[ACTION_COMPLETE],
        actor,
        reservation_id,
        admin_notes=None,
        now=now,
        require_unexpired=True,
    )


def expire_reservation(actor: Actor, reservation_id: str, *, now: datetime | None = None) -> Reservation:
    """Sweeper-only transition; refuses reservations whose expires_at is still ahead."""
    now = normalize_utc(now) if now is not None else utcnow()
    return _apply(
        TRANSITIONS[ACTION_EXPIRE],
        actor,
        reservation_id,
        admin_notes=None,
        now=now,
        require_expired=True,
    )
