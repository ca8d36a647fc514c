from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..identity import Actor
from ..models import Settings
from ..models.settings import SETTINGS_KEY
from ..validation import (
    ForbiddenError,
    ModelValidationPolicy,
    enforce_rules_settings,
    validate_payload,
)
from .concurrency import run_with_retry


SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={
        "temp_reservation_minutes",
        "deposit_percentage",
        "deposit_reservation_hours",
        "pending_verification_hours",
        "exchange_rate",
    },
)


@dataclass(frozen=True)
class ReservationSettings:
    """Immutable snapshot of the tunables in effect for one operation."""
    temp_reservation_minutes: int
    deposit_percentage: int
    deposit_reservation_hours: int
    pending_verification_hours: int
    exchange_rate: Decimal

    @classmethod
    def from_row(cls, row: Settings) -> "ReservationSettings":
        return cls(
            temp_reservation_minutes=row.temp_reservation_minutes,
            deposit_percentage=row.deposit_percentage,
            deposit_reservation_hours=row.deposit_reservation_hours,
            pending_verification_hours=row.pending_verification_hours,
            exchange_rate=Decimal(row.exchange_rate),
        )


def get_or_default() -> Settings:
    """
    Return the singleton settings row, creating it with defaults on first read.

    Two first readers may race to insert; the loser's IntegrityError is
    rolled back and the winner's row is read instead.
    """
    row = db.session.get(Settings, SETTINGS_KEY)
    if row is not None:
        return row

    row = Settings(id=SETTINGS_KEY)
    db.session.add(row)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        row = db.session.get(Settings, SETTINGS_KEY)
    return row


def get_snapshot() -> ReservationSettings:
    return ReservationSettings.from_row(get_or_default())


def update_settings(actor: Actor, payload: dict) -> Settings:
    """
    Partial update of the tunables (admin only).

    Raises:
        ForbiddenError: actor is not an admin
        ValidationError: unknown key, wrong type, or value out of range
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can change settings")

    patch = validate_payload(
        model=Settings,
        payload=payload,
        policy=SETTINGS_POLICY,
        partial=True,
    )
    enforce_rules_settings(patch)

    get_or_default()

    def _op():
        row = db.session.get(Settings, SETTINGS_KEY)
        for key, value in patch.items():
            setattr(row, key, value)
        row.updated_by_user_id = actor.user_id
        db.session.commit()
        return row

    return run_with_retry(_op)
