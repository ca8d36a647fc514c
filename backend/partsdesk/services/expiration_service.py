# Overview: Periodic sweep that expires stale reservations and warns about imminent expiries.

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from flask import current_app

from ..extensions import db
from ..identity import SYSTEM_ACTOR
from ..models import Reservation
from ..models.reservations import ACTIVE_STATUSES
from ..validation import InvalidTransitionError
from partsdesk.time_utils import normalize_utc, to_utc_z, utcnow
from . import notification_service
from .reservation_lifecycle_service import expire_reservation


# Reservations expiring within this window are inspected by the warn pass.
WARNING_WINDOW = timedelta(minutes=30)
# Only reservations with this many whole minutes left trigger a warning.
WARN_MIN_MINUTES = 25
WARN_MAX_MINUTES = 30


@dataclass
class SweepResult:
    timestamp: datetime
    expired: list[dict] = field(default_factory=list)
    expiring_soon: list[dict] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "timestamp": to_utc_z(self.timestamp),
            "expired": {"count": len(self.expired), "reservations": self.expired},
            "expiring_soon": {"count": len(self.expiring_soon), "reservations": self.expiring_soon},
            "failed": {"count": len(self.failed), "reservations": self.failed},
        }


def minutes_left(expires_at: datetime, now: datetime) -> int:
    return math.floor((expires_at - now).total_seconds() / 60)


def _expire_pass(now: datetime, result: SweepResult) -> None:
    due_ids = [
        row.id
        for row in db.session.query(Reservation.id)
        .filter(Reservation.status.in_(ACTIVE_STATUSES))
        .filter(Reservation.expires_at <= now)
        .order_by(Reservation.expires_at.asc())
        .all()
    ]

    for reservation_id in due_ids:
        try:
            reservation = expire_reservation(SYSTEM_ACTOR, reservation_id, now=now)
        except InvalidTransitionError:
            # Cancelled/completed between the scan and the lock.
            continue
        except Exception as exc:
            db.session.rollback()
            current_app.logger.exception("Failed to expire reservation %s", reservation_id)
            result.failed.append({"id": reservation_id, "error": str(exc)})
            continue

        product_name = reservation.product.name if reservation.product else None
        result.expired.append({
            "id": reservation.id,
            "user_id": reservation.user_id,
            "product_name": product_name,
            "quantity": reservation.quantity,
        })
        current_app.logger.info(
            "Expired reservation %s (%sx product %s)",
            reservation.id, reservation.quantity, reservation.product_id,
        )
        notification_service.emit(
            notification_service.EVENT_RESERVATION_EXPIRED,
            "Reservation expired",
            f"Reservation #{reservation.short_ref} for {product_name} has expired",
            {
                "reservationId": reservation.id,
                "userId": reservation.user_id,
                "productName": product_name,
                "quantity": reservation.quantity,
            },
        )


def _warn_pass(now: datetime, result: SweepResult) -> None:
    expiring = (
        Reservation.query
        .filter(Reservation.status.in_(ACTIVE_STATUSES))
        .filter(Reservation.expires_at > now)
        .filter(Reservation.expires_at <= now + WARNING_WINDOW)
        .order_by(Reservation.expires_at.asc())
        .all()
    )

    for reservation in expiring:
        left = minutes_left(normalize_utc(reservation.expires_at), now)
        if not (WARN_MIN_MINUTES <= left <= WARN_MAX_MINUTES):
            continue
        product_name = reservation.product.name if reservation.product else None
        result.expiring_soon.append({
            "id": reservation.id,
            "user_id": reservation.user_id,
            "product_name": product_name,
            "minutes_left": left,
        })
        notification_service.emit(
            notification_service.EVENT_RESERVATION_EXPIRING_SOON,
            "Reservation expiring soon",
            f"Reservation #{reservation.short_ref} for {product_name} expires in {left} minutes",
            {
                "reservationId": reservation.id,
                "userId": reservation.user_id,
                "productName": product_name,
                "minutesLeft": left,
            },
        )


def sweep_reservations(now: datetime | None = None) -> SweepResult:
    """
    Expire every active reservation past its expires_at, then warn about the
    ones about to expire.

    Each expiry is its own transaction; one failure is logged and recorded
    without aborting the batch. Running the sweep twice with the same `now`
    expires nothing the second time.

    The warn pass keeps no "already warned" marker: a reservation is reported
    on every sweep that finds it inside the 25..30 minute band.
    """
    now = normalize_utc(now) if now is not None else utcnow()
    result = SweepResult(timestamp=now)

    _expire_pass(now, result)
    _warn_pass(now, result)

    if result.expired or result.failed:
        current_app.logger.info(
            "Reservation sweep: %s expired, %s failed, %s expiring soon",
            len(result.expired), len(result.failed), len(result.expiring_soon),
        )
    return result
