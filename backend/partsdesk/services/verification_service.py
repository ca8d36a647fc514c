# Overview: Pickup verification by the reservation's one-time code.

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from ..extensions import db
from ..identity import Actor
from ..models import Reservation
from ..models.reservations import STATUS_APPROVED, STATUS_DEPOSIT_VERIFIED
from ..validation import ForbiddenError, NotFoundError, ValidationError
from partsdesk.time_utils import normalize_utc, utcnow
from .reservation_lifecycle_service import complete_unexpired


COMPLETABLE_STATUSES = frozenset({STATUS_APPROVED, STATUS_DEPOSIT_VERIFIED})


@dataclass(frozen=True)
class VerificationResult:
    reservation: Reservation
    is_expired: bool
    can_complete: bool
    message: str

    def to_dict(self) -> dict:
        return {
            "reservation": self.reservation.to_dict(),
            "is_expired": self.is_expired,
            "can_complete": self.can_complete,
            "message": self.message,
        }


def _find_by_code(code) -> Reservation:
    if code is not None and not isinstance(code, str):
        raise ValidationError("Verification code must be a string", field="code")
    code = (code or "").strip()
    if not code:
        raise ValidationError("Verification code is required", field="code")
    reservation = db.session.query(Reservation).filter_by(qr_code=code).first()
    if reservation is None:
        raise NotFoundError("Reservation not found")
    return reservation


def inspect_code(code, now: datetime | None = None) -> VerificationResult:
    """Read-only lookup used by the pickup counter before handing goods over."""
    now = normalize_utc(now) if now is not None else utcnow()
    reservation = _find_by_code(code)

    is_expired = normalize_utc(reservation.expires_at) < now
    can_complete = reservation.status in COMPLETABLE_STATUSES and not is_expired

    if is_expired:
        message = "This reservation has expired"
    elif can_complete:
        message = "Reservation ready for pickup"
    else:
        message = f"Status: {reservation.status}"

    return VerificationResult(
        reservation=reservation,
        is_expired=is_expired,
        can_complete=can_complete,
        message=message,
    )


def complete_by_code(actor: Actor, code, now: datetime | None = None) -> Reservation:
    """
    Hand the goods over: resolve the code and apply `complete`.

    Status and expiry are re-checked under the row lock, so an inspection
    that said "ready" is never trusted blindly.

    Raises:
        ValidationError: missing code
        NotFoundError: unknown code
        ForbiddenError: caller is not an admin
        InvalidTransitionError: not completable (wrong status or expired)
    """
    if not actor.is_admin:
        raise ForbiddenError("Only admins can complete reservations")
    reservation = _find_by_code(code)
    return complete_unexpired(actor, reservation.id, now=now)
