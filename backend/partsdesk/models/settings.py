from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from partsdesk.time_utils import to_utc_z


SETTINGS_KEY = "default"

DEFAULT_TEMP_RESERVATION_MINUTES = 30
DEFAULT_DEPOSIT_PERCENTAGE = 50
DEFAULT_DEPOSIT_RESERVATION_HOURS = 48
DEFAULT_PENDING_VERIFICATION_HOURS = 24
DEFAULT_EXCHANGE_RATE = Decimal("17.50")


class Settings(db.Model):
    """
    Process-wide reservation tunables.

    Singleton row keyed SETTINGS_KEY. Created lazily with defaults on first
    read (settings_service.get_or_default) and never deleted.
    """
    __tablename__ = "settings"
    __table_args__ = (
        db.CheckConstraint(
            "deposit_percentage >= 1 AND deposit_percentage <= 100",
            name="ck_settings_deposit_percentage_range",
        ),
    )

    id = db.Column(db.String(32), primary_key=True, default=SETTINGS_KEY)

    temp_reservation_minutes = db.Column(db.Integer, nullable=False, default=DEFAULT_TEMP_RESERVATION_MINUTES)
    deposit_percentage = db.Column(db.Integer, nullable=False, default=DEFAULT_DEPOSIT_PERCENTAGE)
    deposit_reservation_hours = db.Column(db.Integer, nullable=False, default=DEFAULT_DEPOSIT_RESERVATION_HOURS)
    pending_verification_hours = db.Column(db.Integer, nullable=False, default=DEFAULT_PENDING_VERIFICATION_HOURS)
    exchange_rate = db.Column(db.Numeric(12, 4), nullable=False, default=DEFAULT_EXCHANGE_RATE)

    updated_by_user_id = db.Column(db.String(64), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "temp_reservation_minutes": self.temp_reservation_minutes,
            "deposit_percentage": self.deposit_percentage,
            "deposit_reservation_hours": self.deposit_reservation_hours,
            "pending_verification_hours": self.pending_verification_hours,
            "exchange_rate": float(self.exchange_rate),
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
