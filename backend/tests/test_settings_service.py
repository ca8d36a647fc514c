from decimal import Decimal

import pytest

from partsdesk.models import Settings
from partsdesk.services import settings_service
from partsdesk.validation import ForbiddenError, ValidationError


class TestSettingsDefaults:

    def test_first_read_creates_defaults(self, db_session):
        assert Settings.query.count() == 0

        row = settings_service.get_or_default()

        assert Settings.query.count() == 1
        assert row.temp_reservation_minutes == 30
        assert row.deposit_percentage == 50
        assert row.deposit_reservation_hours == 48
        assert row.pending_verification_hours == 24
        assert Decimal(row.exchange_rate) == Decimal("17.50")

    def test_second_read_reuses_row(self, db_session):
        first = settings_service.get_or_default()
        second = settings_service.get_or_default()
        assert first.id == second.id
        assert Settings.query.count() == 1

    def test_snapshot_is_immutable(self, db_session):
        snapshot = settings_service.get_snapshot()
        with pytest.raises(AttributeError):
            snapshot.deposit_percentage = 10


class TestSettingsUpdate:

    def test_admin_partial_update(self, db_session, admin):
        row = settings_service.update_settings(admin, {"deposit_percentage": 30})

        assert row.deposit_percentage == 30
        assert row.temp_reservation_minutes == 30
        assert row.updated_by_user_id == "admin-1"
        assert settings_service.get_snapshot().deposit_percentage == 30

    def test_exchange_rate_accepts_decimal_strings(self, db_session, admin):
        row = settings_service.update_settings(admin, {"exchange_rate": "18.25"})
        assert Decimal(row.exchange_rate) == Decimal("18.25")

    def test_customer_cannot_update(self, db_session, customer):
        with pytest.raises(ForbiddenError):
            settings_service.update_settings(customer, {"deposit_percentage": 30})
        assert settings_service.get_snapshot().deposit_percentage == 50

    @pytest.mark.parametrize(
        "payload",
        [
            {"deposit_percentage": 0},
            {"deposit_percentage": 101},
            {"temp_reservation_minutes": 0},
            {"deposit_reservation_hours": -1},
            {"pending_verification_hours": 1.5},
            {"exchange_rate": 0},
            {"exchange_rate": "abc"},
            {"exchange_rate": "NaN"},
            {"unknown_key": 1},
            {"deposit_percentage": True},
        ],
    )
    def test_rejects_invalid_values(self, db_session, admin, payload):
        with pytest.raises(ValidationError):
            settings_service.update_settings(admin, payload)
        assert settings_service.get_snapshot().deposit_percentage == 50

    def test_boundaries_are_accepted(self, db_session, admin):
        row = settings_service.update_settings(
            admin,
            {"deposit_percentage": 100, "temp_reservation_minutes": 1},
        )
        assert row.deposit_percentage == 100
        assert row.temp_reservation_minutes == 1
