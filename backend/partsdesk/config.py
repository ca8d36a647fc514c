# backend/partsdesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/partsdesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///partsdesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Identity is supplied by the upstream gateway; these headers are trusted as-is.
    IDENTITY_USER_HEADER = os.environ.get("IDENTITY_USER_HEADER", "X-User-Id")
    IDENTITY_ROLE_HEADER = os.environ.get("IDENTITY_ROLE_HEADER", "X-User-Role")
    IDENTITY_STATUS_HEADER = os.environ.get("IDENTITY_STATUS_HEADER", "X-User-Status")
    IDENTITY_TIER_HEADER = os.environ.get("IDENTITY_TIER_HEADER", "X-Customer-Tier")

    # Background expiration sweep
    RESERVATION_SWEEPER_ENABLED = _env_bool("RESERVATION_SWEEPER_ENABLED", False)
    RESERVATION_SWEEP_INTERVAL_SECONDS = int(os.environ.get("RESERVATION_SWEEP_INTERVAL_SECONDS", "300"))

    # Admin notification fan-out
    NOTIFICATION_QUEUE_SIZE = int(os.environ.get("NOTIFICATION_QUEUE_SIZE", "100"))
    NOTIFICATION_HEARTBEAT_SECONDS = int(os.environ.get("NOTIFICATION_HEARTBEAT_SECONDS", "30"))
    NOTIFICATION_WEBHOOK_URL = os.environ.get("NOTIFICATION_WEBHOOK_URL")
    NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS = float(os.environ.get("NOTIFICATION_WEBHOOK_TIMEOUT_SECONDS", "5"))
