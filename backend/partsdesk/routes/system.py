# backend/partsdesk/routes/system.py
"""
System health endpoint.

Reports database connectivity, the background sweeper and the notification
hub so deployments can be checked without touching business data.
"""

import time
from flask import Blueprint, current_app
from sqlalchemy import text

from ..extensions import db, notifications
from partsdesk.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
        }
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_sweeper_health() -> dict:
    scheduler = current_app.extensions.get("reservation_sweeper")
    if scheduler is None:
        # Disabled: sweeps are triggered externally (cron, CLI).
        return {"status": "healthy", "details": {"enabled": False}}
    if not scheduler.running:
        return {
            "status": "degraded",
            "warning": "Sweeper thread is not running",
            "details": {"enabled": True, "ticks": scheduler.ticks},
        }
    return {
        "status": "healthy",
        "details": {
            "enabled": True,
            "interval_seconds": scheduler.interval_seconds,
            "ticks": scheduler.ticks,
        },
    }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    database_health = check_database_health()
    sweeper_health = check_sweeper_health()

    all_checks = [database_health, sweeper_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status = "unhealthy"
        http_status = 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status = "degraded"
        http_status = 200  # Degraded is still operational
    else:
        overall_status = "healthy"
        http_status = 200

    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
            "sweeper": sweeper_health,
            "notifications": {
                "status": "healthy",
                "details": {"subscribers": notifications.subscriber_count},
            },
        },
    }

    return response, http_status
