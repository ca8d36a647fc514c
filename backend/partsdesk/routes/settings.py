from __future__ import annotations

from flask import Blueprint, jsonify, request, g, current_app

from ..extensions import db
from ..decorators import require_auth, require_admin
from ..services import settings_service
from ..validation import DomainError


settings_bp = Blueprint("settings", __name__, url_prefix="/api")


def _json_error(exc: Exception):
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.http_status
    db.session.rollback()
    current_app.logger.exception("Unhandled error in settings API")
    return jsonify({"error": "Internal server error", "code": "INTERNAL"}), 500


@settings_bp.get("/settings")
def get_settings():
    # Public: the storefront shows reservation windows and the exchange rate.
    try:
        row = settings_service.get_or_default()
    except Exception as e:
        return _json_error(e)
    return jsonify({"settings": row.to_dict()})


@settings_bp.patch("/settings")
@require_auth
@require_admin
def patch_settings():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "JSON object body required", "code": "VALIDATION_ERROR"}), 400

    try:
        row = settings_service.update_settings(g.current_user, payload)
    except Exception as e:
        return _json_error(e)

    current_app.logger.info(
        "Settings updated by %s: %s", g.current_user.user_id, ", ".join(sorted(payload))
    )
    return jsonify({"settings": row.to_dict()})
