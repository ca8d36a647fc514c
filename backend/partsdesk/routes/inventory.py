# backend/partsdesk/routes/inventory.py
"""
Stock ledger routes.

SECURITY: All routes require an ADMIN caller.
- GET lists ledger entries (newest first)
- POST records a manual movement (receipt, damage, loss, count correction)

Reservation-driven movements are never created here; they are written by the
reservation services inside the reservation's own transaction.
"""
from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..models import InventoryMovement
from ..models.inventory import MOVEMENT_TYPES
from ..services import ledger_service
from ..validation import (
    DomainError,
    ModelValidationPolicy,
    ValidationError,
    coerce_int,
    enforce_rules_movement,
    require_object,
    validate_payload,
)
from ..decorators import require_auth, require_admin


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

MOVEMENT_POLICY = ModelValidationPolicy(
    writable_fields={"product_id", "type", "quantity", "reason", "notes"},
    required_on_create={"product_id", "type", "quantity"},
)


def _json_error(exc: Exception):
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.http_status
    db.session.rollback()
    current_app.logger.exception("Unhandled error in inventory API")
    return jsonify({"error": "Internal server error", "code": "INTERNAL"}), 500


@inventory_bp.get("/movements")
@require_auth
@require_admin
def list_movements_route():
    """Filters: ?product_id=&type=&reservation_id=&limit=&offset="""
    try:
        product_id = request.args.get("product_id")
        items, total = ledger_service.list_movements(
            product_id=coerce_int(product_id, "product_id") if product_id else None,
            movement_type=(request.args.get("type") or "").upper() or None,
            reservation_id=request.args.get("reservation_id") or None,
            limit=coerce_int(request.args.get("limit", 50), "limit"),
            offset=coerce_int(request.args.get("offset", 0), "offset"),
        )
    except Exception as e:
        return _json_error(e)

    return jsonify({
        "movements": [m.to_dict() for m in items],
        "count": len(items),
        "total": total,
    })


@inventory_bp.post("/movements")
@require_auth
@require_admin
def create_movement_route():
    """
    Record a manual stock movement.

    Request body:
        {"product_id": 1, "type": "IN", "quantity": 5, "reason": "...", "notes": "..."}

    Error responses:
        400: Invalid type/quantity or unknown field
        404: Product not found
        409: Decreasing movement larger than current stock
    """
    try:
        payload = require_object(request.get_json(silent=True))
        if isinstance(payload.get("type"), str):
            payload["type"] = payload["type"].strip().upper()
        patch = validate_payload(
            model=InventoryMovement,
            payload=payload,
            policy=MOVEMENT_POLICY,
            partial=False,
        )
        enforce_rules_movement(patch, MOVEMENT_TYPES)
    except ValidationError as e:
        return jsonify(e.to_dict()), 400

    try:
        movement = ledger_service.record_manual_movement(
            g.current_user,
            product_id=patch["product_id"],
            movement_type=patch["type"],
            quantity=patch["quantity"],
            reason=patch.get("reason"),
            notes=patch.get("notes"),
        )
    except Exception as e:
        return _json_error(e)

    return jsonify({"movement": movement.to_dict()}), 201
