# backend/partsdesk/routes/reservations.py
"""
Reservation API Routes

- POST  /api/reservations                 - Create a reservation (approved customers)
- GET   /api/reservations                 - List reservations (own, or all for admins)
- GET   /api/reservations/:id             - Reservation detail
- PATCH /api/reservations/:id             - Apply a lifecycle action
- GET   /api/reservations/verify?code=    - Inspect a pickup code (admin)
- POST  /api/reservations/verify          - Complete by pickup code (admin)
- GET|POST /api/reservations/check-expiring - Run the expiration sweep now

SECURITY:
- Caller identity comes from g.current_user (set by @require_auth), never from
  the request body. This keeps the ledger's user_id trustworthy.
- Who may apply which action is decided by the lifecycle service, not here.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..services import (
    expiration_service,
    reservation_lifecycle_service,
    reservation_service,
    verification_service,
)
from ..validation import DomainError, require_object
from ..decorators import require_auth, require_admin


reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


def _json_error(exc: Exception):
    if isinstance(exc, DomainError):
        return jsonify(exc.to_dict()), exc.http_status
    db.session.rollback()
    current_app.logger.exception("Unhandled error in reservations API")
    return jsonify({"error": "Internal server error", "code": "INTERNAL"}), 500


@reservations_bp.post("")
@require_auth
def create_reservation_route():
    """
    Create a reservation.

    Request body:
        {
            "product_id": 12,
            "quantity": 1,                 // default 1
            "type": "TEMPORARY",           // or "DEPOSIT"
            "payment_proof_url": "...",    // required for DEPOSIT
            "payment_method": "transfer"
        }

    Error responses:
        400: Malformed input, or DEPOSIT without payment proof
        403: Account not approved
        404: Product not found
        409: Insufficient stock (body carries available_stock)
    """
    try:
        payload = require_object(request.get_json(silent=True))
        reservation = reservation_service.create_reservation(
            g.current_user,
            product_id=payload.get("product_id"),
            quantity=payload.get("quantity", 1),
            reservation_type=payload.get("type") or "TEMPORARY",
            payment_proof_url=payload.get("payment_proof_url"),
            payment_method=payload.get("payment_method"),
        )
    except Exception as e:
        return _json_error(e)

    return jsonify({"reservation": reservation.to_dict()}), 201


@reservations_bp.get("")
@require_auth
def list_reservations_route():
    """List reservations, newest first. Filters: ?status=&type="""
    try:
        reservations = reservation_service.list_reservations(
            g.current_user,
            status=request.args.get("status"),
            reservation_type=request.args.get("type"),
        )
    except Exception as e:
        return _json_error(e)

    return jsonify({
        "reservations": [r.to_dict() for r in reservations],
        "count": len(reservations),
    })


@reservations_bp.get("/verify")
@require_auth
@require_admin
def inspect_code_route():
    try:
        result = verification_service.inspect_code(request.args.get("code"))
    except Exception as e:
        return _json_error(e)

    return jsonify(result.to_dict())


@reservations_bp.post("/verify")
@require_auth
@require_admin
def complete_by_code_route():
    """
    Hand over the goods for a pickup code.

    Request body: {"code": "..."}

    Error responses:
        400: Missing code
        404: Unknown code
        409: Not completable (status or expired); body carries current_status
    """
    try:
        payload = require_object(request.get_json(silent=True))
        reservation = verification_service.complete_by_code(g.current_user, payload.get("code"))
    except Exception as e:
        return _json_error(e)

    return jsonify({
        "success": True,
        "message": f"Reservation #{reservation.short_ref} for user {reservation.user_id} completed",
        "reservation": reservation.to_dict(),
    })


@reservations_bp.route("/check-expiring", methods=["GET", "POST"])
def check_expiring_route():
    """
    Manual trigger for the expiration sweep (cron, ops tooling).

    Idempotent: a second call finds nothing new to expire.
    """
    try:
        result = expiration_service.sweep_reservations()
    except Exception as e:
        return _json_error(e)

    return jsonify({"success": True, **result.to_dict()})


@reservations_bp.get("/<reservation_id>")
@require_auth
def get_reservation_route(reservation_id: str):
    try:
        reservation = reservation_service.get_reservation(g.current_user, reservation_id)
    except Exception as e:
        return _json_error(e)

    return jsonify({"reservation": reservation.to_dict()})


@reservations_bp.patch("/<reservation_id>")
@require_auth
def apply_action_route(reservation_id: str):
    """
    Apply a lifecycle action.

    Request body:
        {
            "action": "cancel" | "verify_deposit" | "approve" | "reject" | "complete",
            "admin_notes": "optional"
        }

    Error responses:
        400: Unknown action
        403: Caller may not perform this action on this reservation
        404: Reservation not found
        409: Illegal transition (body carries current_status)
    """
    try:
        payload = require_object(request.get_json(silent=True))
        reservation = reservation_lifecycle_service.apply_action(
            g.current_user,
            reservation_id,
            payload.get("action"),
            admin_notes=payload.get("admin_notes"),
        )
    except Exception as e:
        return _json_error(e)

    return jsonify({"reservation": reservation.to_dict()})
