# Overview: Request identity and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g, current_app

from .identity import IdentityError, actor_from_headers


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a caller identity and expose it as g.current_user (an Actor).

    SECURITY: identity comes from headers set by the trusted gateway in front
    of this service. Returns 401 if they are missing or malformed.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            g.current_user = actor_from_headers(request.headers, current_app.config)
        except IdentityError as e:
            return jsonify({"error": str(e), "code": "UNAUTHORIZED"}), 401

        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Require the ADMIN role. Must be stacked under @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _is_authenticated():
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        if not g.current_user.is_admin:
            return jsonify({"error": "Admin role required", "code": "FORBIDDEN"}), 403

        return f(*args, **kwargs)

    return decorated_function
