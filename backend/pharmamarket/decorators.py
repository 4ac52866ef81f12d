# Overview: Request decorators for API routes; actor identity and role checks.

from functools import wraps

from flask import current_app, g, jsonify, request

from .extensions import db
from .models import User
from .services.errors import MarketplaceError, UnauthorizedAction

ACTOR_HEADER = "X-User-Id"


def error_response(exc: MarketplaceError):
    """Uniform JSON body for domain errors: {"error": {code, message, details}}."""
    if exc.retryable:
        current_app.logger.warning("%s: %s", exc.code, exc.message)
    return jsonify({"error": {"code": exc.code, "message": exc.message, "details": exc.details}}), exc.http_status


def require_actor(f):
    """
    Resolve the acting user from the gateway-supplied X-User-Id header.

    Authentication happens upstream; this only establishes who is acting.
    Sets g.current_user. Returns 401 if the header is missing, malformed or
    names an unknown/inactive user.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        raw = request.headers.get(ACTOR_HEADER, "").strip()
        if not raw.isdigit():
            return jsonify({"error": "Actor identity required"}), 401

        user = db.session.get(User, int(raw))
        if not user or not user.is_active:
            return jsonify({"error": "Unknown or inactive actor"}), 401

        g.current_user = user
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require the actor's role to be one of roles.

    Must be applied after @require_actor.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user = getattr(g, "current_user", None)
            if user is None:
                return jsonify({"error": "Actor identity required"}), 401
            if user.role not in roles:
                return error_response(
                    UnauthorizedAction(actor_user_id=user.id, action=f.__name__, resource=request.path)
                )
            return f(*args, **kwargs)

        return decorated_function

    return decorator
