# backend/pharmamarket/routes/system.py
"""
System health and event log endpoints.

/health checks the database and reports the configured carrier so a
deployment can be verified without placing an order.
"""

import time

from flask import Blueprint, current_app, jsonify, request

from ..config import get_settings
from ..decorators import require_actor, require_role
from ..extensions import db
from ..models import Order, SellerWallet, User
from ..services import event_service
from ..services.access_service import ROLE_ADMIN
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        user_count = db.session.query(User).count()
        order_count = db.session.query(Order).count()
        wallet_count = db.session.query(SellerWallet).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "users": user_count,
                "orders": order_count,
                "wallets": wallet_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: Database reachable
    - 503: Database unhealthy
    """
    database_health = check_database_health()
    settings = get_settings()

    http_status = 200 if database_health["status"] == "healthy" else 503
    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "carrier_provider": settings.carrier_provider,
        "checks": {
            "database": database_health,
        }
    }
    return response, http_status


@system_bp.get("/api/events")
@require_actor
@require_role(ROLE_ADMIN)
def list_events_route():
    """Domain event log, oldest first, filterable by entity and type."""
    events = event_service.list_events(
        entity_type=request.args.get("entity_type") or None,
        entity_id=request.args.get("entity_id", type=int),
        event_type=request.args.get("event_type") or None,
        limit=min(request.args.get("limit", 100, type=int), 1000),
    )
    return jsonify({"events": [e.to_dict() for e in events]}), 200
