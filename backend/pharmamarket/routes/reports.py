# Overview: Flask API routes for read-only reports; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..services import reporting_service
from ..services.access_service import ROLE_ADMIN, ROLE_SELLER
from ..services.errors import InvalidRequest, MarketplaceError
from ..time_utils import parse_iso_datetime


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


@reports_bp.get("/wallet-balances")
@require_actor
@require_role(ROLE_ADMIN)
def wallet_balances_route():
    rows = reporting_service.wallet_balances(
        seller_id=request.args.get("seller_id", type=int),
        limit=min(request.args.get("limit", 100, type=int), 500),
    )
    return jsonify({"wallets": rows}), 200


@reports_bp.get("/pending-payouts")
@require_actor
@require_role(ROLE_ADMIN)
def pending_payouts_route():
    return jsonify(reporting_service.pending_payouts(limit=min(request.args.get("limit", 100, type=int), 500))), 200


@reports_bp.get("/orders/daily")
@require_actor
@require_role(ROLE_SELLER, ROLE_ADMIN)
def daily_orders_route():
    """
    Order count and revenue for one UTC day.

    Query params:
    - date: ISO-8601 date or datetime (default: today)
    - seller_id: admin only; sellers always see their own figures
    """
    try:
        raw = request.args.get("date")
        try:
            day = parse_iso_datetime(raw)
        except ValueError:
            raise InvalidRequest("date must be ISO-8601", details={"date": raw})

        seller_id = request.args.get("seller_id", type=int)
        if g.current_user.role == ROLE_SELLER:
            seller_id = g.current_user.id

        return jsonify(reporting_service.daily_orders(day, seller_id=seller_id)), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build daily order report")
        return jsonify({"error": "Internal server error"}), 500
