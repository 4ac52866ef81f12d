# Overview: Flask API routes for seller payouts; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..services import payout_service
from ..services.access_service import ROLE_ADMIN, ROLE_SELLER
from ..services.errors import MarketplaceError


payouts_bp = Blueprint("payouts", __name__, url_prefix="/api/payouts")


@payouts_bp.post("")
@require_actor
@require_role(ROLE_SELLER)
def request_payout_route():
    """
    Request a withdrawal of available balance.

    Request body:
    {
        "amount_cents": 50000,
        "notes": "optional"
    }

    Returns:
        201: Request created, amount debited from balance
        409: Insufficient balance, or an open request already exists
    """
    try:
        data = request.get_json(silent=True) or {}
        payout = payout_service.request_payout(
            g.current_user.id,
            data.get("amount_cents"),
            notes=data.get("notes"),
        )
        return jsonify({"payout": payout.to_dict()}), 201
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request payout")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.get("")
@require_actor
@require_role(ROLE_SELLER)
def my_payouts_route():
    try:
        payouts = payout_service.list_seller_payouts(
            g.current_user.id,
            status=request.args.get("status") or None,
            limit=min(request.args.get("limit", 50, type=int), 500),
        )
        return jsonify({"payouts": [p.to_dict() for p in payouts]}), 200
    except MarketplaceError as e:
        return error_response(e)


@payouts_bp.get("/statistics")
@require_actor
@require_role(ROLE_SELLER, ROLE_ADMIN)
def payout_statistics_route():
    seller_id = g.current_user.id if g.current_user.role == ROLE_SELLER else request.args.get("seller_id", type=int)
    return jsonify({"seller_id": seller_id, "statistics": payout_service.get_payout_statistics(seller_id)}), 200


@payouts_bp.get("/pending")
@require_actor
@require_role(ROLE_ADMIN)
def pending_payouts_route():
    payouts = payout_service.list_pending_payouts(limit=min(request.args.get("limit", 100, type=int), 500))
    return jsonify({"payouts": [p.to_dict() for p in payouts]}), 200


# =============================================================================
# ADMIN DECISIONS
# =============================================================================

@payouts_bp.post("/<int:payout_id>/approve")
@require_actor
@require_role(ROLE_ADMIN)
def approve_payout_route(payout_id: int):
    try:
        data = request.get_json(silent=True) or {}
        payout = payout_service.approve_payout(
            payout_id,
            actor_user_id=g.current_user.id,
            admin_notes=data.get("admin_notes"),
        )
        return jsonify({"payout": payout.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to approve payout")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.post("/<int:payout_id>/reject")
@require_actor
@require_role(ROLE_ADMIN)
def reject_payout_route(payout_id: int):
    try:
        data = request.get_json(silent=True) or {}
        payout = payout_service.reject_payout(
            payout_id,
            actor_user_id=g.current_user.id,
            reason=data.get("reason"),
        )
        return jsonify({"payout": payout.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reject payout")
        return jsonify({"error": "Internal server error"}), 500


@payouts_bp.post("/<int:payout_id>/paid")
@require_actor
@require_role(ROLE_ADMIN)
def mark_paid_route(payout_id: int):
    try:
        data = request.get_json(silent=True) or {}
        payout = payout_service.mark_payout_paid(
            payout_id,
            actor_user_id=g.current_user.id,
            transaction_reference=data.get("transaction_reference"),
        )
        return jsonify({"payout": payout.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark payout paid")
        return jsonify({"error": "Internal server error"}), 500
