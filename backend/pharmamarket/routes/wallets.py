# Overview: Flask API routes for seller wallets; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..services import wallet_service
from ..services.access_service import ROLE_ADMIN, ROLE_SELLER
from ..services.errors import MarketplaceError


wallets_bp = Blueprint("wallets", __name__, url_prefix="/api/wallets")


def _transactions_payload(seller_id: int) -> dict:
    limit = min(request.args.get("limit", 50, type=int), 500)
    transactions = wallet_service.list_transactions(
        seller_id,
        transaction_type=request.args.get("type") or None,
        order_id=request.args.get("order_id", type=int),
        limit=limit,
    )
    return {"seller_id": seller_id, "transactions": [t.to_dict() for t in transactions]}


@wallets_bp.get("/me")
@require_actor
@require_role(ROLE_SELLER)
def my_wallet_route():
    try:
        return jsonify({"wallet": wallet_service.get_wallet_summary(g.current_user.id)}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallets_bp.get("/me/transactions")
@require_actor
@require_role(ROLE_SELLER)
def my_transactions_route():
    try:
        return jsonify(_transactions_payload(g.current_user.id)), 200
    except MarketplaceError as e:
        return error_response(e)


@wallets_bp.get("/<int:seller_id>")
@require_actor
@require_role(ROLE_ADMIN)
def seller_wallet_route(seller_id: int):
    try:
        return jsonify({"wallet": wallet_service.get_wallet_summary(seller_id)}), 200
    except MarketplaceError as e:
        return error_response(e)


@wallets_bp.get("/<int:seller_id>/transactions")
@require_actor
@require_role(ROLE_ADMIN)
def seller_transactions_route(seller_id: int):
    try:
        return jsonify(_transactions_payload(seller_id)), 200
    except MarketplaceError as e:
        return error_response(e)


@wallets_bp.get("/<int:seller_id>/verify")
@require_actor
@require_role(ROLE_ADMIN)
def verify_wallet_route(seller_id: int):
    """Recompute cached balances from the transaction log and report drift."""
    try:
        return jsonify(wallet_service.verify_wallet(seller_id)), 200
    except MarketplaceError as e:
        return error_response(e)
