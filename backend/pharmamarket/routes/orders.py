# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/pharmamarket/routes/orders.py
"""
Order API Routes

WHY: Buyers place orders, sellers fulfil them, admins resolve exceptions.
Every state change goes through order_service; routes only parse input and
render results.

ACCESS:
- create: buyer
- confirm / processing / ship: the order's seller or an admin
- deliver / cancel: a party to the order or an admin
- reconcile-cancellation: admin
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..services import order_service
from ..services.access_service import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER, require_order_party
from ..services.errors import InvalidRequest, MarketplaceError
from ..shipping import get_carrier


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _carrier_from(data: dict):
    name = data.get("carrier")
    return get_carrier(name) if name else None


# =============================================================================
# CREATION & QUERIES
# =============================================================================

@orders_bp.post("")
@require_actor
@require_role(ROLE_BUYER)
def create_order_route():
    """
    Place an order with one seller.

    Request body:
    {
        "seller_id": 7,
        "lines": [{"product_id": 12, "quantity": 3}],
        "shipping_address": {"name": "...", "city": "...", "address": "..."},
        "notes": "optional"
    }

    Returns:
        201: Order created (pending, stock reserved)
        409: Insufficient stock (details.items lists every short line)
    """
    try:
        data = request.get_json(silent=True) or {}
        seller_id = data.get("seller_id")
        if not isinstance(seller_id, int):
            raise InvalidRequest("seller_id is required")

        order = order_service.create_order(
            buyer_id=g.current_user.id,
            seller_id=seller_id,
            lines=data.get("lines"),
            shipping_address=data.get("shipping_address"),
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 201

    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    List orders visible to the actor.

    Buyers see their purchases, sellers their sales, admins everything
    (optionally filtered with buyer_id / seller_id).
    """
    try:
        user = g.current_user
        status = request.args.get("status") or None
        limit = min(request.args.get("limit", 100, type=int), 500)

        buyer_id = request.args.get("buyer_id", type=int)
        seller_id = request.args.get("seller_id", type=int)
        if user.role == ROLE_BUYER:
            buyer_id, seller_id = user.id, None
        elif user.role == ROLE_SELLER:
            buyer_id, seller_id = None, user.id

        orders = order_service.list_orders(buyer_id=buyer_id, seller_id=seller_id, status=status, limit=limit)
        return jsonify({"orders": [o.to_dict(include_lines=False) for o in orders]}), 200

    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        require_order_party(g.current_user.id, order, action="view_order")
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)


# =============================================================================
# TRANSITIONS
# =============================================================================

@orders_bp.post("/<int:order_id>/confirm")
@require_actor
def confirm_order_route(order_id: int):
    try:
        order = order_service.confirm_order(order_id, actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/processing")
@require_actor
def mark_processing_route(order_id: int):
    try:
        order = order_service.mark_processing(order_id, actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to mark order processing")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/ship")
@require_actor
def ship_order_route(order_id: int):
    """
    Book the shipment with a carrier and mark the order shipped.

    Request body (optional):
    {
        "carrier": "mng",          (defaults to CARRIER_PROVIDER)
        "sender": {"name": "...", "city": "...", "address": "..."}
    }

    Returns:
        200: Order shipped, shipment attached
        503: Carrier unavailable (order unchanged, safe to retry)
        422: Carrier rejected the booking
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.ship_order(
            order_id,
            carrier=_carrier_from(data),
            actor_user_id=g.current_user.id,
            sender=data.get("sender"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to ship order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/deliver")
@require_actor
def deliver_order_route(order_id: int):
    try:
        order = order_service.deliver_order(order_id, actor_user_id=g.current_user.id)
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to deliver order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """
    Cancel an order.

    Shipped orders are cancelled with the carrier first. If the carrier cannot
    be reached the order is flagged cancellation_pending and 503 is returned.
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.cancel_order(
            order_id,
            actor_user_id=g.current_user.id,
            reason=data.get("reason"),
            carrier=_carrier_from(data),
        )
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/reconcile-cancellation")
@require_actor
@require_role(ROLE_ADMIN)
def reconcile_cancellation_route(order_id: int):
    """
    Request body:
    {
        "carrier_cancelled": true,
        "notes": "Confirmed by phone with the carrier"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        if not isinstance(data.get("carrier_cancelled"), bool):
            raise InvalidRequest("carrier_cancelled (boolean) is required")

        order = order_service.reconcile_cancellation(
            order_id,
            carrier_cancelled=data["carrier_cancelled"],
            actor_user_id=g.current_user.id,
            notes=data.get("notes"),
        )
        return jsonify({"order": order.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reconcile cancellation")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/sync-tracking")
@require_actor
def sync_tracking_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        require_order_party(g.current_user.id, order, action="sync_tracking")

        outcome = order_service.sync_shipment_tracking(order_id)
        return jsonify({
            "order": outcome["order"].to_dict(),
            "tracking": outcome["tracking"].to_dict(),
            "changed": outcome["changed"],
            "delivered": outcome["delivered"],
        }), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to sync tracking")
        return jsonify({"error": "Internal server error"}), 500
