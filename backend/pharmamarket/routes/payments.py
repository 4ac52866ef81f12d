# Overview: Flask API routes for payment gateway callbacks; parses input and returns JSON responses.

# backend/pharmamarket/routes/payments.py
"""
Payment Callback Routes

WHY: Every gateway reports outcomes through the same two endpoints, so the
order state machine has a single inbound entry for payments.

NOTE: Callback signature verification is done by the gateway integration in
front of this service; these endpoints trust their caller.
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import error_response
from ..services import order_service
from ..services.errors import InvalidRequest, MarketplaceError


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _order_id(data: dict) -> int:
    order_id = data.get("order_id")
    if isinstance(order_id, bool) or not isinstance(order_id, int):
        raise InvalidRequest("order_id is required")
    return order_id


@payments_bp.post("/confirm")
def confirm_payment_route():
    """
    Gateway reports a successful payment.

    Request body:
    {
        "order_id": 42,
        "gateway_reference": "PAY-8842",
        "amount_cents": 12500   (optional, checked against the order total)
    }

    Returns:
        200: Payment recorded (repeat calls with the same reference are no-ops)
        402: Order already paid under a different reference, or amount mismatch
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.confirm_payment(
            _order_id(data),
            data.get("gateway_reference"),
            amount_cents=data.get("amount_cents"),
        )
        return jsonify({"order": order.to_dict(include_lines=False)}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/failed")
def payment_failed_route():
    """
    Gateway reports a failed payment.

    Request body:
    {
        "order_id": 42,
        "error_code": "card_declined",
        "transaction_id": "TX-1",
        "raw_response": {...},
        "message": "optional"
    }

    Returns:
        402: Failure recorded; body carries the payment_failed error detail
    """
    try:
        data = request.get_json(silent=True) or {}
        order_service.record_payment_failure(
            _order_id(data),
            error_code=data.get("error_code"),
            transaction_id=data.get("transaction_id"),
            raw_response=data.get("raw_response"),
            message=data.get("message"),
        )
        # record_payment_failure always raises PaymentFailed once the failure is stored
        return jsonify({"error": "Payment failure was not recorded"}), 500
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment failure")
        return jsonify({"error": "Internal server error"}), 500
