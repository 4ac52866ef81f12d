# Overview: Service-layer operations for orders; fulfillment state machine driving stock, wallet and carrier.

"""
Order State Machine

WHY: An order moves money (seller wallet) and goods (stock, carrier). Every
transition checks its guard and applies its side effects in one DB
transaction, so a failed transition leaves nothing half-done.

TRANSITIONS (anything else raises InvalidTransition):
    pending     -> confirmed | cancelled
    confirmed   -> processing | shipped | cancelled
    processing  -> shipped | cancelled
    shipped     -> delivered | cancelled (carrier cancellation required)
    delivered   -> terminal
    cancelled   -> terminal

MONEY:
- confirm: seller proceeds credited to pending balance (credit_pending)
- deliver: pending credit settled to balance; commission realized here
- cancel: the pending credit is reversed (never touches settled balance)

CARRIER CALLS:
- Never made inside a write transaction. The order is read, the carrier is
  called, then the order is locked and the guard is re-checked.
- A shipped order whose carrier cancellation cannot be confirmed is flagged
  cancellation_pending (status stays shipped) for admin reconciliation.
"""

from __future__ import annotations

import secrets
import string

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import Order, OrderLine, Product, ShipmentRecord, ShippingLog, User
from pharmamarket.config import get_settings
from pharmamarket.shipping import ShipmentRequest, ShipmentStatus, can_advance, get_carrier
from pharmamarket.time_utils import start_of_day, utcnow
from . import event_service, wallet_service
from .access_service import ROLE_ADMIN, ROLE_BUYER, ROLE_SELLER, require_order_party, require_role
from .commission_service import CategoryTree, RateSet, apply_rate
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import (
    CarrierRejected,
    CarrierUnavailable,
    InvalidRequest,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    PaymentFailed,
)
from .stock_service import STATUS_INACTIVE, _release_inner, _reserve_many_inner


# =============================================================================
# ORDER STATUS (CONSTANTS)
# =============================================================================

ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_PROCESSING = "processing"
ORDER_SHIPPED = "shipped"
ORDER_DELIVERED = "delivered"
ORDER_CANCELLED = "cancelled"

VALID_ORDER_STATUSES = [
    ORDER_PENDING,
    ORDER_CONFIRMED,
    ORDER_PROCESSING,
    ORDER_SHIPPED,
    ORDER_DELIVERED,
    ORDER_CANCELLED,
]

ALLOWED_TRANSITIONS = {
    ORDER_PENDING: {ORDER_CONFIRMED, ORDER_CANCELLED},
    ORDER_CONFIRMED: {ORDER_PROCESSING, ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_PROCESSING: {ORDER_SHIPPED, ORDER_CANCELLED},
    ORDER_SHIPPED: {ORDER_DELIVERED, ORDER_CANCELLED},
    ORDER_DELIVERED: set(),
    ORDER_CANCELLED: set(),
}

SHIPPING_UNSHIPPED = "unshipped"
SHIPPING_SHIPPED = "shipped"
SHIPPING_DELIVERED = "delivered"

PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_FAILED = "failed"

ORDER_NUMBER_PREFIX = "PM"


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, set())


def can_be_cancelled(order: Order) -> bool:
    """True for pending/confirmed/processing; shipped also needs a carrier cancel."""
    return can_transition(order.status, ORDER_CANCELLED)


def _guard(order: Order, target: str, reason: str | None = None) -> None:
    if not can_transition(order.status, target):
        raise InvalidTransition(
            entity="Order",
            entity_id=order.id,
            current=order.status,
            target=target,
            reason=reason,
        )


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if not order:
        raise NotFound("Order", order_id)
    return order


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order", order_id)
    return order


def _record_transition(order: Order, event_type: str, previous: str, actor_user_id: int | None, **extra) -> None:
    payload = {"order_number": order.order_number, "from": previous, "to": order.status}
    payload.update(extra)
    event_service.record_event(
        event_type=event_type,
        entity_type="order",
        entity_id=order.id,
        actor_user_id=actor_user_id,
        payload=payload,
    )


def _log_carrier_call(
    order_id: int,
    carrier_name: str,
    action: str,
    success: bool,
    *,
    error: str | None = None,
    response: dict | None = None,
) -> None:
    """Persist a ShippingLog row in its own transaction (kept even if the caller fails)."""
    def _op():
        begin_write_transaction()
        db.session.add(ShippingLog(
            order_id=order_id,
            carrier=carrier_name,
            action=action,
            success=success,
            error=error[:512] if error else None,
            response=response,
        ))
        db.session.commit()

    run_with_retry(_op)


def _generate_order_number() -> str:
    """PM + yymmdd + 4-digit daily sequence + 4 random characters."""
    now = utcnow()
    todays = db.session.query(func.count(Order.id)).filter(Order.created_at >= start_of_day(now)).scalar() or 0
    suffix = "".join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(4))
    return f"{ORDER_NUMBER_PREFIX}{now:%y%m%d}{todays + 1:04d}{suffix}"


# =============================================================================
# CREATION
# =============================================================================

def _normalize_lines(lines) -> list[dict]:
    if not isinstance(lines, list) or not lines:
        raise InvalidRequest("An order needs at least one line")

    normalized = []
    for index, line in enumerate(lines):
        if not isinstance(line, dict):
            raise InvalidRequest("Each line must be an object", details={"line": index})
        product_id = line.get("product_id")
        quantity = line.get("quantity")
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise InvalidRequest("product_id must be an integer", details={"line": index})
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidRequest("quantity must be a positive integer", details={"line": index, "quantity": quantity})
        normalized.append({"product_id": product_id, "quantity": quantity})
    return normalized


def create_order(
    buyer_id: int,
    seller_id: int,
    lines: list[dict],
    shipping_address: dict | None = None,
    notes: str | None = None,
    *,
    defaults: RateSet | None = None,
) -> Order:
    """
    Create an order in pending.

    Stock for every line is reserved all-or-nothing; each line gets a snapshot
    of its category's effective rates. No wallet effect.

    Raises:
        InsufficientStock: any line short on stock (details["items"] lists all)
        UnauthorizedAction: buyer_id is not an active buyer
        InvalidRequest: bad lines, unknown seller, product of another seller
    """
    lines = _normalize_lines(lines)

    def _op():
        begin_write_transaction()
        require_role(buyer_id, ROLE_BUYER, action="create_order")

        seller = db.session.get(User, seller_id)
        if not seller or seller.role != ROLE_SELLER or not seller.is_active:
            raise InvalidRequest(f"User {seller_id} is not an active seller", details={"seller_id": seller_id})

        products: dict[int, Product] = {}
        quantities: dict[int, int] = {}
        for line in lines:
            product_id = line["product_id"]
            if product_id not in products:
                product = db.session.get(Product, product_id)
                if not product:
                    raise NotFound("Product", product_id)
                if product.seller_id != seller_id:
                    raise InvalidRequest(
                        f"Product {product_id} is not sold by seller {seller_id}",
                        details={"product_id": product_id, "seller_id": seller_id},
                    )
                if product.status == STATUS_INACTIVE:
                    raise InvalidRequest(f"Product {product_id} is not available", details={"product_id": product_id})
                products[product_id] = product
            quantities[product_id] = quantities.get(product_id, 0) + line["quantity"]

        _reserve_many_inner(quantities)

        tree = CategoryTree.load()
        rate_defaults = defaults or RateSet.platform_defaults()

        order = Order(
            order_number=_generate_order_number(),
            buyer_id=buyer_id,
            seller_id=seller_id,
            status=ORDER_PENDING,
            shipping_status=SHIPPING_UNSHIPPED,
            payment_status=PAYMENT_PENDING,
            shipping_address=shipping_address,
            notes=notes,
        )
        db.session.add(order)
        db.session.flush()

        subtotal = 0
        commission_total = 0
        for line in lines:
            product = products[line["product_id"]]
            rates = tree.resolve(product.category_id, rate_defaults)
            line_total = product.price_cents * line["quantity"]
            commission = apply_rate(line_total, rates.commission_rate_bps)

            db.session.add(OrderLine(
                order_id=order.id,
                product_id=product.id,
                product_name=product.name,
                quantity=line["quantity"],
                unit_price_cents=product.price_cents,
                line_total_cents=line_total,
                commission_rate_bps=rates.commission_rate_bps,
                vat_rate_bps=rates.vat_rate_bps,
                withholding_tax_rate_bps=rates.withholding_tax_rate_bps,
                commission_cents=commission,
                seller_proceeds_cents=line_total - commission,
            ))
            subtotal += line_total
            commission_total += commission

        order.subtotal_cents = subtotal
        order.total_amount_cents = subtotal
        order.total_commission_cents = commission_total
        order.seller_proceeds_cents = subtotal - commission_total

        event_service.record_event(
            event_type=event_service.ORDER_CREATED,
            entity_type="order",
            entity_id=order.id,
            actor_user_id=buyer_id,
            payload={
                "order_number": order.order_number,
                "seller_id": seller_id,
                "total_amount_cents": order.total_amount_cents,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Order %s created: buyer=%s seller=%s total=%s",
            order.order_number, buyer_id, seller_id, order.total_amount_cents,
        )
        return order

    return run_with_retry(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _confirm_locked(order: Order, actor_user_id: int | None) -> Order:
    _guard(order, ORDER_CONFIRMED)
    previous = order.status

    if order.seller_proceeds_cents > 0:
        wallet_service._credit_locked(
            order.seller_id,
            order.seller_proceeds_cents,
            kind=wallet_service.TX_CREDIT_PENDING,
            order_id=order.id,
            description=f"Order {order.order_number} confirmed",
        )

    order.status = ORDER_CONFIRMED
    order.confirmed_at = utcnow()
    _record_transition(order, event_service.ORDER_CONFIRMED, previous, actor_user_id)
    return order


def confirm_order(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """
    pending -> confirmed; credits seller proceeds to pending balance.

    Two concurrent confirms: exactly one succeeds, the other raises
    InvalidTransition after re-reading the committed state.
    """
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        if actor_user_id is not None:
            require_order_party(actor_user_id, order, action="confirm_order", allow_buyer=False)
        _confirm_locked(order, actor_user_id)
        db.session.commit()
        current_app.logger.info("Order %s confirmed", order.order_number)
        return order

    return run_with_retry(_op)


def mark_processing(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """confirmed -> processing (seller started preparing the parcel)."""
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        if actor_user_id is not None:
            require_order_party(actor_user_id, order, action="mark_processing", allow_buyer=False)
        _guard(order, ORDER_PROCESSING)
        previous = order.status
        order.status = ORDER_PROCESSING
        order.processing_at = utcnow()
        _record_transition(order, event_service.ORDER_PROCESSING, previous, actor_user_id)
        db.session.commit()
        return order

    return run_with_retry(_op)


def ship_order(
    order_id: int,
    *,
    carrier=None,
    actor_user_id: int | None = None,
    sender: dict | None = None,
) -> Order:
    """
    confirmed|processing -> shipped via the carrier.

    CRITICAL: the carrier is called with no transaction open. On
    CarrierUnavailable the order is untouched and the error propagates (safe
    to retry). If the order moved on while the carrier was booking, the
    booking is cancelled best-effort and InvalidTransition is raised. Any other
    failure to record the shipment also cancels the booking before propagating.
    """
    carrier = carrier or get_carrier()

    order = get_order(order_id)
    if actor_user_id is not None:
        require_order_party(actor_user_id, order, action="ship_order", allow_buyer=False)
    _guard(order, ORDER_SHIPPED)
    request = ShipmentRequest.for_order(order, sender)
    db.session.rollback()  # end the read transaction before network I/O

    try:
        result = carrier.send(request)
    except (CarrierUnavailable, CarrierRejected) as exc:
        _log_carrier_call(order_id, carrier.name, "send", False, error=exc.message, response=exc.details)
        current_app.logger.warning("Carrier %s could not book order %s: %s", carrier.name, request.order_number, exc)
        raise
    _log_carrier_call(order_id, carrier.name, "send", True, response=result.raw)

    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _guard(order, ORDER_SHIPPED, reason="order changed while the carrier booking was in flight")
        previous = order.status

        shipment = db.session.query(ShipmentRecord).filter_by(order_id=order.id).first()
        if shipment is None:
            shipment = ShipmentRecord(order_id=order.id)
            db.session.add(shipment)
        shipment.carrier = carrier.name
        shipment.tracking_code = result.tracking_code
        shipment.tracking_url = result.tracking_url
        shipment.normalized_status = int(ShipmentStatus.PREPARING)
        shipment.status_description = None
        shipment.raw_response = result.raw
        shipment.cancelled_at = None

        order.status = ORDER_SHIPPED
        order.shipping_status = SHIPPING_SHIPPED
        order.shipped_at = utcnow()
        _record_transition(
            order,
            event_service.ORDER_SHIPPED,
            previous,
            actor_user_id,
            carrier=carrier.name,
            tracking_code=result.tracking_code,
        )
        db.session.commit()
        current_app.logger.info("Order %s shipped with %s (%s)", order.order_number, carrier.name, result.tracking_code)
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        # No ShipmentRecord was committed; release the booking so a retry books once.
        _compensate_booking(order_id, carrier, result.tracking_code)
        raise


def _compensate_booking(order_id: int, carrier, tracking_code: str) -> None:
    """Best-effort carrier cancel of a booking that lost the race with another transition."""
    try:
        outcome = carrier.cancel(tracking_code)
    except MarketplaceError as exc:
        current_app.logger.error(
            "Orphan carrier booking %s for order %s could not be cancelled: %s",
            tracking_code, order_id, exc,
        )
        _log_carrier_call(order_id, carrier.name, "cancel", False, error=exc.message, response=exc.details)
        return
    _log_carrier_call(order_id, carrier.name, "cancel", outcome.cancelled, error=None if outcome.cancelled else outcome.message, response=outcome.raw)


def _deliver_locked(order: Order, actor_user_id: int | None) -> Order:
    _guard(order, ORDER_DELIVERED)
    previous = order.status

    credit = wallet_service._find_order_transaction(order.id, wallet_service.TX_CREDIT_PENDING)
    amount = credit.amount_cents if credit and not wallet_service._is_reversed(credit.id) else 0
    if amount or order.total_commission_cents:
        wallet_service._settle_locked(
            order.seller_id,
            amount,
            order_id=order.id,
            commission_cents=order.total_commission_cents,
            description=f"Order {order.order_number} delivered",
        )

    shipment = order.shipment
    if shipment is not None and can_advance(ShipmentStatus(shipment.normalized_status), ShipmentStatus.DELIVERED):
        shipment.normalized_status = int(ShipmentStatus.DELIVERED)

    order.status = ORDER_DELIVERED
    order.shipping_status = SHIPPING_DELIVERED
    order.delivered_at = utcnow()
    order.cancellation_pending = False
    _record_transition(order, event_service.ORDER_DELIVERED, previous, actor_user_id, settled_cents=amount)
    return order


def deliver_order(order_id: int, *, actor_user_id: int | None = None) -> Order:
    """shipped -> delivered; settles the pending credit and realizes commission."""
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        if actor_user_id is not None:
            require_order_party(actor_user_id, order, action="deliver_order", allow_buyer=True)
        _deliver_locked(order, actor_user_id)
        db.session.commit()
        current_app.logger.info("Order %s delivered", order.order_number)
        return order

    return run_with_retry(_op)


def _cancel_locked(order: Order, actor_user_id: int | None, reason: str | None, *, carrier_cancelled: bool) -> Order:
    _guard(order, ORDER_CANCELLED)
    if order.status == ORDER_SHIPPED and not carrier_cancelled:
        raise InvalidTransition(
            entity="Order",
            entity_id=order.id,
            current=order.status,
            target=ORDER_CANCELLED,
            reason="shipped orders need a carrier cancellation first",
        )
    previous = order.status

    # Stock: at most once per line
    for line in order.lines:
        if not line.stock_restored:
            _release_inner(line.product_id, line.quantity)
            line.stock_restored = True

    # Money: only the pending credit, never settled balance
    credit = wallet_service._find_order_transaction(order.id, wallet_service.TX_CREDIT_PENDING)
    if credit and not wallet_service._is_reversed(credit.id):
        wallet_service._reverse_locked(credit.id, description=f"Order {order.order_number} cancelled")

    if order.shipment is not None and carrier_cancelled:
        order.shipment.cancelled_at = utcnow()

    order.status = ORDER_CANCELLED
    order.cancelled_at = utcnow()
    order.cancellation_pending = False
    order.cancellation_reason = reason or order.cancellation_reason
    _record_transition(order, event_service.ORDER_CANCELLED, previous, actor_user_id, reason=order.cancellation_reason)
    return order


def _mark_cancellation_pending(order_id: int, actor_user_id: int | None, reason: str | None, error: str) -> None:
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        if order.status != ORDER_SHIPPED:
            db.session.rollback()
            return
        order.cancellation_pending = True
        order.cancellation_reason = reason
        event_service.record_event(
            event_type=event_service.ORDER_CANCELLATION_PENDING,
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            payload={"order_number": order.order_number, "error": error, "reason": reason},
        )
        db.session.commit()

    run_with_retry(_op)


def cancel_order(
    order_id: int,
    *,
    actor_user_id: int | None = None,
    reason: str | None = None,
    carrier=None,
) -> Order:
    """
    Cancel an order, restoring stock and reversing the pending credit.

    Shipped orders: the carrier cancel runs first, outside any transaction.
    - CarrierUnavailable: order flagged cancellation_pending, status unchanged,
      error re-raised.
    - Carrier refuses: CarrierRejected, order unchanged.
    """
    order = get_order(order_id)
    if actor_user_id is not None:
        require_order_party(actor_user_id, order, action="cancel_order", allow_buyer=True)
    _guard(order, ORDER_CANCELLED)

    carrier_cancelled = False
    if order.status == ORDER_SHIPPED:
        shipment = order.shipment
        if shipment is None:
            raise InvalidTransition(
                entity="Order",
                entity_id=order.id,
                current=order.status,
                target=ORDER_CANCELLED,
                reason="shipped order has no shipment record",
            )
        reference = shipment.tracking_code
        carrier = carrier or get_carrier(shipment.carrier)
        db.session.rollback()  # end the read transaction before network I/O

        try:
            outcome = carrier.cancel(reference)
        except CarrierUnavailable as exc:
            _log_carrier_call(order_id, carrier.name, "cancel", False, error=exc.message, response=exc.details)
            _mark_cancellation_pending(order_id, actor_user_id, reason, exc.message)
            current_app.logger.warning("Order %s left cancellation_pending: %s", order_id, exc)
            raise
        except CarrierRejected as exc:
            _log_carrier_call(order_id, carrier.name, "cancel", False, error=exc.message, response=exc.details)
            raise

        _log_carrier_call(
            order_id,
            carrier.name,
            "cancel",
            outcome.cancelled,
            error=None if outcome.cancelled else outcome.message,
            response=outcome.raw,
        )
        if not outcome.cancelled:
            raise CarrierRejected(
                outcome.message or "Carrier refused the cancellation",
                carrier=carrier.name,
                operation="cancel",
                details={"response": outcome.raw},
            )
        carrier_cancelled = True

    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        _cancel_locked(order, actor_user_id, reason, carrier_cancelled=carrier_cancelled)
        db.session.commit()
        current_app.logger.info("Order %s cancelled", order.order_number)
        return order

    return run_with_retry(_op)


def reconcile_cancellation(
    order_id: int,
    *,
    carrier_cancelled: bool,
    actor_user_id: int,
    notes: str | None = None,
) -> Order:
    """
    Admin resolution of a cancellation_pending order.

    carrier_cancelled=True: the admin confirmed with the carrier; the
    cancellation completes without calling the carrier again.
    carrier_cancelled=False: the parcel is moving; the flag is cleared.
    """
    def _op():
        begin_write_transaction()
        require_role(actor_user_id, ROLE_ADMIN, action="reconcile_cancellation", resource=f"order:{order_id}")
        order = _lock_order(order_id)
        if not order.cancellation_pending:
            raise InvalidTransition(
                entity="Order",
                entity_id=order.id,
                current=order.status,
                target=ORDER_CANCELLED,
                reason="no cancellation is pending",
            )

        if carrier_cancelled:
            _cancel_locked(order, actor_user_id, notes or order.cancellation_reason, carrier_cancelled=True)
        else:
            order.cancellation_pending = False
            event_service.record_event(
                event_type=event_service.ORDER_CANCELLATION_PENDING,
                entity_type="order",
                entity_id=order.id,
                actor_user_id=actor_user_id,
                payload={"order_number": order.order_number, "resolved": "kept", "notes": notes},
            )
        db.session.commit()
        current_app.logger.info(
            "Order %s cancellation reconciled by %s (carrier_cancelled=%s)",
            order.order_number, actor_user_id, carrier_cancelled,
        )
        return order

    return run_with_retry(_op)


# =============================================================================
# PAYMENT INBOUND
# =============================================================================

def confirm_payment(order_id: int, gateway_reference: str, *, amount_cents: int | None = None) -> Order:
    """
    Single entry point for a gateway's "payment succeeded" callback.

    - Same reference on an already-paid order: no-op (idempotent)
    - Different reference on a paid order: PaymentFailed
    - Otherwise records the payment and confirms the order
    """
    if not gateway_reference or not isinstance(gateway_reference, str):
        raise InvalidRequest("gateway_reference is required")

    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)

        if order.payment_status == PAYMENT_PAID:
            if order.payment_reference == gateway_reference:
                db.session.rollback()
                return order
            raise PaymentFailed(
                f"Order {order.order_number} is already paid under another reference",
                error_code="duplicate_payment",
                transaction_id=gateway_reference,
            )

        if amount_cents is not None and amount_cents != order.total_amount_cents:
            raise PaymentFailed(
                f"Paid amount {amount_cents} does not match order total {order.total_amount_cents}",
                error_code="amount_mismatch",
                transaction_id=gateway_reference,
            )

        if order.status == ORDER_CANCELLED:
            raise InvalidTransition(
                entity="Order",
                entity_id=order.id,
                current=order.status,
                target=ORDER_CONFIRMED,
                reason="payment received for a cancelled order",
            )

        order.payment_status = PAYMENT_PAID
        order.payment_reference = gateway_reference
        if order.status == ORDER_PENDING:
            _confirm_locked(order, None)

        event_service.record_event(
            event_type=event_service.PAYMENT_CONFIRMED,
            entity_type="order",
            entity_id=order.id,
            payload={"order_number": order.order_number, "gateway_reference": gateway_reference},
        )
        db.session.commit()
        current_app.logger.info("Payment %s recorded for order %s", gateway_reference, order.order_number)
        return order

    return run_with_retry(_op)


def record_payment_failure(
    order_id: int,
    *,
    error_code: str | None = None,
    transaction_id: str | None = None,
    raw_response: dict | None = None,
    message: str | None = None,
) -> None:
    """
    Record a gateway failure on the order, then raise PaymentFailed with the detail.

    The order itself stays pending so the buyer can retry payment.
    """
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        if order.payment_status == PAYMENT_PAID:
            raise InvalidTransition(
                entity="Payment",
                entity_id=order.id,
                current=PAYMENT_PAID,
                target=PAYMENT_FAILED,
            )
        order.payment_status = PAYMENT_FAILED
        event_service.record_event(
            event_type=event_service.PAYMENT_FAILED,
            entity_type="order",
            entity_id=order.id,
            payload={
                "order_number": order.order_number,
                "error_code": error_code,
                "transaction_id": transaction_id,
            },
        )
        db.session.commit()
        return order.order_number

    order_number = run_with_retry(_op)
    current_app.logger.warning("Payment failed for order %s: %s", order_number, error_code)
    raise PaymentFailed(
        message or f"Payment failed for order {order_number}",
        error_code=error_code,
        transaction_id=transaction_id,
        raw_response=raw_response,
    )


# =============================================================================
# TRACKING
# =============================================================================

def sync_shipment_tracking(order_id: int, *, carrier=None) -> dict:
    """
    Pull the carrier's tracking status into the ShipmentRecord.

    The stored status only moves forward (see shipping.can_advance). When the
    carrier reports delivered and ORDER_AUTO_DELIVER_ON_TRACKING is on, the
    order is delivered in the same transaction.
    """
    order = get_order(order_id)
    shipment = order.shipment
    if shipment is None:
        raise InvalidRequest(f"Order {order_id} has no shipment", details={"order_id": order_id})
    if shipment.cancelled_at is not None:
        raise InvalidRequest(f"Shipment of order {order_id} was cancelled", details={"order_id": order_id})

    reference = shipment.tracking_code
    carrier = carrier or get_carrier(shipment.carrier)
    auto_deliver = get_settings().auto_deliver_on_tracking
    db.session.rollback()  # end the read transaction before network I/O

    try:
        info = carrier.track(reference)
    except (CarrierUnavailable, CarrierRejected) as exc:
        _log_carrier_call(order_id, carrier.name, "track", False, error=exc.message, response=exc.details)
        raise
    _log_carrier_call(order_id, carrier.name, "track", True, response=info.raw)

    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        shipment = lock_for_update(db.session.query(ShipmentRecord).filter_by(order_id=order.id)).first()

        current = ShipmentStatus(shipment.normalized_status)
        changed = can_advance(current, info.normalized_status)
        if changed:
            shipment.normalized_status = int(info.normalized_status)
            shipment.status_description = info.description
            shipment.raw_response = info.raw
            if info.tracking_url:
                shipment.tracking_url = info.tracking_url
            event_service.record_event(
                event_type=event_service.SHIPMENT_STATUS_CHANGED,
                entity_type="order",
                entity_id=order.id,
                payload={
                    "order_number": order.order_number,
                    "from": int(current),
                    "to": int(info.normalized_status),
                    "raw_status": info.raw_status,
                },
            )

        delivered = False
        if (
            auto_deliver
            and info.normalized_status == ShipmentStatus.DELIVERED
            and order.status == ORDER_SHIPPED
        ):
            _deliver_locked(order, None)
            delivered = True

        db.session.commit()
        return {"order": order, "tracking": info, "changed": changed, "delivered": delivered}

    return run_with_retry(_op)


def sync_all_shipped(*, carrier=None) -> list[dict]:
    """Tracking sync for every shipped order; one failing order does not stop the rest."""
    order_ids = [
        row.id
        for row in db.session.query(Order.id).filter(Order.status == ORDER_SHIPPED).order_by(Order.id)
    ]
    results = []
    for order_id in order_ids:
        try:
            outcome = sync_shipment_tracking(order_id, carrier=carrier)
        except MarketplaceError as exc:
            current_app.logger.warning("Tracking sync failed for order %s: %s", order_id, exc)
            results.append({"order_id": order_id, "ok": False, "error": exc.to_dict()})
            continue
        results.append({
            "order_id": order_id,
            "ok": True,
            "changed": outcome["changed"],
            "delivered": outcome["delivered"],
            "normalized_status": int(outcome["tracking"].normalized_status),
        })
    return results


# =============================================================================
# QUERIES
# =============================================================================

def list_orders(
    *,
    buyer_id: int | None = None,
    seller_id: int | None = None,
    status: str | None = None,
    limit: int = 100,
) -> list[Order]:
    if status and status not in VALID_ORDER_STATUSES:
        raise InvalidRequest(f"Invalid status: {status}", details={"allowed": VALID_ORDER_STATUSES})

    query = db.session.query(Order)
    if buyer_id is not None:
        query = query.filter(Order.buyer_id == buyer_id)
    if seller_id is not None:
        query = query.filter(Order.seller_id == seller_id)
    if status:
        query = query.filter(Order.status == status)
    return query.order_by(Order.id.desc()).limit(limit).all()
