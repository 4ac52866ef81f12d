# Overview: Service-layer operations for domain events; append-only log plus after-commit dispatch.

"""
Domain Event Invariants

- Append-only: events are never updated or deleted.
- Events are written inside the same DB transaction as the change they record.
- Subscribers run only after that transaction commits; a failing subscriber is
  logged and never undoes or blocks the committed change.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Callable, Optional

from flask import current_app

from ..extensions import db
from ..models import DomainEvent

ORDER_CREATED = "OrderCreated"
ORDER_CONFIRMED = "OrderConfirmed"
ORDER_PROCESSING = "OrderProcessing"
ORDER_SHIPPED = "OrderShipped"
ORDER_DELIVERED = "OrderDelivered"
ORDER_CANCELLED = "OrderCancelled"
ORDER_CANCELLATION_PENDING = "OrderCancellationPending"
PAYMENT_CONFIRMED = "PaymentConfirmed"
PAYMENT_FAILED = "PaymentFailed"
SHIPMENT_STATUS_CHANGED = "ShipmentStatusChanged"
PAYOUT_REQUESTED = "PayoutRequested"
PAYOUT_APPROVED = "PayoutApproved"
PAYOUT_REJECTED = "PayoutRejected"
PAYOUT_PAID = "PayoutPaid"
CATEGORY_RATES_CHANGED = "CategoryRatesChanged"
PRICE_DECREASED = "PriceDecreased"

_PENDING_KEY = "pending_domain_events"

Handler = Callable[[dict], None]


class EventBus:
    """
    In-process subscriber registry.

    Handlers receive the event as a dict (DomainEvent.to_dict()). "*" subscribes
    to every event type.
    """

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._handlers.clear()

    def handlers_for(self, event_type: str) -> list[Handler]:
        return list(self._handlers.get(event_type, [])) + list(self._handlers.get("*", []))

    def dispatch(self, event: dict) -> int:
        """Call every matching handler; returns how many succeeded."""
        delivered = 0
        for handler in self.handlers_for(event["event_type"]):
            try:
                handler(event)
                delivered += 1
            except Exception:
                current_app.logger.exception(
                    "Event handler %r failed for %s #%s",
                    getattr(handler, "__name__", handler),
                    event["event_type"],
                    event.get("id"),
                )
        return delivered


def get_event_bus() -> EventBus:
    return current_app.extensions["event_bus"]


def record_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    actor_user_id: int | None = None,
    payload: Optional[dict] = None,
    occurred_at: Optional[datetime] = None,
) -> DomainEvent:
    """
    Append a domain event to the current transaction.

    - No domain logic here.
    - The event is queued for dispatch; it is delivered by dispatch_pending_events()
      once the surrounding transaction commits, and dropped on rollback.
    """
    ev = DomainEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_user_id=actor_user_id,
        payload=payload or {},
        occurred_at=occurred_at,  # if None, db default applies
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    db.session.info.setdefault(_PENDING_KEY, []).append(ev)
    return ev


def discard_pending_events() -> None:
    db.session.info.pop(_PENDING_KEY, None)


def dispatch_pending_events() -> int:
    """Deliver queued events to subscribers. Call only after commit."""
    events = db.session.info.pop(_PENDING_KEY, [])
    if not events:
        return 0
    bus = get_event_bus()
    delivered = 0
    for ev in events:
        delivered += bus.dispatch(ev.to_dict())
    return delivered


def list_events(
    *,
    entity_type: str | None = None,
    entity_id: int | None = None,
    event_type: str | None = None,
    limit: int = 100,
) -> list[DomainEvent]:
    query = db.session.query(DomainEvent)
    if entity_type:
        query = query.filter(DomainEvent.entity_type == entity_type)
    if entity_id is not None:
        query = query.filter(DomainEvent.entity_id == entity_id)
    if event_type:
        query = query.filter(DomainEvent.event_type == event_type)
    return query.order_by(DomainEvent.id.asc()).limit(limit).all()
