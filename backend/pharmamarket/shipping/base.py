# Overview: Carrier adapter contract and the canonical shipment status vocabulary.

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from enum import IntEnum
from typing import Any, Optional


class ShipmentStatus(IntEnum):
    """
    Canonical shipment status codes exposed by every API surface.

    The gaps (6, 7) are reserved; the numbering must not be compacted.
    """
    PREPARING = 0
    ACCEPTED = 1
    IN_TRANSIT = 2
    OUT_FOR_DELIVERY = 3
    DELIVERED = 4
    EXCEPTION = 5
    RETURNED = 8

    @property
    def is_terminal(self) -> bool:
        return self in (ShipmentStatus.DELIVERED, ShipmentStatus.RETURNED)

    @property
    def label(self) -> str:
        return self.name.lower()


# Forward progression rank; EXCEPTION and RETURNED sit outside the happy path.
STATUS_RANK = {
    ShipmentStatus.PREPARING: 0,
    ShipmentStatus.ACCEPTED: 1,
    ShipmentStatus.IN_TRANSIT: 2,
    ShipmentStatus.OUT_FOR_DELIVERY: 3,
    ShipmentStatus.DELIVERED: 4,
}


def can_advance(current: ShipmentStatus, new: ShipmentStatus) -> bool:
    """
    Monotonic status rule for one shipment lifecycle.

    - Terminal states (delivered, returned) never change.
    - EXCEPTION may be entered from any non-terminal state.
    - Leaving EXCEPTION resumes the parcel in transit or later; it never
      goes back to preparing or accepted.
    - Otherwise a status may only move forward.
    """
    if current == new:
        return False
    if current.is_terminal:
        return False
    if new in (ShipmentStatus.EXCEPTION, ShipmentStatus.RETURNED):
        return True
    if current == ShipmentStatus.EXCEPTION:
        return STATUS_RANK[new] >= STATUS_RANK[ShipmentStatus.IN_TRANSIT]
    return STATUS_RANK[new] > STATUS_RANK[current]


@dataclass(frozen=True)
class CarrierCredentials:
    endpoint: str = ""
    account_code: str = ""
    secret: str = ""

    @classmethod
    def from_mapping(cls, data: Optional[dict]) -> "CarrierCredentials":
        data = data or {}
        return cls(
            endpoint=(data.get("endpoint") or "").rstrip("/"),
            account_code=data.get("account_code") or "",
            secret=data.get("secret") or "",
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.account_code)


@dataclass
class ShipmentRequest:
    """What a carrier needs to book one parcel for an order."""
    order_id: int
    order_number: str
    recipient: dict = field(default_factory=dict)
    sender: dict = field(default_factory=dict)
    parcel_count: int = 1
    weight_grams: int = 1000
    description: str | None = None

    @classmethod
    def for_order(cls, order, sender: dict | None = None) -> "ShipmentRequest":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            recipient=dict(order.shipping_address or {}),
            sender=dict(sender or {}),
            description=f"Order {order.order_number}",
        )


@dataclass
class ShipmentResult:
    tracking_code: str
    tracking_url: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class CancelResult:
    cancelled: bool
    message: str | None = None
    raw: dict = field(default_factory=dict)


@dataclass
class TrackingInfo:
    normalized_status: ShipmentStatus
    description: str | None = None
    weight: float | None = None
    price_cents: int | None = None
    raw_status: Any = None
    tracking_url: str | None = None
    raw: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "normalized_status": int(self.normalized_status),
            "status_label": self.normalized_status.label,
            "description": self.description,
            "weight": self.weight,
            "price_cents": self.price_cents,
            "raw_status": self.raw_status,
            "tracking_url": self.tracking_url,
        }


class CarrierAdapter(ABC):
    """
    Uniform interface over one cargo carrier.

    CRITICAL:
    - Transport failures (timeout, connection, 5xx, malformed body) raise
      CarrierUnavailable. Business refusals raise CarrierRejected.
    - Adapters never retry; retry policy belongs to the caller.
    - Carrier-native status codes are translated to ShipmentStatus here and
      nowhere else.
    """

    name = "carrier"

    @abstractmethod
    def send(self, request: ShipmentRequest) -> ShipmentResult:
        ...

    @abstractmethod
    def cancel(self, reference: str) -> CancelResult:
        ...

    @abstractmethod
    def track(self, reference: str) -> TrackingInfo:
        ...

    def close(self) -> None:
        pass


def to_float(value) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def to_cents(value) -> int | None:
    """Carrier price (major units, str or number) to integer cents, half-up."""
    if value in (None, ""):
        return None
    try:
        amount = Decimal(str(value).replace(",", "."))
    except InvalidOperation:
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
