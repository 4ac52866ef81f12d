# Overview: Carrier registry; builds adapters from MarketplaceSettings.

from __future__ import annotations

from flask import current_app

from pharmamarket.config import MarketplaceSettings, get_settings
from pharmamarket.services.errors import InvalidRequest
from .aras import ArasCarrier
from .base import (
    CancelResult,
    CarrierAdapter,
    CarrierCredentials,
    ShipmentRequest,
    ShipmentResult,
    ShipmentStatus,
    TrackingInfo,
    can_advance,
)
from .fake import FakeCarrier
from .hepsijet import HepsijetCarrier
from .mng import MngCarrier

CARRIERS = {
    FakeCarrier.name: FakeCarrier,
    ArasCarrier.name: ArasCarrier,
    MngCarrier.name: MngCarrier,
    HepsijetCarrier.name: HepsijetCarrier,
}


def build_carrier(name: str, settings: MarketplaceSettings | None = None, *, transport=None) -> CarrierAdapter:
    """Construct a carrier adapter with its credentials injected."""
    cls = CARRIERS.get((name or "").lower())
    if cls is None:
        raise InvalidRequest(f"Unknown carrier: {name}", details={"allowed": sorted(CARRIERS)})
    if cls is FakeCarrier:
        return FakeCarrier()

    settings = settings or MarketplaceSettings()
    credentials = CarrierCredentials.from_mapping(settings.carrier_credentials.get(cls.name))
    return cls(credentials, timeout=settings.carrier_timeout_seconds, transport=transport)


def get_carrier(name: str | None = None) -> CarrierAdapter:
    """
    Carrier for the current app, one instance per provider.

    The configured CARRIER_PROVIDER is used when name is None.
    """
    settings = get_settings()
    name = (name or settings.carrier_provider).lower()
    carriers = current_app.extensions.setdefault("carriers", {})
    if name not in carriers:
        carriers[name] = build_carrier(name, settings)
    return carriers[name]


__all__ = [
    "CARRIERS",
    "ArasCarrier",
    "CancelResult",
    "CarrierAdapter",
    "CarrierCredentials",
    "FakeCarrier",
    "HepsijetCarrier",
    "MngCarrier",
    "ShipmentRequest",
    "ShipmentResult",
    "ShipmentStatus",
    "TrackingInfo",
    "build_carrier",
    "can_advance",
    "get_carrier",
]
