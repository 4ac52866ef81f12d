# Overview: Hepsijet adapter; bearer token from basic auth, string status vocabulary.

from __future__ import annotations

import logging
import time

from .base import CancelResult, ShipmentRequest, ShipmentResult, ShipmentStatus, TrackingInfo, to_cents, to_float
from .transport import HttpCarrierAdapter
from pharmamarket.services.errors import CarrierRejected

logger = logging.getLogger(__name__)

HEPSIJET_STATUS_MAP = {
    "delivered": ShipmentStatus.DELIVERED,
    "teslim edildi": ShipmentStatus.DELIVERED,
    "in_transit": ShipmentStatus.IN_TRANSIT,
    "yolda": ShipmentStatus.IN_TRANSIT,
    "shipped": ShipmentStatus.ACCEPTED,
}

# Refresh this many seconds before the advertised expiry.
TOKEN_EXPIRY_MARGIN = 300


def map_hepsijet_status(status) -> ShipmentStatus:
    return HEPSIJET_STATUS_MAP.get(str(status or "").strip().lower(), ShipmentStatus.PREPARING)


class HepsijetCarrier(HttpCarrierAdapter):
    name = "hepsijet"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _get_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        payload = self._request(
            "GET",
            "/auth/getToken",
            operation="authenticate",
            auth=(self.credentials.account_code, self.credentials.secret),
        )
        token = payload.get("token") or payload.get("access_token")
        if not token:
            raise self._malformed("authenticate", payload)

        expires_in = int(payload.get("expires_in") or 3600)
        self._token = token
        self._token_expires_at = time.monotonic() + max(expires_in - TOKEN_EXPIRY_MARGIN, 0)
        logger.debug("Hepsijet token refreshed (expires in %ss)", expires_in)
        return token

    def _authorized(self) -> dict:
        return {"Authorization": f"Bearer {self._get_token()}"}

    def send(self, request: ShipmentRequest) -> ShipmentResult:
        recipient = request.recipient
        sender = request.sender
        body = {
            "customerOrderId": request.order_number,
            "sender": {
                "name": sender.get("name", ""),
                "address": {
                    "city": {"name": sender.get("city", "")},
                    "town": {"name": sender.get("district", "")},
                    "addressLine1": sender.get("address", ""),
                },
                "phone": sender.get("phone", ""),
            },
            "receiver": {
                "name": recipient.get("name", ""),
                "address": {
                    "city": {"name": recipient.get("city", "")},
                    "town": {"name": recipient.get("district", "")},
                    "addressLine1": recipient.get("address", ""),
                },
                "phone": recipient.get("phone", ""),
            },
            "parcels": [
                {"desi": 1, "weight": request.weight_grams, "content": request.description or ""}
                for _ in range(request.parcel_count)
            ],
            "serviceType": ["STANDART"],
            "paymentType": "SENDER_PAYS",
            "codAmount": 0,
            "invoiceNumber": request.order_number,
        }
        payload = self._request(
            "POST",
            "/delivery/sendDeliveryOrderEnhanced",
            operation="send",
            json=body,
            headers=self._authorized(),
        )
        delivery_no = payload.get("deliveryNo") or payload.get("delivery_no")
        if not delivery_no:
            raise CarrierRejected(
                payload.get("message") or payload.get("error") or "Hepsijet did not return a delivery number",
                carrier=self.name,
                operation="send",
                details={"response": payload},
            )
        return ShipmentResult(tracking_code=str(delivery_no), tracking_url=payload.get("trackingUrl"), raw=payload)

    def cancel(self, reference: str) -> CancelResult:
        payload = self._request(
            "POST",
            f"/rest/delivery/deleteDeliveryOrder/{reference}",
            operation="cancel",
            json={"reason": "Order cancelled"},
            headers=self._authorized(),
        )
        return CancelResult(cancelled=True, message=payload.get("message") or "Cancelled", raw=payload)

    def track(self, reference: str) -> TrackingInfo:
        payload = self._request(
            "POST",
            "/deliveryTransaction/getDeliveryTracking",
            operation="track",
            json={"deliveryNo": reference},
            headers=self._authorized(),
        )
        raw_status = payload.get("status", "")
        return TrackingInfo(
            normalized_status=map_hepsijet_status(raw_status),
            description=payload.get("statusDescription") or raw_status or None,
            weight=to_float(payload.get("weight")),
            price_cents=to_cents(payload.get("price")),
            raw_status=raw_status,
            tracking_url=payload.get("trackingUrl"),
            raw=payload,
        )
