# Overview: Aras Kargo adapter; numeric DURUM_KODU status codes.

from __future__ import annotations

import logging

from .base import CancelResult, ShipmentRequest, ShipmentResult, ShipmentStatus, TrackingInfo, to_cents, to_float
from .transport import HttpCarrierAdapter
from pharmamarket.services.errors import CarrierRejected

logger = logging.getLogger(__name__)

TRACKING_URL = "https://kargotakip.araskargo.com.tr/mainpage.aspx?code="

# Aras query type for "shipment by integration code"
QUERY_BY_INTEGRATION_CODE = 39

# TIP_KODU: 1 and 2 are outbound shipments, 3 is a return to sender.
OUTBOUND_TYPES = (1, 2)
RETURN_TYPE = 3

# DURUM_KODU 1-5 already match the canonical codes; 6 and 7 do not.
ARAS_STATUS_OVERRIDES = {
    6: ShipmentStatus.EXCEPTION,
    7: ShipmentStatus.DELIVERED,
}


def map_aras_status(code, type_code=1) -> ShipmentStatus:
    """
    Normalize an Aras (DURUM_KODU, TIP_KODU) pair.

    Return shipments are RETURNED whatever their DURUM_KODU says. Unknown
    types and codes read as PREPARING.
    """
    try:
        code = int(code)
        type_code = int(type_code)
    except (TypeError, ValueError):
        return ShipmentStatus.PREPARING

    if type_code == RETURN_TYPE:
        return ShipmentStatus.RETURNED
    if type_code not in OUTBOUND_TYPES:
        return ShipmentStatus.PREPARING
    if code in ARAS_STATUS_OVERRIDES:
        return ARAS_STATUS_OVERRIDES[code]
    if 0 <= code <= int(ShipmentStatus.EXCEPTION):
        return ShipmentStatus(code)
    return ShipmentStatus.PREPARING


class ArasCarrier(HttpCarrierAdapter):
    """
    Aras uses the order number as the integration code; that code is also the
    tracking reference. Result == 1 means the call was accepted.
    """

    name = "aras"

    def _customer_info(self) -> dict:
        return {
            "CustomerCode": self.credentials.account_code,
            "Password": self.credentials.secret,
        }

    def send(self, request: ShipmentRequest) -> ShipmentResult:
        recipient = request.recipient
        sender = request.sender
        body = {
            "customerInfo": self._customer_info(),
            "model": {
                "IntegrationCode": request.order_number,
                "InvoiceNumber": request.order_number,
                "TradingWaybillNumber": request.order_number,
                "LovPayOrType": "1",  # sender pays
                "MainServiceCode": "STNK",
                "PieceCount": request.parcel_count,
                "ReceiverAddressInfo": {
                    "Name": recipient.get("name", ""),
                    "Address": recipient.get("address", ""),
                    "CityName": recipient.get("city", ""),
                    "TownName": recipient.get("district", ""),
                    "MobilePhone": recipient.get("phone", ""),
                },
                "SenderAddressInfo": {
                    "Name": sender.get("name", ""),
                    "Address": sender.get("address", ""),
                    "CityName": sender.get("city", ""),
                    "TownName": sender.get("district", ""),
                    "MobilePhone": sender.get("phone", ""),
                },
            },
        }
        payload = self._request("POST", "/SaveOrder", operation="send", json=body)
        result = payload.get("SaveOrderResult", payload)
        if "Result" not in result:
            raise self._malformed("send", payload)
        if str(result.get("Result")) != "1":
            raise CarrierRejected(
                result.get("Description") or "Aras refused the shipment",
                carrier=self.name,
                operation="send",
                details={"response": payload},
            )
        logger.info("Aras shipment booked for %s", request.order_number)
        return ShipmentResult(
            tracking_code=request.order_number,
            tracking_url=TRACKING_URL + request.order_number,
            raw=payload,
        )

    def cancel(self, reference: str) -> CancelResult:
        body = {"orderCode": reference, "customerInfo": self._customer_info()}
        payload = self._request("POST", "/DeleteOrder", operation="cancel", json=body)
        result = payload.get("DeleteOrderResult", payload)
        if "Result" not in result:
            raise self._malformed("cancel", payload)
        cancelled = str(result.get("Result")) == "1"
        return CancelResult(
            cancelled=cancelled,
            message=result.get("Description") or ("Cancelled" if cancelled else "Cancellation refused"),
            raw=payload,
        )

    def track(self, reference: str) -> TrackingInfo:
        body = {
            "loginInfo": self._customer_info(),
            "queryInfo": {"QueryType": QUERY_BY_INTEGRATION_CODE, "IntegrationCode": reference},
        }
        payload = self._request("POST", "/GetQueryJSON", operation="track", json=body)
        collection = payload.get("Collection")
        if not collection:
            return TrackingInfo(
                normalized_status=ShipmentStatus.PREPARING,
                description="Awaiting carrier pickup",
                raw=payload,
            )

        raw_status = collection.get("DURUM_KODU")
        tracking_no = str(collection.get("KARGO_TAKIP_NO") or reference)
        return TrackingInfo(
            normalized_status=map_aras_status(raw_status, collection.get("TIP_KODU", 1)),
            description=collection.get("DURUMU") or None,
            weight=to_float(collection.get("DESI")),
            price_cents=to_cents(collection.get("TUTAR")),
            raw_status=raw_status,
            tracking_url=TRACKING_URL + tracking_no,
            raw=payload,
        )
