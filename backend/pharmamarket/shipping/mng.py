# Overview: MNG Kargo adapter; numeric SIPARIS_STATU status codes.

from __future__ import annotations

import logging

from .base import CancelResult, ShipmentRequest, ShipmentResult, ShipmentStatus, TrackingInfo, to_cents, to_float
from .transport import HttpCarrierAdapter
from pharmamarket.services.errors import CarrierRejected

logger = logging.getLogger(__name__)

# MNG answers a duplicate booking with this marker; the order is already registered.
ALREADY_EXISTS_MARKER = "ZATEN VAR"


def map_mng_status(code) -> ShipmentStatus:
    """SIPARIS_STATU uses the canonical numbering; anything else reads as PREPARING."""
    try:
        return ShipmentStatus(int(code))
    except (TypeError, ValueError):
        return ShipmentStatus.PREPARING


class MngCarrier(HttpCarrierAdapter):
    name = "mng"

    def _auth(self) -> dict:
        return {"pKullaniciAdi": self.credentials.account_code, "pSifre": self.credentials.secret}

    def send(self, request: ShipmentRequest) -> ShipmentResult:
        recipient = request.recipient
        sender = request.sender
        body = {
            **self._auth(),
            "pSiparisNo": request.order_number,
            "pBarkodText": request.order_number,
            "pIrsaliyeNo": request.order_number,
            "pOdemeSekli": "Gonderici_Odeyecek",
            "pTeslimSekli": "Adrese_Teslim",
            "pKargoCinsi": "Koli",
            "pAciklama": request.description or "",
            "pGonderiParcaList": [
                {"Kg": max(1, request.weight_grams // 1000), "Desi": 1, "Adet": request.parcel_count}
            ],
            "pGonderenMusteri": {
                "pGonMusteriAdi": sender.get("name", ""),
                "pGonIlAdi": sender.get("city", ""),
                "pGonilceAdi": sender.get("district", ""),
                "pGonAdresText": sender.get("address", ""),
                "pGonTelCep": sender.get("phone", ""),
            },
            "pAliciMusteri": {
                "pAliciMusteriAdi": recipient.get("name", ""),
                "pAliciIlAdi": recipient.get("city", ""),
                "pAliciilceAdi": recipient.get("district", ""),
                "pAliciAdresText": recipient.get("address", ""),
                "pAliciTelCep": recipient.get("phone", ""),
            },
        }
        payload = self._request("POST", "/SiparisKayit_C2C", operation="send", json=body)
        if "SiparisKayit_C2CResult" not in payload:
            raise self._malformed("send", payload)

        result = str(payload["SiparisKayit_C2CResult"])
        if result != "1" and ALREADY_EXISTS_MARKER not in result:
            raise CarrierRejected(
                result or "MNG refused the shipment",
                carrier=self.name,
                operation="send",
                details={"response": payload},
            )
        if result != "1":
            logger.info("MNG already had shipment %s; treating as booked", request.order_number)
        return ShipmentResult(tracking_code=request.order_number, tracking_url=None, raw=payload)

    def cancel(self, reference: str) -> CancelResult:
        body = {**self._auth(), "pSiparisNo": reference}
        payload = self._request("POST", "/SiparisIptali_C2C", operation="cancel", json=body)
        if "SiparisIptali_C2CResult" not in payload:
            raise self._malformed("cancel", payload)
        cancelled = str(payload["SiparisIptali_C2CResult"]) == "1"
        return CancelResult(
            cancelled=cancelled,
            message="Cancelled" if cancelled else str(payload["SiparisIptali_C2CResult"]),
            raw=payload,
        )

    def track(self, reference: str) -> TrackingInfo:
        body = {
            "pRfSipGnMusteriNo": self.credentials.account_code,
            "pRfSipGnMusteriSifre": self.credentials.secret,
            "pChSiparisNo": reference,
        }
        payload = self._request("POST", "/GelecekIadeSiparisKontrol", operation="track", json=body)
        row = (payload.get("NewDataSet") or {}).get("Table1") or {}
        raw_status = row.get("SIPARIS_STATU", 0)
        return TrackingInfo(
            normalized_status=map_mng_status(raw_status),
            description=row.get("SIPARIS_STATU_ACIKLAMA") or None,
            weight=to_float(row.get("KG")),
            price_cents=to_cents(row.get("TUTAR")),
            raw_status=raw_status,
            tracking_url=row.get("KARGO_TAKIP_URL") or None,
            raw=payload,
        )
