"""
Carrier adapter tests against httpx.MockTransport.

Covers status normalization, failure classification (unavailable vs
rejected) and the registry.
"""

import json

import httpx
import pytest

from pharmamarket.config import MarketplaceSettings
from pharmamarket.services.errors import CarrierRejected, CarrierUnavailable, InvalidRequest
from pharmamarket.shipping import (
    ArasCarrier,
    CarrierCredentials,
    FakeCarrier,
    HepsijetCarrier,
    MngCarrier,
    ShipmentRequest,
    ShipmentStatus,
    build_carrier,
    can_advance,
    get_carrier,
)
from pharmamarket.shipping.aras import map_aras_status
from pharmamarket.shipping.base import to_cents
from pharmamarket.shipping.hepsijet import map_hepsijet_status
from pharmamarket.shipping.mng import map_mng_status


CREDENTIALS = CarrierCredentials(endpoint="https://carrier.test/api", account_code="ACME", secret="s3cret")


def _request(order_number="PM2610190001ABCD"):
    return ShipmentRequest(
        order_id=1,
        order_number=order_number,
        recipient={"name": "Eczane Buyer", "city": "Ankara", "address": "Kizilay 1"},
        sender={"name": "Depo Seller", "city": "Istanbul"},
    )


def _carrier(cls, handler):
    return cls(CREDENTIALS, timeout=2, transport=httpx.MockTransport(handler))


# =============================================================================
# STATUS VOCABULARY
# =============================================================================

class TestShipmentStatus:
    def test_codes_are_fixed(self):
        assert [int(s) for s in ShipmentStatus] == [0, 1, 2, 3, 4, 5, 8]

    @pytest.mark.parametrize(
        "current,new,expected",
        [
            (ShipmentStatus.PREPARING, ShipmentStatus.IN_TRANSIT, True),
            (ShipmentStatus.IN_TRANSIT, ShipmentStatus.ACCEPTED, False),
            (ShipmentStatus.IN_TRANSIT, ShipmentStatus.IN_TRANSIT, False),
            (ShipmentStatus.IN_TRANSIT, ShipmentStatus.EXCEPTION, True),
            (ShipmentStatus.EXCEPTION, ShipmentStatus.ACCEPTED, False),
            (ShipmentStatus.EXCEPTION, ShipmentStatus.PREPARING, False),
            (ShipmentStatus.EXCEPTION, ShipmentStatus.IN_TRANSIT, True),
            (ShipmentStatus.EXCEPTION, ShipmentStatus.DELIVERED, True),
            (ShipmentStatus.DELIVERED, ShipmentStatus.EXCEPTION, False),
            (ShipmentStatus.RETURNED, ShipmentStatus.DELIVERED, False),
            (ShipmentStatus.OUT_FOR_DELIVERY, ShipmentStatus.RETURNED, True),
        ],
    )
    def test_can_advance(self, current, new, expected):
        assert can_advance(current, new) is expected

    @pytest.mark.parametrize(
        "code,type_code,expected",
        [
            (1, 1, ShipmentStatus.ACCEPTED),
            (2, 2, ShipmentStatus.IN_TRANSIT),
            (3, 1, ShipmentStatus.OUT_FOR_DELIVERY),
            ("4", 1, ShipmentStatus.DELIVERED),
            (5, 1, ShipmentStatus.EXCEPTION),
            (6, 1, ShipmentStatus.EXCEPTION),
            (7, 1, ShipmentStatus.DELIVERED),
            (2, 3, ShipmentStatus.RETURNED),
            (7, 3, ShipmentStatus.RETURNED),
            (4, 9, ShipmentStatus.PREPARING),
            (99, 1, ShipmentStatus.PREPARING),
            (None, 1, ShipmentStatus.PREPARING),
        ],
    )
    def test_aras_map(self, code, type_code, expected):
        assert map_aras_status(code, type_code) == expected

    def test_aras_defaults_to_outbound(self):
        assert map_aras_status(6) == ShipmentStatus.EXCEPTION

    @pytest.mark.parametrize(
        "code,expected",
        [
            (0, ShipmentStatus.PREPARING),
            (3, ShipmentStatus.OUT_FOR_DELIVERY),
            (4, ShipmentStatus.DELIVERED),
            ("5", ShipmentStatus.EXCEPTION),
            (8, ShipmentStatus.RETURNED),
            (6, ShipmentStatus.PREPARING),
            ("x", ShipmentStatus.PREPARING),
        ],
    )
    def test_mng_map(self, code, expected):
        assert map_mng_status(code) == expected

    def test_hepsijet_map(self):
        assert map_hepsijet_status("Teslim Edildi") == ShipmentStatus.DELIVERED
        assert map_hepsijet_status("unknown") == ShipmentStatus.PREPARING

    @pytest.mark.parametrize("value,expected", [("12,50", 1250), (3.005, 301), ("", None), ("abc", None)])
    def test_to_cents(self, value, expected):
        assert to_cents(value) == expected


# =============================================================================
# ARAS
# =============================================================================

class TestAras:
    def test_send_uses_order_number_as_tracking_code(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"SaveOrderResult": {"Result": "1"}})

        result = _carrier(ArasCarrier, handler).send(_request())

        assert seen["path"] == "/api/SaveOrder"
        assert seen["body"]["model"]["IntegrationCode"] == "PM2610190001ABCD"
        assert seen["body"]["customerInfo"]["CustomerCode"] == "ACME"
        assert result.tracking_code == "PM2610190001ABCD"
        assert result.tracking_url.endswith("PM2610190001ABCD")

    def test_send_refused(self):
        def handler(request):
            return httpx.Response(200, json={"SaveOrderResult": {"Result": "0", "Description": "Bad address"}})

        with pytest.raises(CarrierRejected) as exc:
            _carrier(ArasCarrier, handler).send(_request())

        assert exc.value.message == "Bad address"

    def test_track_parses_collection(self):
        def handler(request):
            return httpx.Response(200, json={
                "Collection": {
                    "DURUM_KODU": 7,
                    "TIP_KODU": 1,
                    "DURUMU": "TESLIM EDILDI",
                    "DESI": "2.5",
                    "TUTAR": "45,90",
                    "KARGO_TAKIP_NO": "123456",
                }
            })

        info = _carrier(ArasCarrier, handler).track("PM1")

        assert info.normalized_status == ShipmentStatus.DELIVERED
        assert info.description == "TESLIM EDILDI"
        assert info.weight == 2.5
        assert info.price_cents == 4590
        assert info.tracking_url.endswith("123456")

    def test_track_return_shipment(self):
        def handler(request):
            return httpx.Response(200, json={
                "Collection": {"DURUM_KODU": 2, "TIP_KODU": 3, "DURUMU": "IADE", "KARGO_TAKIP_NO": "123456"}
            })

        info = _carrier(ArasCarrier, handler).track("PM1")

        assert info.normalized_status == ShipmentStatus.RETURNED
        assert info.raw_status == 2

    def test_track_without_collection_is_preparing(self):
        info = _carrier(ArasCarrier, lambda request: httpx.Response(200, json={"Collection": None})).track("PM1")

        assert info.normalized_status == ShipmentStatus.PREPARING

    def test_cancel(self):
        carrier = _carrier(ArasCarrier, lambda request: httpx.Response(200, json={"DeleteOrderResult": {"Result": 1}}))

        assert carrier.cancel("PM1").cancelled is True

    def test_cancel_refused(self):
        def handler(request):
            return httpx.Response(200, json={"DeleteOrderResult": {"Result": 0, "Description": "Already collected"}})

        outcome = _carrier(ArasCarrier, handler).cancel("PM1")

        assert outcome.cancelled is False
        assert outcome.message == "Already collected"


# =============================================================================
# MNG
# =============================================================================

class TestMng:
    def test_send(self):
        carrier = _carrier(MngCarrier, lambda request: httpx.Response(200, json={"SiparisKayit_C2CResult": "1"}))

        assert carrier.send(_request()).tracking_code == "PM2610190001ABCD"

    def test_duplicate_booking_counts_as_booked(self):
        def handler(request):
            return httpx.Response(200, json={"SiparisKayit_C2CResult": "E002: SIPARIS ZATEN VAR"})

        assert _carrier(MngCarrier, handler).send(_request()).tracking_code == "PM2610190001ABCD"

    def test_send_refused(self):
        def handler(request):
            return httpx.Response(200, json={"SiparisKayit_C2CResult": "E001: Eksik adres"})

        with pytest.raises(CarrierRejected):
            _carrier(MngCarrier, handler).send(_request())

    def test_track(self):
        def handler(request):
            return httpx.Response(200, json={
                "NewDataSet": {"Table1": {"SIPARIS_STATU": 4, "SIPARIS_STATU_ACIKLAMA": "Teslim edildi", "KG": "3"}}
            })

        info = _carrier(MngCarrier, handler).track("PM1")

        assert info.normalized_status == ShipmentStatus.DELIVERED
        assert info.raw_status == 4
        assert info.weight == 3.0

    def test_missing_result_field_is_unavailable(self):
        with pytest.raises(CarrierUnavailable):
            _carrier(MngCarrier, lambda request: httpx.Response(200, json={})).cancel("PM1")


# =============================================================================
# HEPSIJET
# =============================================================================

class TestHepsijet:
    def _handler(self, calls, track_status="delivered"):
        def handler(request):
            calls.append(request.url.path)
            if request.url.path.endswith("/auth/getToken"):
                assert request.headers["Authorization"].startswith("Basic ")
                return httpx.Response(200, json={"token": "tok-1", "expires_in": 3600})
            assert request.headers["Authorization"] == "Bearer tok-1"
            if request.url.path.endswith("/sendDeliveryOrderEnhanced"):
                return httpx.Response(200, json={"deliveryNo": "HJ123"})
            if request.url.path.endswith("/getDeliveryTracking"):
                return httpx.Response(200, json={"status": track_status, "price": "19.99"})
            return httpx.Response(200, json={"message": "deleted"})
        return handler

    def test_token_is_cached(self):
        calls = []
        carrier = _carrier(HepsijetCarrier, self._handler(calls))

        result = carrier.send(_request())
        info = carrier.track(result.tracking_code)

        assert result.tracking_code == "HJ123"
        assert info.normalized_status == ShipmentStatus.DELIVERED
        assert info.price_cents == 1999
        assert calls.count("/api/auth/getToken") == 1

    def test_cancel(self):
        outcome = _carrier(HepsijetCarrier, self._handler([])).cancel("HJ123")

        assert outcome.cancelled is True
        assert outcome.message == "deleted"

    def test_missing_token_is_unavailable(self):
        carrier = _carrier(HepsijetCarrier, lambda request: httpx.Response(200, json={}))

        with pytest.raises(CarrierUnavailable):
            carrier.track("HJ1")


# =============================================================================
# TRANSPORT FAILURES
# =============================================================================

class TestTransportFailures:
    def test_timeout_is_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(CarrierUnavailable) as exc:
            _carrier(ArasCarrier, handler).send(_request())

        assert exc.value.retryable is True
        assert exc.value.details["timeout_seconds"] == 2

    def test_connection_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(CarrierUnavailable):
            _carrier(MngCarrier, handler).track("PM1")

    def test_5xx_is_unavailable(self):
        with pytest.raises(CarrierUnavailable) as exc:
            _carrier(ArasCarrier, lambda request: httpx.Response(503)).cancel("PM1")

        assert exc.value.details["status_code"] == 503

    def test_4xx_is_rejected(self):
        def handler(request):
            return httpx.Response(400, json={"message": "invalid customer"})

        with pytest.raises(CarrierRejected) as exc:
            _carrier(ArasCarrier, handler).send(_request())

        assert exc.value.retryable is False
        assert "invalid customer" in exc.value.message

    def test_malformed_json_is_unavailable(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>maintenance</html>")

        with pytest.raises(CarrierUnavailable):
            _carrier(ArasCarrier, handler).track("PM1")

    def test_non_object_json_is_unavailable(self):
        with pytest.raises(CarrierUnavailable):
            _carrier(MngCarrier, lambda request: httpx.Response(200, json=[1, 2])).send(_request())

    def test_missing_endpoint(self):
        carrier = ArasCarrier(CarrierCredentials(), transport=httpx.MockTransport(lambda r: httpx.Response(200)))

        with pytest.raises(CarrierUnavailable):
            carrier.track("PM1")


# =============================================================================
# REGISTRY
# =============================================================================

class TestRegistry:
    def test_build_injects_credentials(self):
        settings = MarketplaceSettings(
            carrier_timeout_seconds=4,
            carrier_credentials={"mng": {"endpoint": "https://mng.test/", "account_code": "M1", "secret": "x"}},
        )

        carrier = build_carrier("MNG", settings)

        assert isinstance(carrier, MngCarrier)
        assert carrier.credentials.endpoint == "https://mng.test"
        assert carrier.credentials.is_configured
        assert carrier.timeout == 4

    def test_unknown_carrier(self):
        with pytest.raises(InvalidRequest):
            build_carrier("pigeon")

    def test_get_carrier_caches_per_app(self, app, db_session):
        first = get_carrier()
        second = get_carrier("fake")

        assert isinstance(first, FakeCarrier)
        assert first is second


class TestFakeCarrier:
    def test_round_trip(self):
        carrier = FakeCarrier()

        result = carrier.send(_request("PM1"))
        carrier.set_status(result.tracking_code, ShipmentStatus.IN_TRANSIT)

        assert result.tracking_code == "FAKE-PM1"
        assert carrier.track("FAKE-PM1").normalized_status == ShipmentStatus.IN_TRANSIT
        assert carrier.cancel("FAKE-PM1").cancelled is True
        assert carrier.calls == [("send", "PM1"), ("track", "FAKE-PM1"), ("cancel", "FAKE-PM1")]
