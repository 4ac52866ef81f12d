# Overview: Deterministic in-process carrier for development and tests.

from __future__ import annotations

import logging

from .base import CancelResult, CarrierAdapter, ShipmentRequest, ShipmentResult, ShipmentStatus, TrackingInfo
from pharmamarket.services.errors import CarrierRejected, CarrierUnavailable

logger = logging.getLogger(__name__)


class FakeCarrier(CarrierAdapter):
    """
    Books every shipment as FAKE-<order_number> and remembers its status.

    Failure switches:
    - fail_send / fail_cancel / fail_track: raise CarrierUnavailable
    - reject_send: raise CarrierRejected
    - refuse_cancel: return CancelResult(cancelled=False)
    """

    name = "fake"

    def __init__(
        self,
        *,
        fail_send: bool = False,
        fail_cancel: bool = False,
        fail_track: bool = False,
        reject_send: bool = False,
        refuse_cancel: bool = False,
    ):
        self.fail_send = fail_send
        self.fail_cancel = fail_cancel
        self.fail_track = fail_track
        self.reject_send = reject_send
        self.refuse_cancel = refuse_cancel
        self.statuses: dict[str, ShipmentStatus] = {}
        self.calls: list[tuple[str, str]] = []
        self.on_send = None  # optional hook(request) run before booking

    def send(self, request: ShipmentRequest) -> ShipmentResult:
        self.calls.append(("send", request.order_number))
        if self.on_send:
            self.on_send(request)
        if self.fail_send:
            raise CarrierUnavailable("fake carrier is down", carrier=self.name, operation="send")
        if self.reject_send:
            raise CarrierRejected("fake carrier refused the shipment", carrier=self.name, operation="send")

        code = f"FAKE-{request.order_number}"
        self.statuses[code] = ShipmentStatus.ACCEPTED
        logger.debug("Fake shipment booked: %s", code)
        return ShipmentResult(
            tracking_code=code,
            tracking_url=f"https://tracking.invalid/{code}",
            raw={"tracking_code": code},
        )

    def cancel(self, reference: str) -> CancelResult:
        self.calls.append(("cancel", reference))
        if self.fail_cancel:
            raise CarrierUnavailable("fake carrier is down", carrier=self.name, operation="cancel")
        if self.refuse_cancel:
            return CancelResult(cancelled=False, message="Parcel already handed over", raw={})
        self.statuses.pop(reference, None)
        return CancelResult(cancelled=True, message="Cancelled", raw={"reference": reference})

    def track(self, reference: str) -> TrackingInfo:
        self.calls.append(("track", reference))
        if self.fail_track:
            raise CarrierUnavailable("fake carrier is down", carrier=self.name, operation="track")
        status = self.statuses.get(reference, ShipmentStatus.PREPARING)
        return TrackingInfo(
            normalized_status=status,
            description=status.label,
            raw_status=int(status),
            tracking_url=f"https://tracking.invalid/{reference}",
            raw={"reference": reference, "status": int(status)},
        )

    def set_status(self, reference: str, status: ShipmentStatus) -> None:
        self.statuses[reference] = ShipmentStatus(status)
