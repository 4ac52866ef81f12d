# Overview: Shared httpx plumbing for HTTP carrier adapters; translates transport failures.

from __future__ import annotations

import logging

import httpx

from pharmamarket.services.errors import CarrierRejected, CarrierUnavailable
from .base import CarrierAdapter, CarrierCredentials

logger = logging.getLogger(__name__)


class HttpCarrierAdapter(CarrierAdapter):
    """
    Base for carriers reached over HTTP/JSON.

    The client is created lazily with a bounded timeout; tests inject an
    httpx.MockTransport through `transport`.
    """

    def __init__(
        self,
        credentials: CarrierCredentials,
        *,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.credentials = credentials
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            if not self.credentials.endpoint:
                raise CarrierUnavailable(
                    f"{self.name} endpoint is not configured",
                    carrier=self.name,
                    operation="configure",
                )
            self._client = httpx.Client(
                base_url=self.credentials.endpoint,
                timeout=self.timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    def _request(self, method: str, path: str, *, operation: str, **kwargs) -> dict:
        """
        Perform one HTTP call and return the decoded JSON object.

        Raises:
            CarrierUnavailable: timeout, connection error, 5xx or malformed JSON
            CarrierRejected: 4xx
        """
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out after %ss", self.name, operation, self.timeout)
            raise CarrierUnavailable(
                f"{self.name} {operation} timed out",
                carrier=self.name,
                operation=operation,
                details={"timeout_seconds": self.timeout},
            ) from exc
        except httpx.TransportError as exc:
            logger.warning("%s %s transport error: %s", self.name, operation, exc)
            raise CarrierUnavailable(
                f"{self.name} {operation} failed: {exc}",
                carrier=self.name,
                operation=operation,
            ) from exc

        if response.status_code >= 500:
            logger.warning("%s %s returned HTTP %s", self.name, operation, response.status_code)
            raise CarrierUnavailable(
                f"{self.name} {operation} returned HTTP {response.status_code}",
                carrier=self.name,
                operation=operation,
                details={"status_code": response.status_code},
            )

        payload = self._decode(response, operation)

        if response.status_code >= 400:
            message = payload.get("message") or payload.get("error") or f"HTTP {response.status_code}"
            logger.info("%s rejected %s: %s", self.name, operation, message)
            raise CarrierRejected(
                f"{self.name} rejected {operation}: {message}",
                carrier=self.name,
                operation=operation,
                details={"status_code": response.status_code, "response": payload},
            )
        return payload

    def _decode(self, response: httpx.Response, operation: str) -> dict:
        if not response.content:
            return {}
        try:
            payload = response.json()
        except ValueError as exc:
            raise CarrierUnavailable(
                f"{self.name} {operation} returned a malformed response",
                carrier=self.name,
                operation=operation,
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(payload, dict):
            raise CarrierUnavailable(
                f"{self.name} {operation} returned a malformed response",
                carrier=self.name,
                operation=operation,
                details={"status_code": response.status_code},
            )
        return payload

    def _malformed(self, operation: str, payload: dict) -> CarrierUnavailable:
        return CarrierUnavailable(
            f"{self.name} {operation} response is missing required fields",
            carrier=self.name,
            operation=operation,
            details={"response": payload},
        )
