# Overview: Typed domain errors shared by all marketplace services.

"""
Marketplace error taxonomy.

Every error carries a stable `code`, a human-readable message and a `details`
dict so the HTTP layer can render them uniformly. `retryable` separates
external-service failures (carrier, storage contention) from domain-logic
failures that the caller must not blindly retry.
"""

from __future__ import annotations


class MarketplaceError(Exception):
    """Base class for all domain errors."""

    code = "marketplace_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


class InvalidRequest(MarketplaceError):
    code = "invalid_request"
    http_status = 400


class NotFound(MarketplaceError):
    code = "not_found"
    http_status = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(
            f"{entity} {entity_id} not found",
            details={"entity": entity, "id": entity_id},
        )


class InsufficientStock(MarketplaceError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(
        self,
        *,
        product_id: int,
        product_name: str,
        available: int,
        requested: int,
        items: list[dict] | None = None,
    ):
        details = {
            "product_id": product_id,
            "product_name": product_name,
            "available": available,
            "requested": requested,
        }
        if items is not None:
            details["items"] = items
        super().__init__(
            f"Insufficient stock for {product_name}: requested {requested}, available {available}",
            details=details,
        )
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested


class PaymentFailed(MarketplaceError):
    code = "payment_failed"
    http_status = 402

    def __init__(
        self,
        message: str,
        *,
        error_code: str | None = None,
        transaction_id: str | None = None,
        raw_response: dict | None = None,
    ):
        super().__init__(
            message,
            details={
                "error_code": error_code,
                "transaction_id": transaction_id,
                "raw_response": raw_response,
            },
        )
        self.error_code = error_code
        self.transaction_id = transaction_id
        self.raw_response = raw_response


class UnauthorizedAction(MarketplaceError):
    code = "unauthorized_action"
    http_status = 403

    def __init__(self, *, actor_user_id: int | None, action: str, resource: str | None = None):
        super().__init__(
            f"User {actor_user_id} is not allowed to {action}",
            details={"actor_user_id": actor_user_id, "action": action, "resource": resource},
        )


class InsufficientBalance(MarketplaceError):
    code = "insufficient_balance"
    http_status = 409

    def __init__(self, *, seller_id: int, available_cents: int, requested_cents: int, bucket: str = "balance"):
        super().__init__(
            f"Insufficient {bucket} for seller {seller_id}: "
            f"requested {requested_cents}, available {available_cents}",
            details={
                "seller_id": seller_id,
                "bucket": bucket,
                "available_cents": available_cents,
                "requested_cents": requested_cents,
            },
        )
        self.available_cents = available_cents
        self.requested_cents = requested_cents


class InvalidTransition(MarketplaceError):
    code = "invalid_transition"
    http_status = 409

    def __init__(self, *, entity: str, entity_id, current: str, target: str, reason: str | None = None):
        message = f"Cannot move {entity} {entity_id} from {current} to {target}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            details={"entity": entity, "id": entity_id, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class ConflictingUpdate(MarketplaceError):
    code = "conflicting_update"
    http_status = 409
    retryable = True


class CarrierUnavailable(MarketplaceError):
    code = "carrier_unavailable"
    http_status = 503
    retryable = True

    def __init__(self, message: str, *, carrier: str, operation: str, details: dict | None = None):
        payload = {"carrier": carrier, "operation": operation}
        payload.update(details or {})
        super().__init__(message, details=payload)
        self.carrier = carrier
        self.operation = operation


class CarrierRejected(MarketplaceError):
    code = "carrier_rejected"
    http_status = 422

    def __init__(self, message: str, *, carrier: str, operation: str, details: dict | None = None):
        payload = {"carrier": carrier, "operation": operation}
        payload.update(details or {})
        super().__init__(message, details=payload)
        self.carrier = carrier
        self.operation = operation


class InvalidCategoryTree(MarketplaceError):
    code = "invalid_category_tree"
    http_status = 500

    def __init__(self, message: str, *, category_id: int, path: list[int] | None = None):
        super().__init__(message, details={"category_id": category_id, "path": path or []})
