# Overview: Service-layer operations for seller payouts; request/approve/reject/paid workflow.

"""
Payout Request Workflow

LIFECYCLE:
    requested -> approved -> paid
    requested -> rejected
    approved  -> rejected

MONEY:
- request: amount debited from the seller's available balance immediately
  (debit_payout), so the same funds cannot be requested twice
- reject: the debit is reversed (funds back to balance)
- approve / paid: no wallet effect

A seller may have at most one open (requested or approved) request.
Approve, reject and paid are admin actions.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import PayoutRequest
from pharmamarket.time_utils import utcnow
from . import event_service, wallet_service
from .access_service import ROLE_ADMIN, ROLE_SELLER, require_role
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InvalidRequest, InvalidTransition, NotFound

PAYOUT_REQUESTED = "requested"
PAYOUT_APPROVED = "approved"
PAYOUT_REJECTED = "rejected"
PAYOUT_PAID = "paid"

VALID_PAYOUT_STATUSES = [PAYOUT_REQUESTED, PAYOUT_APPROVED, PAYOUT_REJECTED, PAYOUT_PAID]
OPEN_STATUSES = (PAYOUT_REQUESTED, PAYOUT_APPROVED)

ALLOWED_TRANSITIONS = {
    PAYOUT_REQUESTED: {PAYOUT_APPROVED, PAYOUT_REJECTED},
    PAYOUT_APPROVED: {PAYOUT_PAID, PAYOUT_REJECTED},
    PAYOUT_REJECTED: set(),
    PAYOUT_PAID: set(),
}


def _guard(payout: PayoutRequest, target: str, reason: str | None = None) -> None:
    if target not in ALLOWED_TRANSITIONS.get(payout.status, set()):
        raise InvalidTransition(
            entity="PayoutRequest",
            entity_id=payout.id,
            current=payout.status,
            target=target,
            reason=reason,
        )


def _lock_payout(payout_id: int) -> PayoutRequest:
    payout = lock_for_update(db.session.query(PayoutRequest).filter_by(id=payout_id)).first()
    if not payout:
        raise NotFound("PayoutRequest", payout_id)
    return payout


def get_payout(payout_id: int) -> PayoutRequest:
    payout = db.session.get(PayoutRequest, payout_id)
    if not payout:
        raise NotFound("PayoutRequest", payout_id)
    return payout


def _record(payout: PayoutRequest, event_type: str, actor_user_id: int | None, **extra) -> None:
    payload = {"seller_id": payout.seller_id, "amount_cents": payout.amount_cents, "status": payout.status}
    payload.update(extra)
    event_service.record_event(
        event_type=event_type,
        entity_type="payout_request",
        entity_id=payout.id,
        actor_user_id=actor_user_id,
        payload=payload,
    )


def request_payout(seller_id: int, amount_cents: int, notes: str | None = None) -> PayoutRequest:
    """
    Create a payout request and debit the amount from the available balance.

    Raises:
        InsufficientBalance: amount exceeds the available balance (nothing written)
        InvalidTransition: the seller already has an open request
        UnauthorizedAction: seller_id is not an active seller
    """
    wallet_service._validate_amount(amount_cents)

    def _op():
        begin_write_transaction()
        require_role(seller_id, ROLE_SELLER, action="request_payout")
        # Wallet lock serializes requests per seller before the open-request check.
        wallet_service._lock_wallet(seller_id)

        open_request = (
            db.session.query(PayoutRequest)
            .filter(PayoutRequest.seller_id == seller_id, PayoutRequest.status.in_(OPEN_STATUSES))
            .first()
        )
        if open_request:
            raise InvalidTransition(
                entity="PayoutRequest",
                entity_id=open_request.id,
                current=open_request.status,
                target=PAYOUT_REQUESTED,
                reason="seller already has an open payout request",
            )

        payout = PayoutRequest(
            seller_id=seller_id,
            amount_cents=amount_cents,
            status=PAYOUT_REQUESTED,
            notes=notes,
        )
        db.session.add(payout)
        db.session.flush()

        tx = wallet_service._debit_locked(
            seller_id,
            amount_cents,
            payout_request_id=payout.id,
            description=f"Payout request {payout.id}",
        )
        payout.debit_transaction_id = tx.id

        _record(payout, event_service.PAYOUT_REQUESTED, seller_id)
        db.session.commit()
        current_app.logger.info("Payout %s requested: seller=%s amount=%s", payout.id, seller_id, amount_cents)
        return payout

    return run_with_retry(_op)


def approve_payout(payout_id: int, *, actor_user_id: int, admin_notes: str | None = None) -> PayoutRequest:
    def _op():
        begin_write_transaction()
        require_role(actor_user_id, ROLE_ADMIN, action="approve_payout", resource=f"payout:{payout_id}")
        payout = _lock_payout(payout_id)
        _guard(payout, PAYOUT_APPROVED)

        payout.status = PAYOUT_APPROVED
        payout.admin_notes = admin_notes or payout.admin_notes
        payout.processed_at = utcnow()
        payout.processed_by_user_id = actor_user_id

        _record(payout, event_service.PAYOUT_APPROVED, actor_user_id)
        db.session.commit()
        current_app.logger.info("Payout %s approved by %s", payout.id, actor_user_id)
        return payout

    return run_with_retry(_op)


def reject_payout(payout_id: int, *, actor_user_id: int, reason: str | None = None) -> PayoutRequest:
    """Reject a requested or approved payout; the debited amount returns to the balance."""
    def _op():
        begin_write_transaction()
        require_role(actor_user_id, ROLE_ADMIN, action="reject_payout", resource=f"payout:{payout_id}")
        payout = _lock_payout(payout_id)
        _guard(payout, PAYOUT_REJECTED)

        if payout.debit_transaction_id is not None and not wallet_service._is_reversed(payout.debit_transaction_id):
            wallet_service._reverse_locked(
                payout.debit_transaction_id,
                description=f"Payout request {payout.id} rejected",
            )

        payout.status = PAYOUT_REJECTED
        payout.admin_notes = reason or payout.admin_notes
        payout.processed_at = utcnow()
        payout.processed_by_user_id = actor_user_id

        _record(payout, event_service.PAYOUT_REJECTED, actor_user_id, reason=reason)
        db.session.commit()
        current_app.logger.info("Payout %s rejected by %s", payout.id, actor_user_id)
        return payout

    return run_with_retry(_op)


def mark_payout_paid(
    payout_id: int,
    *,
    actor_user_id: int,
    transaction_reference: str | None = None,
) -> PayoutRequest:
    """approved -> paid. The money already left the wallet at request time."""
    def _op():
        begin_write_transaction()
        require_role(actor_user_id, ROLE_ADMIN, action="mark_payout_paid", resource=f"payout:{payout_id}")
        payout = _lock_payout(payout_id)
        _guard(payout, PAYOUT_PAID)

        payout.status = PAYOUT_PAID
        payout.transaction_reference = transaction_reference
        payout.processed_at = utcnow()
        payout.processed_by_user_id = actor_user_id

        _record(payout, event_service.PAYOUT_PAID, actor_user_id, transaction_reference=transaction_reference)
        db.session.commit()
        current_app.logger.info("Payout %s paid (%s)", payout.id, transaction_reference)
        return payout

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def list_pending_payouts(limit: int = 100) -> list[PayoutRequest]:
    """Open requests, oldest first (admin review queue)."""
    return (
        db.session.query(PayoutRequest)
        .filter(PayoutRequest.status.in_(OPEN_STATUSES))
        .order_by(PayoutRequest.id.asc())
        .limit(limit)
        .all()
    )


def list_seller_payouts(seller_id: int, *, status: str | None = None, limit: int = 50) -> list[PayoutRequest]:
    if status and status not in VALID_PAYOUT_STATUSES:
        raise InvalidRequest(f"Invalid status: {status}", details={"allowed": VALID_PAYOUT_STATUSES})
    query = db.session.query(PayoutRequest).filter(PayoutRequest.seller_id == seller_id)
    if status:
        query = query.filter(PayoutRequest.status == status)
    return query.order_by(PayoutRequest.id.desc()).limit(limit).all()


def get_payout_statistics(seller_id: int | None = None) -> dict:
    """Count and amount per status, optionally for one seller."""
    query = db.session.query(
        PayoutRequest.status,
        func.count(PayoutRequest.id),
        func.coalesce(func.sum(PayoutRequest.amount_cents), 0),
    )
    if seller_id is not None:
        query = query.filter(PayoutRequest.seller_id == seller_id)
    rows = query.group_by(PayoutRequest.status).all()

    stats = {status: {"count": 0, "amount_cents": 0} for status in VALID_PAYOUT_STATUSES}
    for status, count, amount in rows:
        stats[status] = {"count": int(count), "amount_cents": int(amount)}
    return stats
