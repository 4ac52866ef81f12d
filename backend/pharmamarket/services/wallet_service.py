# Overview: Service-layer operations for seller wallets; append-only ledger with cached balances.

"""
Seller Wallet Ledger

WHY: Sellers are paid from a wallet fed by their orders. The wallet row holds
cached totals for fast reads; the WalletTransaction log is the source of truth.

WALLET INVARIANTS:
- Every mutation appends exactly one WalletTransaction and updates the cached
  fields by that transaction's deltas, in the same DB transaction.
- balance_cents == SUM(balance_delta_cents)
- pending_balance_cents == SUM(pending_delta_cents)
- total_commission_cents == SUM(commission_delta_cents)
- Neither balance nor pending balance may go below zero.
- Transactions are never edited; corrections are reversal transactions.

TRANSACTION TYPES:
- credit_pending: order confirmed, proceeds added to pending balance
- settle: order delivered, pending -> balance, commission realized
- debit_payout: payout requested, funds removed from balance
- reversal: exact negation of an earlier transaction (at most one per original)

LOCKING: wallet rows are read with lock_for_update and carry version_id, so
two orders settling for the same seller never lose an update.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import SellerWallet, WalletTransaction, User
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InsufficientBalance, InvalidRequest, InvalidTransition, NotFound

TX_CREDIT_PENDING = "credit_pending"
TX_SETTLE = "settle"
TX_DEBIT_PAYOUT = "debit_payout"
TX_REVERSAL = "reversal"

VALID_TRANSACTION_TYPES = [TX_CREDIT_PENDING, TX_SETTLE, TX_DEBIT_PAYOUT, TX_REVERSAL]

CREDIT_KINDS = {TX_CREDIT_PENDING}
DEBIT_KINDS = {TX_DEBIT_PAYOUT}


def _validate_amount(amount_cents, *, allow_zero: bool = False) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidRequest("amount_cents must be an integer", details={"amount_cents": amount_cents})
    if amount_cents < 0 or (amount_cents == 0 and not allow_zero):
        raise InvalidRequest("amount_cents must be positive", details={"amount_cents": amount_cents})


def _wallet_query(seller_id: int):
    return lock_for_update(db.session.query(SellerWallet).filter_by(seller_id=seller_id))


def _lock_wallet(seller_id: int, *, create: bool = True) -> SellerWallet:
    """
    Lock the seller's wallet row, creating it on the first write.

    CRITICAL: FOR UPDATE on a missing row locks nothing, so two first writes
    for the same seller can both insert. The insert runs in a savepoint; the
    loser of the seller_id unique constraint re-selects the winner's row.
    """
    wallet = _wallet_query(seller_id).first()
    if wallet:
        return wallet
    if not create:
        raise NotFound("Wallet", seller_id)

    seller = db.session.get(User, seller_id)
    if not seller:
        raise NotFound("User", seller_id)
    if seller.role != "seller":
        raise InvalidRequest(f"User {seller_id} is not a seller", details={"seller_id": seller_id, "role": seller.role})

    wallet = SellerWallet(
        seller_id=seller_id,
        balance_cents=0,
        pending_balance_cents=0,
        total_commission_cents=0,
        withdrawn_cents=0,
    )
    nested = db.session.begin_nested()
    try:
        db.session.add(wallet)
        db.session.flush()
        nested.commit()
    except IntegrityError:
        nested.rollback()
        current_app.logger.info("Wallet for seller %s created concurrently; using existing row", seller_id)
        return _wallet_query(seller_id).one()
    return wallet


def _apply(
    wallet: SellerWallet,
    *,
    transaction_type: str,
    amount_cents: int,
    balance_delta: int = 0,
    pending_delta: int = 0,
    commission_delta: int = 0,
    order_id: int | None = None,
    payout_request_id: int | None = None,
    reverses_transaction_id: int | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """Append one transaction and move the cached fields by its deltas."""
    new_balance = wallet.balance_cents + balance_delta
    if new_balance < 0:
        raise InsufficientBalance(
            seller_id=wallet.seller_id,
            available_cents=wallet.balance_cents,
            requested_cents=-balance_delta,
            bucket="balance",
        )
    new_pending = wallet.pending_balance_cents + pending_delta
    if new_pending < 0:
        raise InsufficientBalance(
            seller_id=wallet.seller_id,
            available_cents=wallet.pending_balance_cents,
            requested_cents=-pending_delta,
            bucket="pending_balance",
        )

    tx = WalletTransaction(
        wallet_id=wallet.id,
        transaction_type=transaction_type,
        amount_cents=amount_cents,
        balance_delta_cents=balance_delta,
        pending_delta_cents=pending_delta,
        commission_delta_cents=commission_delta,
        order_id=order_id,
        payout_request_id=payout_request_id,
        reverses_transaction_id=reverses_transaction_id,
        description=description,
    )
    db.session.add(tx)

    wallet.balance_cents = new_balance
    wallet.pending_balance_cents = new_pending
    wallet.total_commission_cents = wallet.total_commission_cents + commission_delta
    if transaction_type == TX_DEBIT_PAYOUT:
        wallet.withdrawn_cents = wallet.withdrawn_cents + amount_cents

    db.session.flush()
    return tx


# =============================================================================
# LOCKED PRIMITIVES (no commit; used inside order/payout transactions)
# =============================================================================

def _credit_locked(
    seller_id: int,
    amount_cents: int,
    *,
    kind: str = TX_CREDIT_PENDING,
    order_id: int | None = None,
    description: str | None = None,
) -> WalletTransaction:
    if kind not in CREDIT_KINDS:
        raise InvalidRequest(f"Invalid credit kind: {kind}", details={"allowed": sorted(CREDIT_KINDS)})
    _validate_amount(amount_cents)
    wallet = _lock_wallet(seller_id)
    return _apply(
        wallet,
        transaction_type=kind,
        amount_cents=amount_cents,
        pending_delta=amount_cents,
        order_id=order_id,
        description=description,
    )


def _debit_locked(
    seller_id: int,
    amount_cents: int,
    *,
    kind: str = TX_DEBIT_PAYOUT,
    order_id: int | None = None,
    payout_request_id: int | None = None,
    description: str | None = None,
) -> WalletTransaction:
    if kind not in DEBIT_KINDS:
        raise InvalidRequest(f"Invalid debit kind: {kind}", details={"allowed": sorted(DEBIT_KINDS)})
    _validate_amount(amount_cents)
    wallet = _lock_wallet(seller_id)
    return _apply(
        wallet,
        transaction_type=kind,
        amount_cents=amount_cents,
        balance_delta=-amount_cents,
        order_id=order_id,
        payout_request_id=payout_request_id,
        description=description,
    )


def _settle_locked(
    seller_id: int,
    amount_cents: int,
    *,
    order_id: int | None = None,
    commission_cents: int = 0,
    description: str | None = None,
) -> WalletTransaction:
    _validate_amount(amount_cents, allow_zero=True)
    _validate_amount(commission_cents, allow_zero=True)
    wallet = _lock_wallet(seller_id)
    return _apply(
        wallet,
        transaction_type=TX_SETTLE,
        amount_cents=amount_cents,
        balance_delta=amount_cents,
        pending_delta=-amount_cents,
        commission_delta=commission_cents,
        order_id=order_id,
        description=description,
    )


def _reverse_locked(transaction_id: int, *, description: str | None = None) -> WalletTransaction:
    original = db.session.get(WalletTransaction, transaction_id)
    if not original:
        raise NotFound("WalletTransaction", transaction_id)
    if original.transaction_type == TX_REVERSAL:
        raise InvalidRequest("A reversal cannot itself be reversed", details={"transaction_id": transaction_id})

    already = db.session.query(WalletTransaction.id).filter_by(reverses_transaction_id=original.id).first()
    if already:
        raise InvalidTransition(
            entity="WalletTransaction",
            entity_id=original.id,
            current="reversed",
            target="reversed",
            reason=f"already reversed by transaction {already.id}",
        )

    wallet = lock_for_update(db.session.query(SellerWallet).filter_by(id=original.wallet_id)).first()
    tx = _apply(
        wallet,
        transaction_type=TX_REVERSAL,
        amount_cents=original.amount_cents,
        balance_delta=-original.balance_delta_cents,
        pending_delta=-original.pending_delta_cents,
        commission_delta=-original.commission_delta_cents,
        order_id=original.order_id,
        payout_request_id=original.payout_request_id,
        reverses_transaction_id=original.id,
        description=description or f"Reversal of transaction {original.id}",
    )
    if original.transaction_type == TX_DEBIT_PAYOUT:
        wallet.withdrawn_cents = wallet.withdrawn_cents - original.amount_cents
    return tx


def _find_order_transaction(order_id: int, transaction_type: str) -> WalletTransaction | None:
    return (
        db.session.query(WalletTransaction)
        .filter_by(order_id=order_id, transaction_type=transaction_type)
        .order_by(WalletTransaction.id.asc())
        .first()
    )


def _is_reversed(transaction_id: int) -> bool:
    return db.session.query(WalletTransaction.id).filter_by(reverses_transaction_id=transaction_id).first() is not None


# =============================================================================
# PUBLIC MUTATORS
# =============================================================================

def credit(
    seller_id: int,
    amount_cents: int,
    kind: str = TX_CREDIT_PENDING,
    order_id: int | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """Add funds to the seller's pending balance."""
    def _op():
        begin_write_transaction()
        tx = _credit_locked(seller_id, amount_cents, kind=kind, order_id=order_id, description=description)
        db.session.commit()
        current_app.logger.info("Wallet credit: seller=%s amount=%s kind=%s", seller_id, amount_cents, kind)
        return tx

    return run_with_retry(_op)


def debit(
    seller_id: int,
    amount_cents: int,
    kind: str = TX_DEBIT_PAYOUT,
    order_id: int | None = None,
    payout_request_id: int | None = None,
    description: str | None = None,
) -> WalletTransaction:
    """
    Remove funds from the available balance.

    Raises:
        InsufficientBalance: if balance would go below zero (nothing written)
    """
    def _op():
        begin_write_transaction()
        tx = _debit_locked(
            seller_id,
            amount_cents,
            kind=kind,
            order_id=order_id,
            payout_request_id=payout_request_id,
            description=description,
        )
        db.session.commit()
        current_app.logger.info("Wallet debit: seller=%s amount=%s kind=%s", seller_id, amount_cents, kind)
        return tx

    return run_with_retry(_op)


def settle(
    seller_id: int,
    amount_cents: int,
    order_id: int | None = None,
    commission_cents: int = 0,
    description: str | None = None,
) -> WalletTransaction:
    """Move funds from pending to available balance and realize commission."""
    def _op():
        begin_write_transaction()
        tx = _settle_locked(
            seller_id,
            amount_cents,
            order_id=order_id,
            commission_cents=commission_cents,
            description=description,
        )
        db.session.commit()
        current_app.logger.info("Wallet settle: seller=%s amount=%s order=%s", seller_id, amount_cents, order_id)
        return tx

    return run_with_retry(_op)


def reverse(transaction_id: int, description: str | None = None) -> WalletTransaction:
    """Append the exact negation of a transaction."""
    def _op():
        begin_write_transaction()
        tx = _reverse_locked(transaction_id, description=description)
        db.session.commit()
        current_app.logger.info("Wallet reversal of transaction %s", transaction_id)
        return tx

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_or_create_wallet(seller_id: int) -> SellerWallet:
    wallet = db.session.query(SellerWallet).filter_by(seller_id=seller_id).first()
    if wallet:
        return wallet

    def _op():
        begin_write_transaction()
        wallet = _lock_wallet(seller_id)
        db.session.commit()
        return wallet

    return run_with_retry(_op)


def get_wallet_summary(seller_id: int) -> dict:
    wallet = get_or_create_wallet(seller_id)
    total_settled = (
        db.session.query(func.coalesce(func.sum(WalletTransaction.balance_delta_cents), 0))
        .filter(
            WalletTransaction.wallet_id == wallet.id,
            WalletTransaction.transaction_type == TX_SETTLE,
        )
        .scalar()
    )
    return {
        "seller_id": seller_id,
        "balance_cents": wallet.balance_cents,
        "pending_balance_cents": wallet.pending_balance_cents,
        "total_balance_cents": wallet.balance_cents + wallet.pending_balance_cents,
        "withdrawn_cents": wallet.withdrawn_cents,
        "total_earned_cents": int(total_settled or 0),
        "total_commission_cents": wallet.total_commission_cents,
    }


def list_transactions(
    seller_id: int,
    *,
    transaction_type: str | None = None,
    order_id: int | None = None,
    limit: int = 50,
) -> list[WalletTransaction]:
    wallet = db.session.query(SellerWallet).filter_by(seller_id=seller_id).first()
    if not wallet:
        return []

    if transaction_type and transaction_type not in VALID_TRANSACTION_TYPES:
        raise InvalidRequest(f"Invalid transaction type: {transaction_type}", details={"allowed": VALID_TRANSACTION_TYPES})

    query = db.session.query(WalletTransaction).filter(WalletTransaction.wallet_id == wallet.id)
    if transaction_type:
        query = query.filter(WalletTransaction.transaction_type == transaction_type)
    if order_id is not None:
        query = query.filter(WalletTransaction.order_id == order_id)
    return query.order_by(WalletTransaction.id.desc()).limit(limit).all()


def verify_wallet(seller_id: int) -> dict:
    """
    Recompute the cached wallet fields from the transaction log.

    Returns a report; drift is {} when the cache matches the log.
    """
    wallet = db.session.query(SellerWallet).filter_by(seller_id=seller_id).first()
    if not wallet:
        raise NotFound("Wallet", seller_id)

    sums = (
        db.session.query(
            func.coalesce(func.sum(WalletTransaction.balance_delta_cents), 0),
            func.coalesce(func.sum(WalletTransaction.pending_delta_cents), 0),
            func.coalesce(func.sum(WalletTransaction.commission_delta_cents), 0),
            func.count(WalletTransaction.id),
        )
        .filter(WalletTransaction.wallet_id == wallet.id)
        .one()
    )
    computed = {
        "balance_cents": int(sums[0]),
        "pending_balance_cents": int(sums[1]),
        "total_commission_cents": int(sums[2]),
    }
    cached = {
        "balance_cents": wallet.balance_cents,
        "pending_balance_cents": wallet.pending_balance_cents,
        "total_commission_cents": wallet.total_commission_cents,
    }
    drift = {
        key: cached[key] - computed[key]
        for key in computed
        if cached[key] != computed[key]
    }
    if drift:
        current_app.logger.warning("Wallet drift for seller %s: %s", seller_id, drift)
    return {
        "seller_id": seller_id,
        "transaction_count": int(sums[3]),
        "cached": cached,
        "computed": computed,
        "drift": drift,
        "ok": not drift,
    }


def verify_all_wallets() -> list[dict]:
    seller_ids = [row.seller_id for row in db.session.query(SellerWallet.seller_id).order_by(SellerWallet.seller_id)]
    return [verify_wallet(seller_id) for seller_id in seller_ids]
