from __future__ import annotations

from ..extensions import db
from pharmamarket.time_utils import to_utc_z


class SellerWallet(db.Model):
    """
    Cached projection of a seller's wallet transactions.

    CRITICAL: balance_cents, pending_balance_cents and total_commission_cents
    are only changed by wallet_service, together with the WalletTransaction
    that explains the change. verify_wallet() recomputes them from the log.
    """
    __tablename__ = "seller_wallets"
    __table_args__ = (
        db.CheckConstraint("balance_cents >= 0", name="ck_seller_wallets_balance_nonneg"),
        db.CheckConstraint("pending_balance_cents >= 0", name="ck_seller_wallets_pending_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    withdrawn_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("User", backref=db.backref("wallet", uselist=False, lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<SellerWallet seller_id={self.seller_id} balance={self.balance_cents} "
            f"pending={self.pending_balance_cents}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "balance_cents": self.balance_cents,
            "pending_balance_cents": self.pending_balance_cents,
            "total_commission_cents": self.total_commission_cents,
            "withdrawn_cents": self.withdrawn_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Append-only wallet ledger entry.

    Each row states exactly how it moved every bucket, so the cached wallet
    fields always equal the column sums:
        balance_cents          == SUM(balance_delta_cents)
        pending_balance_cents  == SUM(pending_delta_cents)
        total_commission_cents == SUM(commission_delta_cents)

    amount_cents is the unsigned business amount (what the user sees).
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_transactions_wallet_created", "wallet_id", "created_at"),
        db.Index("ix_wallet_transactions_order_type", "order_id", "transaction_type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("seller_wallets.id"), nullable=False)

    # credit_pending | settle | debit_payout | reversal
    transaction_type = db.Column(db.String(24), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    balance_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    pending_delta_cents = db.Column(db.Integer, nullable=False, default=0)
    commission_delta_cents = db.Column(db.Integer, nullable=False, default=0)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True)
    payout_request_id = db.Column(db.Integer, db.ForeignKey("payout_requests.id"), nullable=True)
    reverses_transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("wallet_transactions.id"),
        nullable=True,
        unique=True,
    )

    description = db.Column(db.String(255), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    wallet = db.relationship("SellerWallet", backref=db.backref("transactions", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "transaction_type": self.transaction_type,
            "amount_cents": self.amount_cents,
            "balance_delta_cents": self.balance_delta_cents,
            "pending_delta_cents": self.pending_delta_cents,
            "commission_delta_cents": self.commission_delta_cents,
            "order_id": self.order_id,
            "payout_request_id": self.payout_request_id,
            "reverses_transaction_id": self.reverses_transaction_id,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class PayoutRequest(db.Model):
    """
    Seller withdrawal request.

    LIFECYCLE: requested -> approved -> paid, or requested -> rejected.
    amount_cents is fixed at creation; the balance is debited up front
    (debit_transaction_id) and credited back only on rejection.
    """
    __tablename__ = "payout_requests"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payout_requests_amount_positive"),
        db.Index("ix_payout_requests_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    # requested | approved | rejected | paid
    status = db.Column(db.String(16), nullable=False, default="requested", index=True)

    notes = db.Column(db.Text, nullable=True)
    admin_notes = db.Column(db.Text, nullable=True)
    transaction_reference = db.Column(db.String(128), nullable=True)

    # Plain integer (no FK) to avoid a payout_requests <-> wallet_transactions cycle.
    debit_transaction_id = db.Column(db.Integer, nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    seller = db.relationship("User", foreign_keys=[seller_id])
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<PayoutRequest id={self.id} seller_id={self.seller_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "amount_cents": self.amount_cents,
            "status": self.status,
            "notes": self.notes,
            "admin_notes": self.admin_notes,
            "transaction_reference": self.transaction_reference,
            "debit_transaction_id": self.debit_transaction_id,
            "requested_at": to_utc_z(self.requested_at),
            "processed_at": to_utc_z(self.processed_at),
            "processed_by_user_id": self.processed_by_user_id,
        }
