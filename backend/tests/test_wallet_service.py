"""
Wallet ledger tests.

The cached wallet fields must always equal the sums of the transaction log,
and no bucket may go below zero.
"""

import pytest
from sqlalchemy import false

from pharmamarket.extensions import db
from pharmamarket.models import SellerWallet, WalletTransaction
from pharmamarket.services import wallet_service
from pharmamarket.services.errors import InsufficientBalance, InvalidRequest, InvalidTransition, NotFound


def _wallet(seller_id):
    db.session.expire_all()
    return db.session.query(SellerWallet).filter_by(seller_id=seller_id).one()


def _assert_consistent(seller_id):
    report = wallet_service.verify_wallet(seller_id)
    assert report["ok"], report["drift"]


class TestMutators:
    def test_credit_goes_to_pending(self, db_session, seller):
        tx = wallet_service.credit(seller.id, 9000)

        wallet = _wallet(seller.id)
        assert tx.transaction_type == wallet_service.TX_CREDIT_PENDING
        assert wallet.pending_balance_cents == 9000
        assert wallet.balance_cents == 0
        _assert_consistent(seller.id)

    def test_settle_moves_pending_and_realizes_commission(self, db_session, seller):
        wallet_service.credit(seller.id, 9000)

        wallet_service.settle(seller.id, 9000, commission_cents=1000)

        wallet = _wallet(seller.id)
        assert wallet.pending_balance_cents == 0
        assert wallet.balance_cents == 9000
        assert wallet.total_commission_cents == 1000
        _assert_consistent(seller.id)

    def test_settle_more_than_pending_is_rejected(self, db_session, seller):
        wallet_service.credit(seller.id, 100)

        with pytest.raises(InsufficientBalance) as exc:
            wallet_service.settle(seller.id, 101)

        assert exc.value.details["bucket"] == "pending_balance"
        assert _wallet(seller.id).pending_balance_cents == 100

    def test_debit_requires_available_balance(self, db_session, seller):
        wallet_service.credit(seller.id, 5000)

        # pending funds are not withdrawable
        with pytest.raises(InsufficientBalance) as exc:
            wallet_service.debit(seller.id, 1)

        assert exc.value.available_cents == 0
        assert exc.value.requested_cents == 1
        assert db_session.query(WalletTransaction).count() == 1

    def test_debit_tracks_withdrawn(self, db_session, seller):
        wallet_service.credit(seller.id, 5000)
        wallet_service.settle(seller.id, 5000)

        wallet_service.debit(seller.id, 2000)

        wallet = _wallet(seller.id)
        assert wallet.balance_cents == 3000
        assert wallet.withdrawn_cents == 2000
        _assert_consistent(seller.id)

    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    def test_invalid_amounts(self, db_session, seller, amount):
        with pytest.raises(InvalidRequest):
            wallet_service.credit(seller.id, amount)

    def test_unknown_kinds(self, db_session, seller):
        with pytest.raises(InvalidRequest):
            wallet_service.credit(seller.id, 10, kind="bonus")
        with pytest.raises(InvalidRequest):
            wallet_service.debit(seller.id, 10, kind="fee")

    def test_only_sellers_have_wallets(self, db_session, buyer):
        with pytest.raises(InvalidRequest):
            wallet_service.credit(buyer.id, 100)

    def test_unknown_user(self, db_session):
        with pytest.raises(NotFound):
            wallet_service.credit(123456, 100)


class TestWalletCreation:
    def test_first_write_reuses_wallet_created_concurrently(self, db_session, monkeypatch, seller):
        wallet_service.get_or_create_wallet(seller.id)
        real_query = wallet_service._wallet_query
        lookups = []

        def _first_lookup_misses(seller_id):
            # the first SELECT runs before the other writer commits its wallet
            lookups.append(seller_id)
            query = real_query(seller_id)
            return query.filter(false()) if len(lookups) == 1 else query

        monkeypatch.setattr(wallet_service, "_wallet_query", _first_lookup_misses)

        wallet_service.credit(seller.id, 700)

        assert len(lookups) == 2
        assert db_session.query(SellerWallet).filter_by(seller_id=seller.id).count() == 1
        assert _wallet(seller.id).pending_balance_cents == 700
        _assert_consistent(seller.id)

    def test_wallet_created_on_first_write(self, db_session, seller):
        assert db_session.query(SellerWallet).count() == 0

        wallet_service.credit(seller.id, 100)

        assert _wallet(seller.id).pending_balance_cents == 100


class TestReversal:
    def test_reverse_credit(self, db_session, seller):
        tx = wallet_service.credit(seller.id, 700)

        reversal = wallet_service.reverse(tx.id)

        assert reversal.reverses_transaction_id == tx.id
        assert reversal.pending_delta_cents == -700
        assert _wallet(seller.id).pending_balance_cents == 0
        _assert_consistent(seller.id)

    def test_reverse_payout_debit_restores_withdrawn(self, db_session, seller):
        wallet_service.credit(seller.id, 1000)
        wallet_service.settle(seller.id, 1000)
        debit = wallet_service.debit(seller.id, 400)

        wallet_service.reverse(debit.id)

        wallet = _wallet(seller.id)
        assert wallet.balance_cents == 1000
        assert wallet.withdrawn_cents == 0
        _assert_consistent(seller.id)

    def test_cannot_reverse_twice(self, db_session, seller):
        tx = wallet_service.credit(seller.id, 700)
        wallet_service.reverse(tx.id)

        with pytest.raises(InvalidTransition):
            wallet_service.reverse(tx.id)

    def test_cannot_reverse_a_reversal(self, db_session, seller):
        tx = wallet_service.credit(seller.id, 700)
        reversal = wallet_service.reverse(tx.id)

        with pytest.raises(InvalidRequest):
            wallet_service.reverse(reversal.id)

    def test_reversal_cannot_overdraw(self, db_session, seller):
        credit = wallet_service.credit(seller.id, 700)
        wallet_service.settle(seller.id, 700)

        # pending already settled; reversing the credit would push pending negative
        with pytest.raises(InsufficientBalance):
            wallet_service.reverse(credit.id)


class TestQueries:
    def test_summary(self, db_session, seller):
        wallet_service.credit(seller.id, 1000)
        wallet_service.settle(seller.id, 600, commission_cents=60)
        wallet_service.credit(seller.id, 250)

        summary = wallet_service.get_wallet_summary(seller.id)

        assert summary["balance_cents"] == 600
        assert summary["pending_balance_cents"] == 650
        assert summary["total_balance_cents"] == 1250
        assert summary["total_earned_cents"] == 600
        assert summary["total_commission_cents"] == 60

    def test_summary_creates_empty_wallet(self, db_session, seller):
        summary = wallet_service.get_wallet_summary(seller.id)

        assert summary["balance_cents"] == 0
        assert db_session.query(SellerWallet).filter_by(seller_id=seller.id).count() == 1

    def test_list_transactions_filters(self, db_session, seller):
        wallet_service.credit(seller.id, 1000, order_id=None)
        wallet_service.settle(seller.id, 1000)

        settles = wallet_service.list_transactions(seller.id, transaction_type=wallet_service.TX_SETTLE)

        assert [t.transaction_type for t in settles] == [wallet_service.TX_SETTLE]
        with pytest.raises(InvalidRequest):
            wallet_service.list_transactions(seller.id, transaction_type="bogus")

    def test_verify_reports_drift(self, db_session, seller):
        wallet_service.credit(seller.id, 1000)
        wallet = _wallet(seller.id)
        wallet.pending_balance_cents = 1500
        db_session.commit()

        report = wallet_service.verify_wallet(seller.id)

        assert report["ok"] is False
        assert report["drift"] == {"pending_balance_cents": 500}
        assert report["computed"]["pending_balance_cents"] == 1000

    def test_verify_all(self, db_session, make_user):
        first = make_user("seller")
        second = make_user("seller")
        wallet_service.credit(first.id, 10)
        wallet_service.credit(second.id, 20)

        reports = wallet_service.verify_all_wallets()

        assert [r["seller_id"] for r in reports] == [first.id, second.id]
        assert all(r["ok"] for r in reports)
