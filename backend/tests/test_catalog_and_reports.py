"""
Listing management and read-only report tests.
"""

import pytest

from pharmamarket.models import DomainEvent, Product
from pharmamarket.services import catalog_service, event_service, order_service, payout_service, reporting_service, wallet_service
from pharmamarket.services.errors import InvalidRequest, NotFound, UnauthorizedAction
from pharmamarket.time_utils import utcnow


# =============================================================================
# CATALOG
# =============================================================================

class TestCatalog:
    def test_create_product(self, db_session, seller, make_category):
        category = make_category()

        product = catalog_service.create_product(
            seller_id=seller.id, sku="PARA-500", name="Paracetamol 500mg", price_cents=4500,
            stock_quantity=20, category_id=category.id, barcode="8690000000001",
        )

        assert product.status == "active"
        assert product.category_id == category.id

    def test_no_stock_lists_as_sold_out(self, db_session, seller):
        product = catalog_service.create_product(seller_id=seller.id, sku="A", name="A", price_cents=100)

        assert product.status == "sold_out"

    def test_duplicate_sku_per_seller(self, db_session, seller, make_user):
        catalog_service.create_product(seller_id=seller.id, sku="DUP", name="A", price_cents=100)

        with pytest.raises(InvalidRequest):
            catalog_service.create_product(seller_id=seller.id, sku="DUP", name="B", price_cents=100)

        other = make_user("seller")
        catalog_service.create_product(seller_id=other.id, sku="DUP", name="C", price_cents=100)
        assert db_session.query(Product).filter_by(sku="DUP").count() == 2

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"sku": "", "name": "A", "price_cents": 1},
            {"sku": "A", "name": "A", "price_cents": -1},
            {"sku": "A", "name": "A", "price_cents": "10"},
            {"sku": "A", "name": "A", "price_cents": 1, "stock_quantity": -3},
        ],
    )
    def test_invalid_input(self, db_session, seller, kwargs):
        with pytest.raises(InvalidRequest):
            catalog_service.create_product(seller_id=seller.id, **kwargs)

    def test_buyers_cannot_list(self, db_session, buyer):
        with pytest.raises(UnauthorizedAction):
            catalog_service.create_product(seller_id=buyer.id, sku="A", name="A", price_cents=1)

    def test_unknown_category(self, db_session, seller):
        with pytest.raises(NotFound):
            catalog_service.create_product(seller_id=seller.id, sku="A", name="A", price_cents=1, category_id=999)

    def test_price_decrease_records_event(self, db_session, seller, make_product):
        product = make_product(seller, price_cents=5000)
        received = []
        event_service.get_event_bus().subscribe(event_service.PRICE_DECREASED, received.append)

        catalog_service.update_product_price(product.id, 4000, actor_user_id=seller.id)

        assert len(received) == 1
        assert received[0]["payload"]["previous_price_cents"] == 5000
        assert received[0]["payload"]["price_cents"] == 4000

    def test_price_increase_records_nothing(self, db_session, seller, make_product):
        product = make_product(seller, price_cents=5000)

        updated = catalog_service.update_product_price(product.id, 6000, actor_user_id=seller.id)

        assert updated.price_cents == 6000
        assert db_session.query(DomainEvent).count() == 0

    def test_same_price_is_a_no_op(self, db_session, seller, make_product):
        product = make_product(seller, price_cents=5000)

        catalog_service.update_product_price(product.id, 5000, actor_user_id=seller.id)

        assert db_session.query(DomainEvent).count() == 0

    def test_existing_lines_keep_their_price(self, db_session, seller, make_product, place_order):
        product = make_product(seller, price_cents=5000)
        order = place_order((product, 1))

        catalog_service.update_product_price(product.id, 3000, actor_user_id=seller.id)

        db_session.expire_all()
        assert order_service.get_order(order.id).lines[0].unit_price_cents == 5000

    def test_only_owner_or_admin_edits_price(self, db_session, seller, admin, make_user, make_product):
        product = make_product(seller, price_cents=5000)
        other_seller = make_user("seller")

        with pytest.raises(UnauthorizedAction):
            catalog_service.update_product_price(product.id, 1, actor_user_id=other_seller.id)

        updated = catalog_service.update_product_price(product.id, 4500, actor_user_id=admin.id)
        assert updated.price_cents == 4500


# =============================================================================
# REPORTS
# =============================================================================

class TestReports:
    def test_wallet_balances(self, db_session, make_user):
        rich = make_user("seller", name="Rich Depo")
        poor = make_user("seller", name="Small Depo")
        wallet_service.credit(rich.id, 9000)
        wallet_service.settle(rich.id, 9000, commission_cents=900)
        wallet_service.credit(poor.id, 100)

        rows = reporting_service.wallet_balances()

        assert [r["seller_name"] for r in rows] == ["Rich Depo", "Small Depo"]
        assert rows[0]["balance_cents"] == 9000
        assert rows[0]["total_commission_cents"] == 900
        assert rows[1]["pending_balance_cents"] == 100
        assert reporting_service.wallet_balances(seller_id=poor.id)[0]["seller_id"] == poor.id

    def test_pending_payouts(self, db_session, seller, admin):
        wallet_service.credit(seller.id, 5000)
        wallet_service.settle(seller.id, 5000)
        first = payout_service.request_payout(seller.id, 1000)
        payout_service.reject_payout(first.id, actor_user_id=admin.id)
        payout_service.request_payout(seller.id, 1500)

        report = reporting_service.pending_payouts()

        assert report["count"] == 1
        assert report["total_amount_cents"] == 1500
        assert report["payouts"][0]["amount_cents"] == 1500

    def test_daily_orders(self, db_session, seller, make_product, place_order):
        product = make_product(seller, price_cents=1000, stock=20)
        kept = place_order((product, 2))
        place_order((product, 3))
        cancelled = place_order((product, 1))
        order_service.confirm_order(kept.id)
        order_service.cancel_order(cancelled.id)

        report = reporting_service.daily_orders(utcnow())

        assert report["order_count"] == 3
        assert report["revenue_cents"] == 5000
        assert report["commission_cents"] == 250
        assert report["by_status"] == {"pending": 1, "confirmed": 1, "cancelled": 1}
        assert report["day_start"].endswith("T00:00:00Z")

    def test_daily_orders_other_day_is_empty(self, db_session, seller, make_product, place_order):
        product = make_product(seller)
        place_order((product, 1))

        report = reporting_service.daily_orders(utcnow().replace(year=2020))

        assert report["order_count"] == 0
        assert report["by_status"] == {}

    def test_daily_orders_by_seller(self, db_session, seller, make_user, make_product, place_order):
        other = make_user("seller")
        place_order((make_product(seller), 1))
        place_order((make_product(other), 1), seller_user=other)

        assert reporting_service.daily_orders(seller_id=other.id)["order_count"] == 1
