"""
Flask CLI command tests (app.test_cli_runner).
"""

from pharmamarket.models import Category, SellerWallet, User
from pharmamarket.services import order_service, payout_service, wallet_service
from pharmamarket.shipping import ShipmentStatus


def test_system_init_is_idempotent(app, db_session):
    runner = app.test_cli_runner()

    first = runner.invoke(args=["system", "init", "--admin-email", "ops@pharmamarket.test"])
    second = runner.invoke(args=["system", "init", "--admin-email", "ops@pharmamarket.test"])

    assert first.exit_code == 0
    assert "Created admin" in first.output
    assert "Using existing admin" in second.output
    assert db_session.query(User).filter_by(email="ops@pharmamarket.test").count() == 1


def test_users_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    created = runner.invoke(args=["users", "create", "--name", "Eczane A", "--email", "a@ph.test", "--role", "buyer"])
    duplicate = runner.invoke(args=["users", "create", "--name", "Eczane A", "--email", "a@ph.test", "--role", "buyer"])
    listed = runner.invoke(args=["users", "list", "--role", "buyer"])

    assert created.exit_code == 0
    assert duplicate.exit_code != 0
    assert "already exists" in duplicate.output
    assert "a@ph.test" in listed.output


def test_categories_propagate(app, db_session, make_category):
    root = make_category(commission=900)
    child = make_category(parent=root)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["categories", "propagate", str(root.id)])
    missing = runner.invoke(args=["categories", "propagate", "9999"])

    assert "Updated 1 child categories" in result.output
    db_session.expire_all()
    assert db_session.get(Category, child.id).commission_rate_bps == 900
    assert missing.exit_code != 0


def test_wallets_verify_exit_code(app, db_session, seller):
    wallet_service.credit(seller.id, 500)
    runner = app.test_cli_runner()

    clean = runner.invoke(args=["wallets", "verify"])
    assert clean.exit_code == 0
    assert f"PASS seller {seller.id}" in clean.output

    wallet = db_session.query(SellerWallet).filter_by(seller_id=seller.id).one()
    wallet.pending_balance_cents = 1
    db_session.commit()

    drifted = runner.invoke(args=["wallets", "verify", "--seller-id", str(seller.id)])
    assert drifted.exit_code == 1
    assert "FAIL" in drifted.output


def test_orders_sync_tracking(app, db_session, fake_carrier, seller, make_product, place_order):
    product = make_product(seller)
    order = place_order((product, 1))
    order_service.confirm_order(order.id)
    order_service.ship_order(order.id)
    fake_carrier.set_status(f"FAKE-{order.order_number}", ShipmentStatus.DELIVERED)
    runner = app.test_cli_runner()

    result = runner.invoke(args=["orders", "sync-tracking"])

    assert result.exit_code == 0
    assert f"PASS order {order.id}: status 4 (changed, delivered)" in result.output
    assert order_service.get_order(order.id).status == order_service.ORDER_DELIVERED


def test_payouts_pending(app, db_session, seller):
    runner = app.test_cli_runner()
    assert "No open payout requests." in runner.invoke(args=["payouts", "pending"]).output

    wallet_service.credit(seller.id, 800)
    wallet_service.settle(seller.id, 800)
    payout = payout_service.request_payout(seller.id, 800)

    result = runner.invoke(args=["payouts", "pending"])

    assert str(payout.id) in result.output
    assert "requested" in result.output
