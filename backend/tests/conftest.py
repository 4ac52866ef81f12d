"""
Pytest fixtures for PharmaMarket backend tests.

Provides the test application, a wiped database per test, actor/catalog
factories, a fake carrier and the test client.
"""

import pytest

from pharmamarket import create_app
from pharmamarket.config import Config
from pharmamarket.extensions import db
from pharmamarket.models import Category, Product, User
from pharmamarket.services import order_service
from pharmamarket.services.event_service import get_event_bus
from pharmamarket.shipping import FakeCarrier


class MarketplaceTestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    DEFAULT_COMMISSION_RATE_BPS = 500
    DEFAULT_VAT_RATE_BPS = 2000
    DEFAULT_WITHHOLDING_TAX_RATE_BPS = 0
    CARRIER_PROVIDER = "fake"
    ORDER_AUTO_DELIVER_ON_TRACKING = True


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(MarketplaceTestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        get_event_bus().clear()
        app.extensions["carriers"].clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fake_carrier(app, db_session):
    """FakeCarrier registered as the app's "fake" provider."""
    carrier = FakeCarrier()
    app.extensions["carriers"]["fake"] = carrier
    return carrier


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role="buyer", name=None, is_active=True):
        counter["n"] += 1
        user = User(
            name=name or f"{role.title()} {counter['n']}",
            email=f"{role}{counter['n']}@pharmamarket.test",
            role=role,
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def buyer(make_user):
    return make_user("buyer", name="Eczane Buyer")


@pytest.fixture(scope='function')
def seller(make_user):
    return make_user("seller", name="Depo Seller")


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user("admin", name="Platform Admin")


@pytest.fixture(scope='function')
def make_category(db_session):
    counter = {"n": 0}

    def _make(parent=None, commission=None, vat=None, withholding=None, name=None):
        counter["n"] += 1
        category = Category(
            name=name or f"Category {counter['n']}",
            slug=f"category-{counter['n']}",
            parent_id=parent.id if parent is not None else None,
            commission_rate_bps=commission,
            vat_rate_bps=vat,
            withholding_tax_rate_bps=withholding,
        )
        db_session.add(category)
        db_session.commit()
        return category

    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    counter = {"n": 0}

    def _make(seller, price_cents=1000, stock=10, category=None, status=None, name=None):
        counter["n"] += 1
        product = Product(
            seller_id=seller.id,
            category_id=category.id if category is not None else None,
            sku=f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            price_cents=price_cents,
            stock_quantity=stock,
            status=status or ("active" if stock > 0 else "sold_out"),
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def place_order(buyer, seller):
    """Create a pending order for the default buyer/seller."""
    def _place(*lines, buyer_user=None, seller_user=None, shipping_address=None):
        return order_service.create_order(
            buyer_id=(buyer_user or buyer).id,
            seller_id=(seller_user or seller).id,
            lines=[{"product_id": product.id, "quantity": qty} for product, qty in lines],
            shipping_address=shipping_address or {"name": "Eczane Buyer", "city": "Ankara", "address": "Kizilay 1"},
        )

    return _place

