"""
Stock reservation guard tests.

Reserve is one conditional UPDATE: enough stock or nothing changes.
"""

import pytest

from pharmamarket.extensions import db
from pharmamarket.models import Product
from pharmamarket.services import stock_service
from pharmamarket.services.errors import InsufficientStock, InvalidRequest, NotFound


def _reload(product_id):
    db.session.expire_all()
    return db.session.get(Product, product_id)


def test_reserve_decrements(db_session, seller, make_product):
    product = make_product(seller, stock=10)

    stock_service.reserve(product.id, 3)

    assert _reload(product.id).stock_quantity == 7


def test_reserve_last_units_marks_sold_out(db_session, seller, make_product):
    product = make_product(seller, stock=2)

    stock_service.reserve(product.id, 2)

    refreshed = _reload(product.id)
    assert refreshed.stock_quantity == 0
    assert refreshed.status == stock_service.STATUS_SOLD_OUT


def test_insufficient_stock_mutates_nothing(db_session, seller, make_product):
    product = make_product(seller, stock=2, name="Amoxicillin 1g")

    with pytest.raises(InsufficientStock) as exc:
        stock_service.reserve(product.id, 3)

    assert exc.value.available == 2
    assert exc.value.requested == 3
    assert exc.value.product_name == "Amoxicillin 1g"
    assert exc.value.http_status == 409
    refreshed = _reload(product.id)
    assert refreshed.stock_quantity == 2
    assert refreshed.status == stock_service.STATUS_ACTIVE


def test_release_restores_and_reactivates(db_session, seller, make_product):
    product = make_product(seller, stock=1)
    stock_service.reserve(product.id, 1)

    stock_service.release(product.id, 1)

    refreshed = _reload(product.id)
    assert refreshed.stock_quantity == 1
    assert refreshed.status == stock_service.STATUS_ACTIVE


def test_release_keeps_inactive_listing_inactive(db_session, seller, make_product):
    product = make_product(seller, stock=0, status=stock_service.STATUS_INACTIVE)

    stock_service.release(product.id, 4)

    refreshed = _reload(product.id)
    assert refreshed.stock_quantity == 4
    assert refreshed.status == stock_service.STATUS_INACTIVE


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
def test_rejects_non_positive_quantities(db_session, seller, make_product, quantity):
    product = make_product(seller, stock=5)

    with pytest.raises(InvalidRequest):
        stock_service.reserve(product.id, quantity)


def test_unknown_product(db_session):
    with pytest.raises(NotFound):
        stock_service.reserve(987654, 1)
    with pytest.raises(NotFound):
        stock_service.release(987654, 1)


def test_reserve_many_lists_every_short_line(db_session, seller, make_product):
    plenty = make_product(seller, stock=10)
    short_a = make_product(seller, stock=1, name="Short A")
    short_b = make_product(seller, stock=0, name="Short B")

    with pytest.raises(InsufficientStock) as exc:
        stock_service._reserve_many_inner({plenty.id: 2, short_a.id: 2, short_b.id: 1})
    db.session.rollback()

    items = exc.value.details["items"]
    assert [item["product_name"] for item in items] == ["Short A", "Short B"]
    assert _reload(plenty.id).stock_quantity == 10


def test_get_available(db_session, seller, make_product):
    product = make_product(seller, stock=6)

    assert stock_service.get_available(product.id) == 6
