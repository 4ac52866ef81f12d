# Overview: Service-layer operations for product stock; atomic reserve and release.

"""
Stock Reservation Guard

Stock invariants:
- Product.stock_quantity is never negative.
- reserve() is one conditional UPDATE (... WHERE stock_quantity >= :qty); the
  database decides who gets the last unit, so there is no read-then-write gap.
- A failed reserve() mutates nothing.
- release() is additive; callers (order_service) release each line at most once.
- Reaching 0 flips an active listing to sold_out; a release flips it back.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, case, update

from ..extensions import db
from ..models import Product
from .concurrency import begin_write_transaction, run_with_retry
from .errors import InsufficientStock, InvalidRequest, NotFound

STATUS_ACTIVE = "active"
STATUS_SOLD_OUT = "sold_out"
STATUS_INACTIVE = "inactive"


def _validate_quantity(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidRequest("quantity must be a positive integer", details={"quantity": quantity})


def _try_reserve(product_id: int, quantity: int) -> bool:
    """Conditional decrement; True if the row had enough stock."""
    stmt = (
        update(Product)
        .where(Product.id == product_id, Product.stock_quantity >= quantity)
        .values(
            stock_quantity=Product.stock_quantity - quantity,
            # SET expressions see the pre-update row
            status=case(
                (and_(Product.stock_quantity == quantity, Product.status == STATUS_ACTIVE), STATUS_SOLD_OUT),
                else_=Product.status,
            ),
        )
        .execution_options(synchronize_session="fetch")
    )
    return db.session.execute(stmt).rowcount == 1


def _insufficient(product_id: int, requested: int) -> InsufficientStock:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFound("Product", product_id)
    return InsufficientStock(
        product_id=product.id,
        product_name=product.name,
        available=product.stock_quantity,
        requested=requested,
    )


def _reserve_inner(product_id: int, quantity: int) -> None:
    """Reserve without commit; raises InsufficientStock if the UPDATE matched nothing."""
    _validate_quantity(quantity)
    if not _try_reserve(product_id, quantity):
        raise _insufficient(product_id, quantity)


def _reserve_many_inner(quantities: dict[int, int]) -> None:
    """
    All-or-nothing reservation of several products (no commit).

    Every product is attempted so the error lists every offending line; the
    caller's rollback undoes the reservations that did succeed.
    """
    failures: list[InsufficientStock] = []
    for product_id, quantity in quantities.items():
        _validate_quantity(quantity)
        if not _try_reserve(product_id, quantity):
            failures.append(_insufficient(product_id, quantity))

    if failures:
        first = failures[0]
        raise InsufficientStock(
            product_id=first.product_id,
            product_name=first.product_name,
            available=first.available,
            requested=first.requested,
            items=[
                {
                    "product_id": f.product_id,
                    "product_name": f.product_name,
                    "available": f.available,
                    "requested": f.requested,
                }
                for f in failures
            ],
        )


def _release_inner(product_id: int, quantity: int) -> None:
    _validate_quantity(quantity)
    stmt = (
        update(Product)
        .where(Product.id == product_id)
        .values(
            stock_quantity=Product.stock_quantity + quantity,
            status=case(
                (Product.status == STATUS_SOLD_OUT, STATUS_ACTIVE),
                else_=Product.status,
            ),
        )
        .execution_options(synchronize_session="fetch")
    )
    if db.session.execute(stmt).rowcount != 1:
        raise NotFound("Product", product_id)


def reserve(product_id: int, quantity: int, *, commit: bool = True) -> Product:
    """Atomically take quantity units of stock."""
    def _op():
        if commit:
            begin_write_transaction()
        _reserve_inner(product_id, quantity)
        product = db.session.get(Product, product_id)
        if commit:
            db.session.commit()
            current_app.logger.info("Reserved %s of product %s", quantity, product_id)
        else:
            db.session.flush()
        return product

    if not commit:
        return _op()
    return run_with_retry(_op)


def release(product_id: int, quantity: int, *, commit: bool = True) -> Product:
    """Give quantity units back to the product."""
    def _op():
        if commit:
            begin_write_transaction()
        _release_inner(product_id, quantity)
        product = db.session.get(Product, product_id)
        if commit:
            db.session.commit()
            current_app.logger.info("Released %s of product %s", quantity, product_id)
        else:
            db.session.flush()
        return product

    if not commit:
        return _op()
    return run_with_retry(_op)


def get_available(product_id: int) -> int:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFound("Product", product_id)
    return product.stock_quantity
