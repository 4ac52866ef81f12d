# Overview: Service-layer operations for seller listings; creation and price edits.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Category, Product
from pharmamarket.time_utils import utcnow
from . import event_service
from .access_service import ROLE_ADMIN, ROLE_SELLER, require_role
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InvalidRequest, NotFound, UnauthorizedAction
from .stock_service import STATUS_ACTIVE, STATUS_SOLD_OUT


def _validate_price(price_cents) -> None:
    if isinstance(price_cents, bool) or not isinstance(price_cents, int) or price_cents < 0:
        raise InvalidRequest("price_cents must be a non-negative integer", details={"price_cents": price_cents})


def create_product(
    *,
    seller_id: int,
    sku: str,
    name: str,
    price_cents: int,
    stock_quantity: int = 0,
    category_id: int | None = None,
    barcode: str | None = None,
) -> Product:
    if not sku or not name:
        raise InvalidRequest("sku and name are required")
    _validate_price(price_cents)
    if isinstance(stock_quantity, bool) or not isinstance(stock_quantity, int) or stock_quantity < 0:
        raise InvalidRequest("stock_quantity must be a non-negative integer", details={"stock_quantity": stock_quantity})

    def _op():
        begin_write_transaction()
        require_role(seller_id, ROLE_SELLER, action="create_product")
        if category_id is not None and not db.session.get(Category, category_id):
            raise NotFound("Category", category_id)
        if db.session.query(Product.id).filter_by(seller_id=seller_id, sku=sku).first():
            raise InvalidRequest(f"SKU {sku!r} already listed by seller {seller_id}", details={"sku": sku})

        product = Product(
            seller_id=seller_id,
            category_id=category_id,
            sku=sku,
            name=name,
            barcode=barcode,
            price_cents=price_cents,
            stock_quantity=stock_quantity,
            status=STATUS_ACTIVE if stock_quantity > 0 else STATUS_SOLD_OUT,
        )
        db.session.add(product)
        db.session.commit()
        current_app.logger.info("Product %s listed by seller %s", product.id, seller_id)
        return product

    return run_with_retry(_op)


def update_product_price(product_id: int, price_cents: int, *, actor_user_id: int | None = None) -> Product:
    """
    Change a listing's price.

    A decrease records a PriceDecreased event (watchers of the product are
    notified by subscribers after commit). Existing order lines keep their
    unit price.
    """
    _validate_price(price_cents)

    def _op():
        begin_write_transaction()
        product = lock_for_update(db.session.query(Product).filter_by(id=product_id)).first()
        if not product:
            raise NotFound("Product", product_id)

        actor = require_role(actor_user_id, {ROLE_SELLER, ROLE_ADMIN}, action="update_product_price")
        if actor.role == ROLE_SELLER and actor.id != product.seller_id:
            raise UnauthorizedAction(
                actor_user_id=actor_user_id,
                action="update_product_price",
                resource=f"product:{product_id}",
            )

        previous = product.price_cents
        if previous == price_cents:
            db.session.rollback()
            return product

        product.price_cents = price_cents
        product.updated_at = utcnow()
        if price_cents < previous:
            event_service.record_event(
                event_type=event_service.PRICE_DECREASED,
                entity_type="product",
                entity_id=product.id,
                actor_user_id=actor_user_id,
                payload={
                    "seller_id": product.seller_id,
                    "previous_price_cents": previous,
                    "price_cents": price_cents,
                },
            )
        db.session.commit()
        current_app.logger.info("Product %s price %s -> %s", product.id, previous, price_cents)
        return product

    return run_with_retry(_op)
