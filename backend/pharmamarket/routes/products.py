# Overview: Flask API routes for seller listings; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..extensions import db
from ..models import Product
from ..services import catalog_service, commission_service
from ..services.access_service import ROLE_ADMIN, ROLE_SELLER
from ..services.errors import MarketplaceError, NotFound


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.post("")
@require_actor
@require_role(ROLE_SELLER)
def create_product_route():
    """
    Request body:
    {
        "sku": "PARA-500",
        "name": "Paracetamol 500mg",
        "price_cents": 4500,
        "stock_quantity": 100,
        "category_id": 3,
        "barcode": "8690000000000"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        product = catalog_service.create_product(
            seller_id=g.current_user.id,
            sku=data.get("sku"),
            name=data.get("name"),
            price_cents=data.get("price_cents"),
            stock_quantity=data.get("stock_quantity", 0),
            category_id=data.get("category_id"),
            barcode=data.get("barcode"),
        )
        return jsonify({"product": product.to_dict()}), 201
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    """Listing with the rates an order placed now would snapshot."""
    try:
        product = db.session.get(Product, product_id)
        if not product:
            raise NotFound("Product", product_id)
        rates = commission_service.resolve_for_product(product_id)
        return jsonify({"product": product.to_dict(), "rates": rates.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)


@products_bp.patch("/<int:product_id>/price")
@require_actor
@require_role(ROLE_SELLER, ROLE_ADMIN)
def update_price_route(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        product = catalog_service.update_product_price(
            product_id,
            data.get("price_cents"),
            actor_user_id=g.current_user.id,
        )
        return jsonify({"product": product.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product price")
        return jsonify({"error": "Internal server error"}), 500
