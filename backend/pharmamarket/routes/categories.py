# Overview: Flask API routes for category rates; parses input and returns JSON responses.

# backend/pharmamarket/routes/categories.py
"""
Category Rate Routes

PATCH /api/categories/<id> is the inbound edit used by admins and the ERP
sync. With "propagate": true the new rates are copied onto the direct
children in the same transaction and the response reports affected_children.
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import error_response, require_actor, require_role
from ..extensions import db
from ..models import Category
from ..services import commission_service
from ..services.access_service import ROLE_ADMIN
from ..services.errors import InvalidRequest, MarketplaceError, NotFound


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


def _rates_from(data: dict) -> dict:
    return {key: data[key] for key in commission_service.RATE_FIELDS if key in data}


@categories_bp.get("")
def list_categories_route():
    categories = db.session.query(Category).order_by(Category.id.asc()).all()
    return jsonify({"categories": [c.to_dict() for c in categories]}), 200


@categories_bp.get("/<int:category_id>")
def get_category_route(category_id: int):
    """Category with its own rates and the effective (inherited) rates."""
    try:
        category = db.session.get(Category, category_id)
        if not category:
            raise NotFound("Category", category_id)
        effective = commission_service.resolve(category_id)
        return jsonify({"category": category.to_dict(), "effective_rates": effective.to_dict()}), 200
    except MarketplaceError as e:
        return error_response(e)


@categories_bp.post("")
@require_actor
@require_role(ROLE_ADMIN)
def create_category_route():
    try:
        data = request.get_json(silent=True) or {}
        category = commission_service.create_category(
            name=data.get("name"),
            slug=data.get("slug"),
            parent_id=data.get("parent_id"),
            rates=_rates_from(data) or None,
            description=data.get("description"),
        )
        return jsonify({"category": category.to_dict()}), 201
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create category")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.patch("/<int:category_id>")
@require_actor
@require_role(ROLE_ADMIN)
def update_category_route(category_id: int):
    """
    Request body:
    {
        "commission_rate_bps": 1200,
        "vat_rate_bps": 1000,
        "withholding_tax_rate_bps": null,
        "propagate": true
    }

    Returns:
        200: {"category": {...}, "affected_children": 3}
    """
    try:
        data = request.get_json(silent=True) or {}
        propagate = data.get("propagate", False)
        if not isinstance(propagate, bool):
            raise InvalidRequest("propagate must be a boolean")

        category, affected = commission_service.update_category_rates(
            category_id,
            _rates_from(data),
            propagate=propagate,
            actor_user_id=g.current_user.id,
        )
        return jsonify({"category": category.to_dict(), "affected_children": affected}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update category rates")
        return jsonify({"error": "Internal server error"}), 500


@categories_bp.post("/<int:category_id>/propagate")
@require_actor
@require_role(ROLE_ADMIN)
def propagate_category_route(category_id: int):
    """Copy the category's own rates onto its direct children."""
    try:
        affected = commission_service.propagate(category_id)
        return jsonify({"category_id": category_id, "affected_children": affected}), 200
    except MarketplaceError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to propagate category rates")
        return jsonify({"error": "Internal server error"}), 500
