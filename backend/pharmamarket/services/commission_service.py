# Overview: Service-layer operations for category commission/tax rates; resolution and propagation.

"""
Category Commission Resolver

WHY: Commission, VAT and withholding tax are configured on the category tree.
A subcategory inherits whatever it does not set itself, so admins only edit
the rates that differ.

RESOLUTION RULES:
- Each of the three rates is resolved independently
- Walk self -> parent -> grandparent ...; the first non-NULL, non-zero rate wins
- No ancestor sets it: platform default from MarketplaceSettings
- Cycles or dangling parent_id values raise InvalidCategoryTree (never loop)

PROPAGATION:
- Single level: only direct children are rewritten
- One UPDATE statement in one transaction; all children or none
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from flask import current_app

from ..extensions import db
from ..models import Category, Product
from pharmamarket.config import get_settings
from pharmamarket.time_utils import utcnow
from .access_service import ROLE_ADMIN, require_role
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .errors import InvalidCategoryTree, InvalidRequest, NotFound
from . import event_service

RATE_FIELDS = ("commission_rate_bps", "vat_rate_bps", "withholding_tax_rate_bps")

MAX_RATE_BPS = 10000


@dataclass(frozen=True)
class RateSet:
    commission_rate_bps: int = 0
    vat_rate_bps: int = 0
    withholding_tax_rate_bps: int = 0

    @classmethod
    def platform_defaults(cls, settings=None) -> "RateSet":
        settings = settings or get_settings()
        return cls(
            commission_rate_bps=settings.default_commission_rate_bps,
            vat_rate_bps=settings.default_vat_rate_bps,
            withholding_tax_rate_bps=settings.default_withholding_tax_rate_bps,
        )

    def to_dict(self) -> dict:
        return {
            "commission_rate_bps": self.commission_rate_bps,
            "vat_rate_bps": self.vat_rate_bps,
            "withholding_tax_rate_bps": self.withholding_tax_rate_bps,
        }


@dataclass(frozen=True)
class CategoryNode:
    id: int
    parent_id: Optional[int]
    commission_rate_bps: Optional[int] = None
    vat_rate_bps: Optional[int] = None
    withholding_tax_rate_bps: Optional[int] = None


class CategoryTree:
    """
    Arena of category nodes keyed by id, built from one snapshot.

    Resolution against a tree is pure: same snapshot, same answer.
    """

    def __init__(self, nodes: dict[int, CategoryNode]):
        self.nodes = nodes

    @classmethod
    def load(cls) -> "CategoryTree":
        rows = db.session.query(
            Category.id,
            Category.parent_id,
            Category.commission_rate_bps,
            Category.vat_rate_bps,
            Category.withholding_tax_rate_bps,
        ).all()
        return cls({row.id: CategoryNode(*row) for row in rows})

    def ancestry(self, category_id: int) -> list[int]:
        """Ids from category_id up to its root (inclusive)."""
        path: list[int] = []
        visited: set[int] = set()
        current = category_id
        while current is not None:
            if current in visited:
                raise InvalidCategoryTree(
                    f"Category {category_id} has a cyclic ancestry",
                    category_id=category_id,
                    path=path + [current],
                )
            node = self.nodes.get(current)
            if node is None:
                if current == category_id:
                    raise NotFound("Category", category_id)
                raise InvalidCategoryTree(
                    f"Category {category_id} references missing ancestor {current}",
                    category_id=category_id,
                    path=path + [current],
                )
            visited.add(current)
            path.append(current)
            current = node.parent_id
        return path

    def resolve(self, category_id: int | None, defaults: RateSet) -> RateSet:
        if category_id is None:
            return defaults

        resolved = {}
        for node_id in self.ancestry(category_id):
            node = self.nodes[node_id]
            for field_name in RATE_FIELDS:
                if field_name in resolved:
                    continue
                value = getattr(node, field_name)
                if value:  # NULL and 0 both mean inherit
                    resolved[field_name] = value
            if len(resolved) == len(RATE_FIELDS):
                break

        for field_name in RATE_FIELDS:
            resolved.setdefault(field_name, getattr(defaults, field_name))
        return RateSet(**resolved)


def resolve(category_id: int | None, defaults: RateSet | None = None, tree: CategoryTree | None = None) -> RateSet:
    """Effective rates for a category (see module docstring for the rules)."""
    defaults = defaults or RateSet.platform_defaults()
    tree = tree or CategoryTree.load()
    return tree.resolve(category_id, defaults)


def resolve_for_product(product_id: int, defaults: RateSet | None = None) -> RateSet:
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFound("Product", product_id)
    return resolve(product.category_id, defaults=defaults)


def apply_rate(amount_cents: int, rate_bps: int) -> int:
    """Rate share of an amount in cents, rounded half-up."""
    return (amount_cents * rate_bps + 5000) // 10000


def _validate_rates(rates: dict) -> dict:
    if not isinstance(rates, dict) or not rates:
        raise InvalidRequest("At least one rate is required", details={"allowed": list(RATE_FIELDS)})

    unknown = sorted(set(rates) - set(RATE_FIELDS))
    if unknown:
        raise InvalidRequest("Unknown rate fields", details={"fields": unknown, "allowed": list(RATE_FIELDS)})

    cleaned = {}
    for field_name, value in rates.items():
        if value is None:
            cleaned[field_name] = None
            continue
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidRequest(f"{field_name} must be an integer (basis points)", details={"field": field_name})
        if value < 0 or value > MAX_RATE_BPS:
            raise InvalidRequest(
                f"{field_name} must be between 0 and {MAX_RATE_BPS}",
                details={"field": field_name, "value": value},
            )
        cleaned[field_name] = value
    return cleaned


def _own_rates(category: Category) -> dict:
    return {
        field_name: getattr(category, field_name)
        for field_name in RATE_FIELDS
        if getattr(category, field_name) is not None
    }


def _propagate_locked(category: Category, rates: dict) -> int:
    if not rates:
        return 0
    values = dict(rates)
    values["updated_at"] = utcnow()
    return (
        db.session.query(Category)
        .filter(Category.parent_id == category.id)
        .update(values, synchronize_session=False)
    )


def propagate(category_id: int, rates: dict | None = None) -> int:
    """
    Copy rates onto the direct children of a category.

    rates defaults to the category's own explicitly set rates.
    Returns the number of children updated.
    """
    if rates is not None:
        rates = _validate_rates(rates)

    def _op():
        begin_write_transaction()
        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if not category:
            raise NotFound("Category", category_id)

        values = rates if rates is not None else _own_rates(category)
        affected = _propagate_locked(category, values)
        db.session.commit()
        current_app.logger.info("Propagated rates of category %s to %s children", category_id, affected)
        return affected

    return run_with_retry(_op)


def update_category_rates(
    category_id: int,
    rates: dict,
    *,
    propagate: bool = False,
    actor_user_id: int | None = None,
) -> tuple[Category, int]:
    """
    Admin/ERP edit of a category's rates.

    CRITICAL: the edit and (when opted in) the propagation commit together.
    Historical order lines keep their snapshot; nothing here touches them.

    Returns:
        (category, affected_children)
    """
    rates = _validate_rates(rates)

    def _op():
        begin_write_transaction()
        require_role(actor_user_id, ROLE_ADMIN, action="update_category_rates", resource=f"category:{category_id}")

        category = lock_for_update(db.session.query(Category).filter_by(id=category_id)).first()
        if not category:
            raise NotFound("Category", category_id)

        previous = {field_name: getattr(category, field_name) for field_name in RATE_FIELDS}
        for field_name, value in rates.items():
            setattr(category, field_name, value)
        category.updated_at = utcnow()

        affected = _propagate_locked(category, rates) if propagate else 0

        event_service.record_event(
            event_type=event_service.CATEGORY_RATES_CHANGED,
            entity_type="category",
            entity_id=category.id,
            actor_user_id=actor_user_id,
            payload={
                "previous": previous,
                "rates": rates,
                "propagated": propagate,
                "affected_children": affected,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Category %s rates updated by user %s (propagate=%s, affected=%s)",
            category_id, actor_user_id, propagate, affected,
        )
        return category, affected

    return run_with_retry(_op)


def create_category(
    *,
    name: str,
    slug: str,
    parent_id: int | None = None,
    rates: dict | None = None,
    description: str | None = None,
) -> Category:
    """Create a category node; a missing parent is rejected."""
    if not name or not slug:
        raise InvalidRequest("name and slug are required")
    rates = _validate_rates(rates) if rates else {}

    def _op():
        begin_write_transaction()
        if parent_id is not None and not db.session.get(Category, parent_id):
            raise NotFound("Category", parent_id)
        if db.session.query(Category).filter_by(slug=slug).first():
            raise InvalidRequest(f"Category slug {slug!r} already exists", details={"slug": slug})

        category = Category(name=name, slug=slug, parent_id=parent_id, description=description, **rates)
        db.session.add(category)
        db.session.commit()
        return category

    return run_with_retry(_op)
