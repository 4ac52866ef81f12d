from __future__ import annotations

from ..extensions import db
from pharmamarket.time_utils import to_utc_z


class Category(db.Model):
    """
    Product category node.

    Categories form a tree through parent_id. Each of the three rates is
    optional: NULL or 0 means "inherit from the nearest ancestor that sets
    it", falling back to the platform default.

    Rates are basis points (1000 = 10%).
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.Index("ix_categories_parent", "parent_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True)

    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(255), nullable=False, unique=True)
    description = db.Column(db.Text, nullable=True)

    commission_rate_bps = db.Column(db.Integer, nullable=True)
    vat_rate_bps = db.Column(db.Integer, nullable=True)
    withholding_tax_rate_bps = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r} parent_id={self.parent_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "commission_rate_bps": self.commission_rate_bps,
            "vat_rate_bps": self.vat_rate_bps,
            "withholding_tax_rate_bps": self.withholding_tax_rate_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Product(db.Model):
    """
    A seller's listing.

    STOCK: stock_quantity is the authoritative available quantity. It is only
    changed through stock_service.reserve/release, which use a single
    conditional UPDATE so two orders cannot both take the last unit.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("seller_id", "sku", name="uq_products_seller_sku"),
        db.Index("ix_products_seller_status", "seller_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, index=True)

    price_cents = db.Column(db.Integer, nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)

    # active | sold_out | inactive
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    seller = db.relationship("User", backref=db.backref("products", lazy=True))
    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} seller_id={self.seller_id} stock={self.stock_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "seller_id": self.seller_id,
            "category_id": self.category_id,
            "sku": self.sku,
            "name": self.name,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
