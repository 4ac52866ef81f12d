from __future__ import annotations

from ..extensions import db
from pharmamarket.time_utils import to_utc_z


class Order(db.Model):
    """
    Order aggregate root (one buyer, one seller).

    WHY: status and shipping_status are tracked separately. status is the
    business lifecycle governed by order_service; shipping_status follows the
    carrier (unshipped -> shipped -> delivered) and never moves backwards.

    cancellation_pending marks a shipped order whose carrier cancellation
    could not be confirmed; status stays "shipped" until it is reconciled.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_seller_status", "seller_id", "status"),
        db.Index("ix_orders_buyer_created", "buyer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(24), nullable=False, default="pending", index=True)
    shipping_status = db.Column(db.String(16), nullable=False, default="unshipped")
    cancellation_pending = db.Column(db.Boolean, nullable=False, default=False)

    # pending | paid | failed
    payment_status = db.Column(db.String(16), nullable=False, default="pending")
    payment_reference = db.Column(db.String(128), nullable=True)

    # Money (cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    total_commission_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    seller_proceeds_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    buyer = db.relationship("User", foreign_keys=[buyer_id], backref=db.backref("purchases", lazy=True))
    seller = db.relationship("User", foreign_keys=[seller_id], backref=db.backref("sales", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} number={self.order_number!r} status={self.status}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "buyer_id": self.buyer_id,
            "seller_id": self.seller_id,
            "status": self.status,
            "shipping_status": self.shipping_status,
            "cancellation_pending": self.cancellation_pending,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "subtotal_cents": self.subtotal_cents,
            "total_commission_cents": self.total_commission_cents,
            "total_amount_cents": self.total_amount_cents,
            "seller_proceeds_cents": self.seller_proceeds_cents,
            "shipping_address": self.shipping_address,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "processing_at": to_utc_z(self.processing_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
            data["shipment"] = self.shipment.to_dict() if self.shipment else None
        return data


class OrderLine(db.Model):
    """
    Order line with a frozen rate snapshot.

    CRITICAL: commission/VAT/withholding rates are copied from the resolved
    category rates when the order is created. Later category edits never touch
    these columns.
    """
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    commission_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    withholding_tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    commission_cents = db.Column(db.Integer, nullable=False, default=0)
    seller_proceeds_cents = db.Column(db.Integer, nullable=False, default=0)

    stock_restored = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship(
        "Order",
        backref=db.backref("lines", lazy=True, order_by="OrderLine.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "commission_rate_bps": self.commission_rate_bps,
            "vat_rate_bps": self.vat_rate_bps,
            "withholding_tax_rate_bps": self.withholding_tax_rate_bps,
            "commission_cents": self.commission_cents,
            "seller_proceeds_cents": self.seller_proceeds_cents,
            "stock_restored": self.stock_restored,
            "created_at": to_utc_z(self.created_at),
        }


class ShipmentRecord(db.Model):
    """
    Carrier booking for an order (one per order).

    normalized_status uses the canonical ShipmentStatus codes
    {0, 1, 2, 3, 4, 5, 8}; carrier-native codes are kept in raw_response only.
    """
    __tablename__ = "shipment_records"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True)

    carrier = db.Column(db.String(32), nullable=False)
    tracking_code = db.Column(db.String(128), nullable=False, index=True)
    tracking_url = db.Column(db.String(512), nullable=True)
    normalized_status = db.Column(db.Integer, nullable=False, default=0)
    status_description = db.Column(db.String(255), nullable=True)
    raw_response = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    order = db.relationship("Order", backref=db.backref("shipment", uselist=False, lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "carrier": self.carrier,
            "tracking_code": self.tracking_code,
            "tracking_url": self.tracking_url,
            "normalized_status": self.normalized_status,
            "status_description": self.status_description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }


class ShippingLog(db.Model):
    """Append-only record of every carrier call (send / cancel / track)."""
    __tablename__ = "shipping_logs"
    __table_args__ = (
        db.Index("ix_shipping_logs_order_action", "order_id", "action"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    carrier = db.Column(db.String(32), nullable=False)
    action = db.Column(db.String(16), nullable=False)
    success = db.Column(db.Boolean, nullable=False)
    error = db.Column(db.String(512), nullable=True)
    response = db.Column(db.JSON, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "carrier": self.carrier,
            "action": self.action,
            "success": self.success,
            "error": self.error,
            "response": self.response,
            "created_at": to_utc_z(self.created_at),
        }
