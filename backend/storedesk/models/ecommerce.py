from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ECOMMERCE_ORDER_STATUSES = (
    "PENDING",
    "CONFIRMED",
    "PROCESSING",
    "SHIPPED",
    "DELIVERED",
    "CANCELLED",
    "REFUNDED",
)
ECOMMERCE_PAYMENT_STATUSES = ("PENDING", "PAID", "FAILED", "REFUNDED")


class EcommerceOrder(db.Model):
    """
    Customer-facing storefront order.

    LINKAGE: invoice_id is an explicit, unique, nullable FK to the invoice that
    backs this order. order_number equals Invoice.number and is kept as a
    fallback lookup for rows created before invoice_id was populated.

    Status is derived from the linked SalesOrder (see order_service).
    """
    __tablename__ = "ecommerce_orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_ecommerce_orders_number"),
        db.Index("uq_ecommerce_orders_invoice", "invoice_id", unique=True),
        db.Index("ix_ecommerce_orders_customer_created", "customer_id", "created_at"),
        db.Index("ix_ecommerce_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(64), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)

    customer_email = db.Column(db.String(255), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(32), nullable=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    payment_status = db.Column(db.String(16), nullable=False, default="PENDING")
    payment_method = db.Column(db.String(32), nullable=True)
    payment_reference = db.Column(db.String(64), nullable=True)

    currency = db.Column(db.String(3), nullable=False, default="GHS")
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    shipping_address = db.Column(db.JSON, nullable=True)
    billing_address = db.Column(db.JSON, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("ecommerce_order", uselist=False))
    customer = db.relationship("Customer", backref=db.backref("ecommerce_orders", lazy=True))
    items = db.relationship(
        "EcommerceOrderItem",
        backref="order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="EcommerceOrderItem.id",
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "invoice_id": self.invoice_id,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "payment_reference": self.payment_reference,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "shipping_address": self.shipping_address,
            "billing_address": self.billing_address,
            "notes": self.notes,
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class EcommerceOrderItem(db.Model):
    __tablename__ = "ecommerce_order_items"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("ecommerce_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
        }


class AbandonedCart(db.Model):
    """
    Server-side mirror of a cookie cart, keyed by the cart session id.

    WHY: The cart itself lives in the shopper's browser; this row is the only
    thing the reminder job can see.

    INVARIANT: total_cents = subtotal_cents + tax_cents
    """
    __tablename__ = "abandoned_carts"
    __table_args__ = (
        db.UniqueConstraint("cart_session_id", name="uq_abandoned_carts_session"),
        db.Index("ix_abandoned_carts_reminder_scan", "converted_to_order", "last_activity_at"),
        db.Index("ix_abandoned_carts_email", "customer_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cart_session_id = db.Column(db.String(64), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    # [{"productId": int, "quantity": int}, ...]
    items = db.Column(db.JSON, nullable=False, default=list)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="GHS")

    last_activity_at = db.Column(db.DateTime(timezone=True), nullable=False)
    reminder_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reminder_count = db.Column(db.Integer, nullable=False, default=0)

    converted_to_order = db.Column(db.Boolean, nullable=False, default=False)
    converted_order_id = db.Column(db.Integer, db.ForeignKey("ecommerce_orders.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    customer = db.relationship("Customer", backref=db.backref("abandoned_carts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cart_session_id": self.cart_session_id,
            "customer_id": self.customer_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "items": self.items or [],
            "item_count": sum(int(i.get("quantity") or 0) for i in (self.items or [])),
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "currency": self.currency,
            "last_activity_at": to_utc_z(self.last_activity_at),
            "reminder_sent_at": to_utc_z(self.reminder_sent_at),
            "reminder_count": self.reminder_count,
            "converted_to_order": self.converted_to_order,
            "converted_order_id": self.converted_order_id,
            "created_at": to_utc_z(self.created_at),
        }
