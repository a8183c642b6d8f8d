from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


STOCK_MOVEMENT_TYPES = (
    "RECEIPT",
    "ADJUSTMENT",
    "TRANSFER_IN",
    "TRANSFER_OUT",
    "SALE",
    "RETURN",
    "DAMAGE",
    "THEFT",
    "EXPIRY",
    "OTHER",
)


class Product(db.Model):
    """
    Sellable product.

    PRICING: price_cents is in `currency`; best_deal_price_cents (when set) is a
    storefront override that is always in the shop currency (GHS) and wins.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="GHS")
    best_deal_price_cents = db.Column(db.Integer, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "price_cents": self.price_cents,
            "currency": self.currency,
            "best_deal_price_cents": self.best_deal_price_cents,
            "image_url": self.image_url,
            "is_active": self.is_active,
        }


class ExchangeRate(db.Model):
    """Conversion factor: 1 unit of from_currency = rate units of to_currency."""
    __tablename__ = "exchange_rates"
    __table_args__ = (
        db.UniqueConstraint("from_currency", "to_currency", name="uq_exchange_rates_pair"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_currency = db.Column(db.String(3), nullable=False)
    to_currency = db.Column(db.String(3), nullable=False)
    rate = db.Column(db.Numeric(18, 6), nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_warehouses_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    name = db.Column(db.String(128), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)


class StockItem(db.Model):
    """
    On-hand position of one product in one warehouse.

    DEFAULT WAREHOUSE: warehouse_id NULL is the default location; returns are
    always restocked there.

    INVARIANT: available = quantity - reserved
    """
    __tablename__ = "stock_items"
    __table_args__ = (
        db.Index("ix_stock_items_product_warehouse", "product_id", "warehouse_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)
    available = db.Column(db.Integer, nullable=False, default=0)
    average_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_value_cents = db.Column(db.Integer, nullable=False, default=0)

    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product", backref=db.backref("stock_items", lazy=True))
    warehouse = db.relationship("Warehouse", backref=db.backref("stock_items", lazy=True))

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "available": self.available,
            "average_cost_cents": self.average_cost_cents,
            "total_value_cents": self.total_value_cents,
        }


class StockMovement(db.Model):
    """
    Append-only record of every stock change.

    quantity is signed: SALE allocations are negative, RETURN and RECEIPT positive.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
        db.Index("ix_stock_movements_reference", "reference"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    stock_item_id = db.Column(db.Integer, db.ForeignKey("stock_items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=True)
    total_cost_cents = db.Column(db.Integer, nullable=True)

    reference = db.Column(db.String(64), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    stock_item = db.relationship("StockItem", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "stock_item_id": self.stock_item_id,
            "warehouse_id": self.warehouse_id,
            "type": self.type,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "total_cost_cents": self.total_cost_cents,
            "reference": self.reference,
            "reason": self.reason,
            "notes": self.notes,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
