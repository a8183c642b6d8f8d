from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


RETURN_REASONS = (
    "DAMAGED",
    "DEFECTIVE",
    "WRONG_ITEM",
    "CUSTOMER_REQUEST",
    "QUALITY_ISSUE",
    "OTHER",
)
RETURN_STATUSES = (
    "DRAFT",
    "PENDING",
    "APPROVED",
    "REJECTED",
    "REFUNDED",
    "COMPLETED",
    "CANCELLED",
)


class Return(db.Model):
    """
    Product return against a sales order.

    LIFECYCLE:
    1. PENDING: created by staff without approval rights
    2. APPROVED: stock restored at weighted-average cost, credit note issued
    3. REFUNDED / COMPLETED: money returned to the customer
    4. REJECTED / CANCELLED: no stock or credit effects

    ONE PER ORDER: sales_order_id is unique; the database is the arbiter when
    two creates race.

    processed_at / processing_error record the outcome of the post-approval
    stock + credit note step so a failed step is visible and can be retried.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_returns_number"),
        db.UniqueConstraint("sales_order_id", name="uq_returns_sales_order"),
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "RET-000012")
    number = db.Column(db.String(64), nullable=False)

    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=False, index=True)

    reason = db.Column(db.String(32), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_amount_cents = db.Column(db.Integer, nullable=True)
    refund_method = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_error = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    sales_order = db.relationship("SalesOrder", backref=db.backref("return_doc", uselist=False))
    account = db.relationship("Account", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        backref="return_doc",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ReturnLine.id",
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "sales_order_id": self.sales_order_id,
            "account_id": self.account_id,
            "reason": self.reason,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_method": self.refund_method,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "completed_at": to_utc_z(self.completed_at),
            "processed_at": to_utc_z(self.processed_at),
            "processing_error": self.processing_error,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class ReturnLine(db.Model):
    __tablename__ = "return_lines"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "reason": self.reason,
        }
