from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# =============================================================================
# STATUS CONSTANTS
# =============================================================================

INVOICE_STATUS_DRAFT = "DRAFT"
INVOICE_STATUS_SENT = "SENT"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_VOID = "VOID"

INVOICE_PAYMENT_UNPAID = "UNPAID"
INVOICE_PAYMENT_PARTIAL = "PARTIALLY_PAID"
INVOICE_PAYMENT_PAID = "PAID"

SALES_ORDER_STATUSES = (
    "PENDING",
    "CONFIRMED",
    "PROCESSING",
    "READY_TO_SHIP",
    "SHIPPED",
    "DELIVERED",
    "COMPLETED",
    "CANCELLED",
)

CREDIT_NOTE_STATUSES = ("PENDING", "PARTIALLY_APPLIED", "FULLY_APPLIED", "VOID")
CREDIT_NOTE_REASONS = ("RETURN", "DAMAGED_GOODS", "PRICING_ERROR", "GOODWILL", "OTHER")

PAYMENT_ATTEMPT_INITIATED = "INITIATED"
PAYMENT_ATTEMPT_SUCCEEDED = "SUCCEEDED"
PAYMENT_ATTEMPT_FAILED = "FAILED"
PAYMENT_ATTEMPT_ABANDONED = "ABANDONED"


class Invoice(db.Model):
    """
    Customer invoice; the payable document for storefront orders.

    The storefront order number equals the invoice number.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_invoices_number"),
        db.Index("ix_invoices_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(64), nullable=False)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=INVOICE_STATUS_SENT)
    payment_status = db.Column(db.String(16), nullable=False, default=INVOICE_PAYMENT_UNPAID)
    currency = db.Column(db.String(3), nullable=False, default="GHS")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_reference = db.Column(db.String(64), nullable=True)
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    account = db.relationship("Account", backref=db.backref("invoices", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "account_id": self.account_id,
            "customer_email": self.customer_email,
            "customer_name": self.customer_name,
            "status": self.status,
            "payment_status": self.payment_status,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "amount_due_cents": self.amount_due_cents,
            "payment_reference": self.payment_reference,
            "paid_at": to_utc_z(self.paid_at),
            "created_at": to_utc_z(self.created_at),
        }


class SalesOrder(db.Model):
    """
    Back-office fulfilment document. Its status is the source of truth that
    storefront orders are reconciled against.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_sales_orders_number"),
        db.Index("ix_sales_orders_invoice", "invoice_id"),
        db.Index("ix_sales_orders_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(64), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING")
    source = db.Column(db.String(16), nullable=False, default="ECOMMERCE")  # ECOMMERCE, BACK_OFFICE
    currency = db.Column(db.String(3), nullable=False, default="GHS")

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("sales_orders", lazy=True))
    account = db.relationship("Account", backref=db.backref("sales_orders", lazy=True))
    lines = db.relationship(
        "SalesOrderLine",
        backref="sales_order",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="SalesOrderLine.id",
    )

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "invoice_id": self.invoice_id,
            "account_id": self.account_id,
            "status": self.status,
            "source": self.source,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "delivered_at": to_utc_z(self.delivered_at),
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class SalesOrderLine(db.Model):
    __tablename__ = "sales_order_lines"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class CreditNote(db.Model):
    """
    Credit owed to an account, typically issued when a return is approved.

    remaining = amount - applied
    """
    __tablename__ = "credit_notes"
    __table_args__ = (
        db.UniqueConstraint("number", name="uq_credit_notes_number"),
        db.Index("ix_credit_notes_return", "return_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    number = db.Column(db.String(64), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    account_id = db.Column(db.Integer, db.ForeignKey("accounts.id"), nullable=True, index=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    applied_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    remaining_amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="GHS")

    reason = db.Column(db.String(32), nullable=False, default="RETURN")
    reason_details = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="PENDING")

    owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    invoice = db.relationship("Invoice", backref=db.backref("credit_notes", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "number": self.number,
            "invoice_id": self.invoice_id,
            "account_id": self.account_id,
            "return_id": self.return_id,
            "amount_cents": self.amount_cents,
            "applied_amount_cents": self.applied_amount_cents,
            "remaining_amount_cents": self.remaining_amount_cents,
            "currency": self.currency,
            "reason": self.reason,
            "reason_details": self.reason_details,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class PaymentAttempt(db.Model):
    """
    One gateway checkout session for an invoice.

    WHY: The gateway reference is the only correlation id we get back on the
    callback and webhook, so it is recorded before redirecting the customer.
    """
    __tablename__ = "payment_attempts"
    __table_args__ = (
        db.UniqueConstraint("reference", name="uq_payment_attempts_reference"),
        db.Index("ix_payment_attempts_invoice", "invoice_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reference = db.Column(db.String(64), nullable=False)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False)
    ecommerce_order_id = db.Column(db.Integer, db.ForeignKey("ecommerce_orders.id"), nullable=True)

    gateway = db.Column(db.String(32), nullable=False, default="paystack")
    payment_method = db.Column(db.String(32), nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="GHS")
    email = db.Column(db.String(255), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=PAYMENT_ATTEMPT_INITIATED)
    authorization_url = db.Column(db.String(512), nullable=True)
    access_code = db.Column(db.String(128), nullable=True)
    gateway_response = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)

    invoice = db.relationship("Invoice", backref=db.backref("payment_attempts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reference": self.reference,
            "invoice_id": self.invoice_id,
            "ecommerce_order_id": self.ecommerce_order_id,
            "gateway": self.gateway,
            "payment_method": self.payment_method,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "email": self.email,
            "status": self.status,
            "gateway_response": self.gateway_response,
            "created_at": to_utc_z(self.created_at),
            "verified_at": to_utc_z(self.verified_at),
        }
