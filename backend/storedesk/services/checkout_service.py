# Overview: Service-layer operations for storefront checkout; cart to invoice, order and sales order.

"""
Checkout Service

WHY: A storefront purchase has to appear in three places at once: the
Invoice (what is owed), the EcommerceOrder (what the shopper sees) and the
SalesOrder (what the warehouse fulfils). They are created in one transaction
so no flow ever sees only some of them.

FLOW:
1. Revalidate the cart (prices and stock as of now)
2. Find or create the billing Account by email
3. Invoice INV-xxxxxx (UNPAID, amount_due = total)
4. EcommerceOrder with order_number = invoice number and invoice_id set
5. SalesOrder SO-xxxxxx (PENDING) linked to the invoice
6. Reserve stock for every line (SALE movements); shortage aborts everything
7. After commit, best effort: mark the abandoned cart converted

NUMBERING: a unique-number clash anywhere in steps 2-6 rolls back and
retries the whole transaction (3 attempts), then surfaces as a 409.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import (
    Account,
    Customer,
    EcommerceOrder,
    EcommerceOrderItem,
    Invoice,
    SalesOrder,
    SalesOrderLine,
)
from ..models.sales import INVOICE_PAYMENT_UNPAID, INVOICE_STATUS_SENT
from ..validation import ServiceError
from . import abandoned_cart_service, cart_service, inventory_service, numbering
from .concurrency import run_with_retry
from .inventory_service import InsufficientStockError


DEFAULT_PAYMENT_METHOD = "paystack"


class CheckoutError(ServiceError):
    """Raised for checkout errors."""
    pass


@dataclass
class CheckoutResult:
    order: EcommerceOrder
    invoice: Invoice
    sales_order: SalesOrder
    cart_was_adjusted: bool

    def to_dict(self) -> dict:
        return {
            "order": self.order.to_dict(include_items=True),
            "invoice": self.invoice.to_dict(),
            "salesOrder": self.sales_order.to_dict(),
            "cartAdjusted": self.cart_was_adjusted,
        }


def _find_or_create_account(email: str, name: str, phone: str | None) -> Account:
    account = db.session.query(Account).filter_by(email=email).order_by(Account.id.asc()).first()
    if account is None:
        account = Account(name=name or email, email=email, phone=phone, type="INDIVIDUAL")
        db.session.add(account)
        db.session.flush()
    elif phone and not account.phone:
        account.phone = phone
    return account


def _resolve_details(details: dict, customer: Customer | None) -> dict:
    details = details or {}
    email = (details.get("email") or (customer.email if customer else "") or "").strip().lower()
    if not email or "@" not in email:
        raise CheckoutError("A valid email is required")
    name = (details.get("name") or (customer.full_name if customer else None) or "").strip()
    if not name:
        raise CheckoutError("Customer name is required")
    address = details.get("shippingAddress")
    if address is not None and not isinstance(address, dict):
        raise CheckoutError("shippingAddress must be an object")
    return {
        "email": email,
        "name": name,
        "phone": (details.get("phone") or (customer.phone if customer else None) or None),
        "shipping_address": address,
        "billing_address": details.get("billingAddress") if isinstance(details.get("billingAddress"), dict) else address,
        "payment_method": details.get("paymentMethod") or DEFAULT_PAYMENT_METHOD,
        "notes": details.get("notes"),
    }


def checkout(
    raw_items: list[dict],
    details: dict,
    *,
    customer: Customer | None = None,
    cart_session_id: str | None = None,
) -> CheckoutResult:
    info = _resolve_details(details, customer)

    snapshot = cart_service.build_snapshot(raw_items)
    if snapshot.is_empty:
        raise CheckoutError("Cart is empty")

    def _op() -> CheckoutResult:
        account = _find_or_create_account(info["email"], info["name"], info["phone"])

        invoice = Invoice(
            number=numbering.next_number(Invoice, numbering.INVOICE_PREFIX),
            account_id=account.id,
            customer_email=info["email"],
            customer_name=info["name"],
            status=INVOICE_STATUS_SENT,
            payment_status=INVOICE_PAYMENT_UNPAID,
            currency=snapshot.currency,
            subtotal_cents=snapshot.subtotal_cents,
            tax_cents=snapshot.tax_cents,
            total_cents=snapshot.total_cents,
            amount_paid_cents=0,
            amount_due_cents=snapshot.total_cents,
        )
        db.session.add(invoice)
        db.session.flush()

        order = EcommerceOrder(
            order_number=invoice.number,
            invoice_id=invoice.id,
            customer_id=customer.id if customer else None,
            customer_email=info["email"],
            customer_name=info["name"],
            customer_phone=info["phone"],
            status="PROCESSING",
            payment_status="PENDING",
            payment_method=info["payment_method"],
            currency=snapshot.currency,
            subtotal_cents=snapshot.subtotal_cents,
            tax_cents=snapshot.tax_cents,
            total_cents=snapshot.total_cents,
            shipping_address=info["shipping_address"],
            billing_address=info["billing_address"],
            notes=info["notes"],
        )
        db.session.add(order)

        sales_order = SalesOrder(
            number=numbering.next_number(SalesOrder, numbering.SALES_ORDER_PREFIX),
            invoice_id=invoice.id,
            account_id=account.id,
            status="PENDING",
            source="ECOMMERCE",
            currency=snapshot.currency,
            subtotal_cents=snapshot.subtotal_cents,
            tax_cents=snapshot.tax_cents,
            total_cents=snapshot.total_cents,
        )
        db.session.add(sales_order)

        for line in snapshot.lines:
            order.items.append(EcommerceOrderItem(
                product_id=line["productId"],
                product_name=line["name"],
                sku=line["sku"],
                quantity=line["quantity"],
                unit_price_cents=line["unitPriceCents"],
                total_price_cents=line["lineTotalCents"],
            ))
            sales_order.lines.append(SalesOrderLine(
                product_id=line["productId"],
                description=line["name"],
                quantity=line["quantity"],
                unit_price_cents=line["unitPriceCents"],
                line_total_cents=line["lineTotalCents"],
            ))
        db.session.flush()

        for line in snapshot.lines:
            try:
                inventory_service.allocate_for_sale(
                    product_id=line["productId"],
                    quantity=line["quantity"],
                    reference=sales_order.number,
                )
            except InsufficientStockError as e:
                db.session.rollback()
                raise CheckoutError(
                    f"Insufficient stock for {line['name']}",
                    availableStock=e.available,
                    productId=line["productId"],
                )

        db.session.commit()

        return CheckoutResult(
            order=order,
            invoice=invoice,
            sales_order=sales_order,
            cart_was_adjusted=snapshot.cleaned,
        )

    # A number clash rolls back the attempt; the retry draws fresh numbers
    try:
        result = run_with_retry(_op, retry_on=(IntegrityError,))
    except IntegrityError:
        raise CheckoutError("Order numbering conflict, please retry", status_code=409)

    abandoned_cart_service.mark_converted(cart_session_id, result.order.id)
    return result
