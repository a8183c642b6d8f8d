# Overview: Service-layer operations for online payment; gateway sessions, verification and webhooks.

"""
Payment Service

WHY: Storefront invoices are paid through a hosted card / mobile-money
gateway. We never see card data; we open a gateway session, redirect the
shopper, and settle the invoice when the gateway confirms the charge.

DESIGN PRINCIPLES:
- Amounts go to the gateway in minor units (pesewas)
- Every session gets our own correlation reference (PAY-<ms>-<rand>) that
  comes back on the callback and the webhook
- Settlement is idempotent per reference: verify and webhook may both fire
- Gateway failures surface to the caller; nothing is silently retried here

LIFECYCLE (PaymentAttempt):
INITIATED -> SUCCEEDED | FAILED | ABANDONED
"""

from __future__ import annotations

import hashlib
import hmac
import json
import secrets
import string
import time

import httpx
from flask import current_app

from ..extensions import db
from ..models import Account, EcommerceOrder, Invoice, PaymentAttempt
from ..models.sales import (
    INVOICE_PAYMENT_PAID,
    INVOICE_STATUS_PAID,
    PAYMENT_ATTEMPT_ABANDONED,
    PAYMENT_ATTEMPT_FAILED,
    PAYMENT_ATTEMPT_INITIATED,
    PAYMENT_ATTEMPT_SUCCEEDED,
)
from ..money import DEFAULT_CURRENCY, to_minor_units
from ..time_utils import utcnow
from ..validation import NotFoundError, ServiceError
from . import settings_service, task_queue


class PaymentError(ServiceError):
    """Raised for payment operation errors."""
    pass


# =============================================================================
# CONSTANTS
# =============================================================================

GATEWAY_NAME = "paystack"
GATEWAY_TIMEOUT_SECONDS = 10
REFERENCE_PREFIX = "PAY"

# Orders that have moved past fulfilment keep their status on late payment
STATUSES_KEPT_ON_PAYMENT = ("CANCELLED", "SHIPPED", "DELIVERED", "REFUNDED")

CANCEL_MARKERS = ("cancel", "abandon")


def generate_reference() -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(7))
    return f"{REFERENCE_PREFIX}-{int(time.time() * 1000)}-{suffix}"


def _secret_key() -> str:
    secret = settings_service.get_setting(settings_service.PAYSTACK_SECRET_KEY)
    if not secret:
        raise PaymentError("Payment gateway is not configured", status_code=500)
    return secret


def _api_url(path: str) -> str:
    base = current_app.config.get("PAYSTACK_API_BASE", "https://api.paystack.co").rstrip("/")
    return f"{base}{path}"


def _gateway_call(method: str, path: str, *, json_body: dict | None = None) -> dict:
    """Call the gateway and return its `data` object; raise PaymentError (502) otherwise."""
    headers = {"Authorization": f"Bearer {_secret_key()}", "Content-Type": "application/json"}
    try:
        resp = httpx.request(
            method,
            _api_url(path),
            json=json_body,
            headers=headers,
            timeout=GATEWAY_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as e:
        current_app.logger.error("Payment gateway request to %s failed: %s", path, e)
        raise PaymentError("Payment gateway unavailable", status_code=502)

    try:
        body = resp.json()
    except ValueError:
        body = {}

    if resp.status_code >= 400 or not body.get("status"):
        message = body.get("message") or f"Payment gateway returned HTTP {resp.status_code}"
        current_app.logger.warning("Payment gateway rejected %s: %s", path, message)
        raise PaymentError(message, status_code=502)

    data = body.get("data")
    if not isinstance(data, dict):
        raise PaymentError("Invalid response from payment gateway", status_code=502)
    return data


def _order_for_invoice(invoice: Invoice) -> EcommerceOrder | None:
    order = db.session.query(EcommerceOrder).filter_by(invoice_id=invoice.id).first()
    if order is None:
        order = db.session.query(EcommerceOrder).filter_by(order_number=invoice.number).first()
    return order


# =============================================================================
# INITIATION
# =============================================================================

def initiate_payment(
    *,
    invoice_id: int | None = None,
    invoice_number: str | None = None,
    amount=None,
    payment_method: str | None = None,
    customer_email: str | None = None,
) -> dict:
    """
    Open a gateway checkout session for an invoice.

    Returns {paymentReference, authorizationUrl, accessCode, gateway}.
    """
    if not invoice_id and not invoice_number:
        raise PaymentError("Invoice ID or invoice number is required")
    if not payment_method:
        raise PaymentError("Payment method is required")
    try:
        amount_cents = to_minor_units(amount)
    except ValueError:
        raise PaymentError("Amount must be a number")
    if amount_cents <= 0:
        raise PaymentError("Amount must be greater than 0")

    if invoice_id:
        invoice = db.session.get(Invoice, invoice_id)
    else:
        invoice = db.session.query(Invoice).filter_by(number=invoice_number).first()
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.payment_status == INVOICE_PAYMENT_PAID:
        raise PaymentError("Invoice is already paid", status_code=409)

    order = _order_for_invoice(invoice)
    account = db.session.get(Account, invoice.account_id) if invoice.account_id else None

    email = (
        customer_email
        or (order.customer_email if order else None)
        or invoice.customer_email
        or (account.email if account else None)
    )
    if not email:
        raise PaymentError("Customer email is required")

    reference = generate_reference()
    base_url = current_app.config.get("SHOP_BASE_URL", "").rstrip("/")
    data = _gateway_call("POST", "/transaction/initialize", json_body={
        "amount": amount_cents,
        "email": email,
        "reference": reference,
        "currency": invoice.currency or DEFAULT_CURRENCY,
        "callback_url": f"{base_url}/shop/payment/callback",
        "metadata": {
            "invoiceId": invoice.id,
            "invoiceNumber": invoice.number,
            "customerId": order.customer_id if order else None,
            "customerEmail": email,
            "customerName": (order.customer_name if order else None) or invoice.customer_name,
        },
    })

    authorization_url = data.get("authorization_url")
    if not authorization_url:
        raise PaymentError("Invalid response from payment gateway", status_code=502)

    attempt = PaymentAttempt(
        reference=reference,
        invoice_id=invoice.id,
        ecommerce_order_id=order.id if order else None,
        gateway=GATEWAY_NAME,
        payment_method=payment_method,
        amount_cents=amount_cents,
        currency=invoice.currency or DEFAULT_CURRENCY,
        email=email,
        status=PAYMENT_ATTEMPT_INITIATED,
        authorization_url=authorization_url,
        access_code=data.get("access_code"),
    )
    db.session.add(attempt)
    invoice.payment_reference = reference
    if order is not None:
        order.payment_reference = reference
        order.payment_method = payment_method
        order.updated_at = utcnow()
    db.session.commit()

    return {
        "paymentReference": reference,
        "authorizationUrl": authorization_url,
        "accessCode": data.get("access_code"),
        "gateway": GATEWAY_NAME,
    }


# =============================================================================
# SETTLEMENT
# =============================================================================

def _settle(attempt: PaymentAttempt, gateway_response: str | None) -> bool:
    """
    Mark invoice and order paid for a successful charge.

    Returns False when the attempt was already settled (idempotent re-entry).
    Commits and dispatches the confirmation task.
    """
    if attempt.status == PAYMENT_ATTEMPT_SUCCEEDED:
        return False

    now = utcnow()
    attempt.status = PAYMENT_ATTEMPT_SUCCEEDED
    attempt.gateway_response = gateway_response
    attempt.verified_at = now

    invoice = db.session.get(Invoice, attempt.invoice_id)
    if invoice.payment_status != INVOICE_PAYMENT_PAID:
        invoice.status = INVOICE_STATUS_PAID
        invoice.payment_status = INVOICE_PAYMENT_PAID
        invoice.amount_paid_cents = invoice.total_cents
        invoice.amount_due_cents = 0
        invoice.paid_at = now
        invoice.payment_reference = attempt.reference
        invoice.updated_at = now

    tasks = []
    order = _order_for_invoice(invoice)
    if order is not None:
        order.payment_status = "PAID"
        order.payment_reference = attempt.reference
        if order.status not in STATUSES_KEPT_ON_PAYMENT:
            order.status = "PROCESSING"
        order.updated_at = now
        if settings_service.get_bool(settings_service.SEND_ORDER_CONFIRMATION, default=True):
            tasks.append(task_queue.enqueue("order_confirmation", {"order_id": order.id}))

    db.session.commit()
    task_queue.dispatch(tasks)
    current_app.logger.info("Payment %s settled invoice %s", attempt.reference, invoice.number)
    return True


def _is_cancellation(*values) -> bool:
    text = " ".join(str(v).lower() for v in values if v)
    return any(marker in text for marker in CANCEL_MARKERS)


def verify_payment(reference: str) -> dict:
    """
    Ask the gateway for the outcome of a session and apply it.

    Returns {"status": "success" | "failed" | "cancelled", ...}.
    """
    if not reference:
        raise PaymentError("Payment reference is required")

    attempt = db.session.query(PaymentAttempt).filter_by(reference=reference).first()
    if attempt is None:
        raise NotFoundError("Payment not found")

    data = _gateway_call("GET", f"/transaction/verify/{reference}")
    status = (data.get("status") or "").lower()
    gateway_response = data.get("gateway_response")
    invoice = db.session.get(Invoice, attempt.invoice_id)

    if status == "success":
        paid_cents = data.get("amount")
        if isinstance(paid_cents, int) and paid_cents < attempt.amount_cents:
            attempt.status = PAYMENT_ATTEMPT_FAILED
            attempt.gateway_response = "Amount mismatch"
            db.session.commit()
            current_app.logger.error(
                "Payment %s amount mismatch: expected %s, gateway reported %s",
                reference, attempt.amount_cents, paid_cents,
            )
            return {"status": "failed", "reference": reference, "message": "Amount mismatch"}

        _settle(attempt, gateway_response)
        return {
            "status": "success",
            "reference": reference,
            "invoiceNumber": invoice.number,
            "message": "Payment successful",
        }

    if attempt.status != PAYMENT_ATTEMPT_SUCCEEDED:
        cancelled = _is_cancellation(status, gateway_response)
        attempt.status = PAYMENT_ATTEMPT_ABANDONED if cancelled else PAYMENT_ATTEMPT_FAILED
        attempt.gateway_response = gateway_response or status
        attempt.verified_at = utcnow()
        order = _order_for_invoice(invoice)
        if order is not None and not cancelled and order.payment_status == "PENDING":
            order.payment_status = "FAILED"
            order.updated_at = utcnow()
        db.session.commit()
    else:
        cancelled = False

    return {
        "status": "cancelled" if cancelled else "failed",
        "reference": reference,
        "invoiceNumber": invoice.number,
        "message": gateway_response or "Payment was not completed",
    }


# =============================================================================
# WEBHOOK
# =============================================================================

def verify_signature(raw_body: bytes, signature: str | None) -> bool:
    if not signature:
        return False
    expected = hmac.new(_secret_key().encode("utf-8"), raw_body, hashlib.sha512).hexdigest()
    return hmac.compare_digest(expected, signature)


def handle_webhook(raw_body: bytes, signature: str | None) -> dict:
    """
    Gateway push notification. Signature is HMAC-SHA512 of the raw body.

    Only charge.success changes state; everything else is acknowledged.
    """
    if not verify_signature(raw_body, signature):
        raise PaymentError("Invalid signature", status_code=401)

    try:
        event = json.loads(raw_body or b"{}")
    except ValueError:
        raise PaymentError("Invalid JSON payload")

    if event.get("event") != "charge.success":
        return {"received": True, "handled": False}

    data = event.get("data") or {}
    reference = data.get("reference")
    attempt = db.session.query(PaymentAttempt).filter_by(reference=reference).first() if reference else None
    if attempt is None:
        current_app.logger.warning("Webhook for unknown payment reference %s", reference)
        return {"received": True, "handled": False}

    paid_cents = data.get("amount")
    if isinstance(paid_cents, int) and paid_cents < attempt.amount_cents:
        current_app.logger.error("Webhook amount mismatch for %s", reference)
        return {"received": True, "handled": False}

    settled = _settle(attempt, data.get("gateway_response"))
    return {"received": True, "handled": settled}
