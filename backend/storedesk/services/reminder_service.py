# Overview: Abandoned cart reminder dispatcher; batch job run from the CLI or a staff trigger.

"""
Reminder Dispatcher

SELECTION (per run):
- converted_to_order is false
- last_activity_at older than ECOMMERCE_ABANDONED_CART_DELAY_HOURS (default 24)
- never reminded, or last reminded more than REMINDER_GAP_HOURS (48) ago
- at most MAX_CARTS_PER_RUN rows, stalest first

Each cart is handled independently: one failure is reported and the batch
carries on. reminder_sent_at / reminder_count only move on a successful send.
"""

from __future__ import annotations

from datetime import datetime
from html import escape

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import AbandonedCart, Customer, Product
from ..money import format_money
from ..time_utils import hours_ago, utcnow
from . import cart_service, notification_service, settings_service


MAX_CARTS_PER_RUN = 100
MAX_ITEMS_IN_EMAIL = 5
REMINDER_GAP_HOURS = 48
DEFAULT_DELAY_HOURS = 24

REMINDER_SUBJECT = "Complete Your Purchase - Items Waiting in Your Cart"
FALLBACK_NAME = "Valued Customer"

RESULT_SENT = "sent"
RESULT_FAILED = "failed"
RESULT_SKIPPED = "skipped"
RESULT_ERROR = "error"


def select_due_carts(now: datetime | None = None, delay_hours: int | None = None) -> list[AbandonedCart]:
    now = now or utcnow()
    if delay_hours is None:
        delay_hours = settings_service.get_int(settings_service.ABANDONED_CART_DELAY_HOURS, DEFAULT_DELAY_HOURS)

    activity_cutoff = hours_ago(delay_hours, now=now)
    reminder_cutoff = hours_ago(REMINDER_GAP_HOURS, now=now)

    return db.session.query(AbandonedCart).filter(
        AbandonedCart.converted_to_order.is_(False),
        AbandonedCart.last_activity_at < activity_cutoff,
        or_(
            AbandonedCart.reminder_sent_at.is_(None),
            AbandonedCart.reminder_sent_at < reminder_cutoff,
        ),
    ).order_by(AbandonedCart.last_activity_at.asc(), AbandonedCart.id.asc()).limit(MAX_CARTS_PER_RUN).all()


def resolve_contact(cart: AbandonedCart) -> tuple[str | None, str]:
    """(email, display name): linked customer first, then what the cart recorded."""
    email = None
    name = None
    if cart.customer_id:
        customer = db.session.get(Customer, cart.customer_id)
        if customer is not None:
            email = customer.email
            name = customer.full_name
    email = email or cart.customer_email
    name = name or cart.customer_name or FALLBACK_NAME
    return (email or None), name


def summarize_items(items: list[dict], currency: str = "GHS") -> list[str]:
    """At most MAX_ITEMS_IN_EMAIL lines, then '... and N more item(s)'."""
    items = items or []
    shown = items[:MAX_ITEMS_IN_EMAIL]
    products = {
        p.id: p
        for p in db.session.query(Product).filter(
            Product.id.in_([e.get("productId") for e in shown])
        ).all()
    } if shown else {}

    lines = []
    for entry in shown:
        quantity = int(entry.get("quantity") or 0)
        product = products.get(entry.get("productId"))
        if product is None:
            lines.append(f"- Product #{entry.get('productId')} (Qty: {quantity})")
            continue
        amount = cart_service.unit_price_cents(product) * quantity
        lines.append(f"- {product.name} (Qty: {quantity}) - {format_money(amount, currency)}")

    remaining = len(items) - len(shown)
    if remaining > 0:
        lines.append(f"... and {remaining} more item(s)")
    return lines


def render_reminder(cart: AbandonedCart, name: str) -> tuple[str, str, str]:
    """Returns (subject, html, text)."""
    cart_url = f"{current_app.config.get('SHOP_BASE_URL', '').rstrip('/')}/shop/cart"
    summary = summarize_items(cart.items, cart.currency)
    total = format_money(cart.total_cents, cart.currency)

    text = "\n".join([
        f"Hi {name},",
        "",
        "You left some items in your cart:",
        *summary,
        "",
        f"Cart total: {total}",
        f"Complete your purchase: {cart_url}",
    ])
    html = (
        f"<p>Hi {escape(name)},</p>"
        "<p>You left some items in your cart:</p>"
        + "".join(f"<p>{escape(line)}</p>" for line in summary)
        + f"<p><strong>Cart total: {escape(total)}</strong></p>"
        f"<p><a href=\"{escape(cart_url)}\">Complete your purchase</a></p>"
    )
    return REMINDER_SUBJECT, html, text


def dispatch_reminders(now: datetime | None = None) -> dict:
    """
    Send one reminder per due cart and return a per-cart report.

    Never raises for an individual cart.
    """
    if not settings_service.get_bool(settings_service.SEND_ABANDONED_CART_REMINDERS):
        return {
            "enabled": False,
            "message": "Abandoned cart reminders are disabled",
            "cartsProcessed": 0,
            "successful": 0,
            "failed": 0,
            "skipped": 0,
            "results": [],
        }

    now = now or utcnow()
    carts = select_due_carts(now=now)
    results = []

    for cart in carts:
        entry = {"cartId": cart.id, "cartSessionId": cart.cart_session_id, "email": None}
        try:
            email, name = resolve_contact(cart)
            entry["email"] = email
            if not email:
                entry["status"] = RESULT_SKIPPED
                entry["error"] = "No email address"
                results.append(entry)
                continue

            subject, html, text = render_reminder(cart, name)
            outcome = notification_service.send_email(email, subject, html, text)
            if outcome.success:
                cart.reminder_sent_at = now
                cart.reminder_count = (cart.reminder_count or 0) + 1
                db.session.commit()
                entry["status"] = RESULT_SENT
            else:
                entry["status"] = RESULT_FAILED
                entry["error"] = outcome.error
        except Exception as e:
            db.session.rollback()
            current_app.logger.exception("Reminder for abandoned cart %s failed", cart.id)
            entry["status"] = RESULT_ERROR
            entry["error"] = str(e)
        results.append(entry)

    report = {
        "enabled": True,
        "cartsProcessed": len(results),
        "successful": sum(1 for r in results if r["status"] == RESULT_SENT),
        "failed": sum(1 for r in results if r["status"] in (RESULT_FAILED, RESULT_ERROR)),
        "skipped": sum(1 for r in results if r["status"] == RESULT_SKIPPED),
        "results": results,
    }
    current_app.logger.info(
        "Abandoned cart reminders: %s processed, %s sent, %s failed",
        report["cartsProcessed"], report["successful"], report["failed"],
    )
    return report
