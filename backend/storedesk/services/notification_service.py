# Overview: Outbound customer notifications over SMTP email and an HTTP SMS gateway.

"""
Notification Service

WHY: Every customer-facing message (cart reminders, order confirmations,
return approvals) goes through one place so credentials, timeouts and
failure reporting are handled the same way.

Sending never raises for delivery problems; callers get a DeliveryResult and
decide whether to retry (the task queue does) or just report it (the
reminder dispatcher does).
"""

from __future__ import annotations

import re
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape

import httpx
from flask import current_app

from ..money import format_money
from . import settings_service


SMTP_TIMEOUT_SECONDS = 30
SMS_TIMEOUT_SECONDS = 15
MIN_PHONE_DIGITS = 10


@dataclass
class DeliveryResult:
    """Outcome of one send attempt."""
    success: bool = False
    channel: str = ""
    error: str | None = None
    # True when the channel is not configured; nothing was attempted
    skipped: bool = False

    def to_dict(self) -> dict:
        return {"success": self.success, "channel": self.channel, "error": self.error, "skipped": self.skipped}


# =============================================================================
# EMAIL
# =============================================================================

def _smtp_settings() -> dict:
    cfg = settings_service.get_settings(settings_service.SMTP_KEYS)
    try:
        cfg["SMTP_PORT"] = int(cfg.get("SMTP_PORT") or 587)
    except (TypeError, ValueError):
        cfg["SMTP_PORT"] = 587
    cfg["SMTP_ENCRYPTION"] = (cfg.get("SMTP_ENCRYPTION") or "tls").lower()
    return cfg


def _html_to_text(html: str) -> str:
    text = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    text = re.sub(r"</p>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def send_email(to: str, subject: str, html: str, text: str | None = None) -> DeliveryResult:
    result = DeliveryResult(channel="email")
    if not to:
        result.error = "Recipient email is required"
        return result

    cfg = _smtp_settings()
    if not cfg.get("SMTP_HOST"):
        current_app.logger.warning("SMTP not configured, skipping email to %s", to)
        result.error = "SMTP is not configured"
        result.skipped = True
        return result

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((cfg.get("SMTP_FROM_NAME") or "", cfg.get("SMTP_FROM_ADDRESS") or ""))
    msg["To"] = to
    msg.attach(MIMEText(text or _html_to_text(html), "plain"))
    msg.attach(MIMEText(html, "html"))

    try:
        if cfg["SMTP_ENCRYPTION"] == "ssl":
            server = smtplib.SMTP_SSL(cfg["SMTP_HOST"], cfg["SMTP_PORT"], timeout=SMTP_TIMEOUT_SECONDS)
        else:
            server = smtplib.SMTP(cfg["SMTP_HOST"], cfg["SMTP_PORT"], timeout=SMTP_TIMEOUT_SECONDS)
        with server:
            if cfg["SMTP_ENCRYPTION"] == "tls":
                server.starttls()
            if cfg.get("SMTP_USERNAME"):
                server.login(cfg["SMTP_USERNAME"], cfg.get("SMTP_PASSWORD") or "")
            server.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        result.error = f"{type(e).__name__}: {e}"
        current_app.logger.error("Email to %s failed: %s", to, result.error)
        return result

    result.success = True
    current_app.logger.info("Email sent to %s: %s", to, subject)
    return result


# =============================================================================
# SMS
# =============================================================================

def normalize_phone(phone: str | None) -> str | None:
    """Digits only; None if fewer than MIN_PHONE_DIGITS remain."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    return digits


def send_sms(phone: str | None, message: str) -> DeliveryResult:
    result = DeliveryResult(channel="sms")

    destination = normalize_phone(phone)
    if destination is None:
        result.error = "Invalid phone number"
        return result

    cfg = settings_service.get_settings(settings_service.SMS_KEYS)
    if not cfg.get("SMS_USERNAME") or not cfg.get("SMS_PASSWORD"):
        current_app.logger.warning("SMS not configured, skipping SMS to %s", destination)
        result.error = "SMS is not configured"
        result.skipped = True
        return result

    url = current_app.config.get("SMS_API_URL")
    try:
        resp = httpx.post(
            url,
            data={
                "username": cfg["SMS_USERNAME"],
                "password": cfg["SMS_PASSWORD"],
                "destination": destination,
                "source": cfg.get("SMS_SENDER_ID") or "Storedesk",
                "message": message,
            },
            timeout=SMS_TIMEOUT_SECONDS,
        )
        body = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        result.error = f"{type(e).__name__}: {e}"
        current_app.logger.error("SMS to %s failed: %s", destination, result.error)
        return result

    # Gateway signals success with code == 0 regardless of HTTP status
    if str(body.get("code")) != "0":
        result.error = body.get("message") or f"SMS gateway returned code {body.get('code')}"
        current_app.logger.error("SMS to %s rejected: %s", destination, result.error)
        return result

    result.success = True
    current_app.logger.info("SMS sent to %s", destination)
    return result


# =============================================================================
# TEMPLATES
# =============================================================================

def _layout(title: str, body_html: str) -> str:
    company = escape(str(settings_service.get_setting(settings_service.COMPANY_NAME)))
    return (
        "<html><body style=\"font-family: Arial, sans-serif; color: #222;\">"
        f"<h2>{escape(title)}</h2>{body_html}"
        f"<p style=\"color:#888;font-size:12px;\">{company}</p>"
        "</body></html>"
    )


def render_order_confirmation(order) -> tuple[str, str]:
    subject = f"Order Confirmation - {order.order_number}"
    rows = "".join(
        f"<li>{escape(item.product_name)} (Qty: {item.quantity}) - "
        f"{escape(format_money(item.total_price_cents, order.currency))}</li>"
        for item in order.items
    )
    body = (
        f"<p>Hi {escape(order.customer_name or 'Valued Customer')},</p>"
        f"<p>Thank you for your order <strong>{escape(order.order_number)}</strong>. "
        "We have received your payment and are preparing your items.</p>"
        f"<ul>{rows}</ul>"
        f"<p><strong>Total: {escape(format_money(order.total_cents, order.currency))}</strong></p>"
    )
    return subject, _layout("Thank you for your order", body)


def render_order_status(order) -> tuple[str, str]:
    subject = f"Order {order.order_number} is now {order.status.replace('_', ' ').title()}"
    body = (
        f"<p>Hi {escape(order.customer_name or 'Valued Customer')},</p>"
        f"<p>Your order <strong>{escape(order.order_number)}</strong> status is now "
        f"<strong>{escape(order.status)}</strong>.</p>"
    )
    return subject, _layout("Order update", body)


def render_return_approved(return_doc, credit_note, customer_name: str | None) -> tuple[str, str]:
    subject = f"Return Approved - Credit Note {credit_note.number}"
    body = (
        f"<p>Hi {escape(customer_name or 'Valued Customer')},</p>"
        f"<p>Your return <strong>{escape(return_doc.number)}</strong> has been approved.</p>"
        f"<p>Credit note <strong>{escape(credit_note.number)}</strong> for "
        f"<strong>{escape(format_money(credit_note.amount_cents, credit_note.currency))}</strong> "
        "has been issued to your account.</p>"
    )
    return subject, _layout("Return approved", body)


def render_return_approved_sms(return_doc, credit_note) -> str:
    company = settings_service.get_setting(settings_service.COMPANY_NAME)
    return (
        f"Your return {return_doc.number} has been approved. "
        f"Credit Note {credit_note.number} for {format_money(credit_note.amount_cents, credit_note.currency)} "
        f"has been created. {company}"
    )
