# Overview: Service-layer operations for runtime settings; key/value store with config fallback.

from __future__ import annotations

import os
from decimal import Decimal
from typing import Any

from flask import current_app

from ..extensions import db
from ..models import SystemSetting
from ..money import parse_rate
from ..time_utils import utcnow


# =============================================================================
# SETTING KEYS
# =============================================================================

TAX_RATE = "ECOMMERCE_TAX_RATE"
RETURN_TAX_RATE = "RETURN_TAX_RATE"
SEND_ABANDONED_CART_REMINDERS = "ECOMMERCE_SEND_ABANDONED_CART_REMINDERS"
ABANDONED_CART_DELAY_HOURS = "ECOMMERCE_ABANDONED_CART_DELAY_HOURS"
SEND_ORDER_CONFIRMATION = "ECOMMERCE_SEND_ORDER_CONFIRMATION"
COMPANY_NAME = "company_name"
CRON_SECRET = "CRON_SECRET"

PAYSTACK_SECRET_KEY = "PAYSTACK_SECRET_KEY"
PAYSTACK_PUBLIC_KEY = "PAYSTACK_PUBLIC_KEY"

SMTP_KEYS = (
    "SMTP_HOST",
    "SMTP_PORT",
    "SMTP_USERNAME",
    "SMTP_PASSWORD",
    "SMTP_FROM_ADDRESS",
    "SMTP_FROM_NAME",
    "SMTP_ENCRYPTION",
)
SMS_KEYS = ("SMS_USERNAME", "SMS_PASSWORD", "SMS_SENDER_ID")

DEFAULTS = {
    TAX_RATE: "12.5",
    RETURN_TAX_RATE: "15",
    SEND_ABANDONED_CART_REMINDERS: "false",
    ABANDONED_CART_DELAY_HOURS: "24",
    SEND_ORDER_CONFIRMATION: "true",
    COMPANY_NAME: "Storedesk",
}

SECRET_MARKERS = ("SECRET", "PASSWORD")


class SettingsError(ValueError):
    pass


def _fallback(key: str) -> Any:
    value = current_app.config.get(key)
    if value is None:
        value = os.environ.get(key)
    return value


def get_setting(key: str, default: Any = None) -> Any:
    """
    Resolve a setting: database row, then app config / environment, then
    the built-in default, then `default`.

    Blank database values count as unset.
    """
    row = db.session.query(SystemSetting).filter_by(key=key).first()
    if row is not None and row.value not in (None, ""):
        return row.value

    value = _fallback(key)
    if value not in (None, ""):
        return value

    if key in DEFAULTS:
        return DEFAULTS[key]
    return default


def get_settings(keys) -> dict:
    return {key: get_setting(key) for key in keys}


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def get_int(key: str, default: int) -> int:
    value = get_setting(key)
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def get_percentage(key: str) -> Decimal:
    return parse_rate(get_setting(key), DEFAULTS.get(key, "0"))


def set_setting(key: str, value: Any, user_id: int | None = None) -> SystemSetting:
    """Upsert a setting. Caller commits."""
    key = (key or "").strip()
    if not key:
        raise SettingsError("Setting key is required")

    row = db.session.query(SystemSetting).filter_by(key=key).first()
    stored = None if value is None else str(value)
    if row is None:
        row = SystemSetting(key=key, value=stored, updated_by_user_id=user_id, updated_at=utcnow())
        db.session.add(row)
    else:
        row.value = stored
        row.updated_by_user_id = user_id
        row.updated_at = utcnow()
    return row


def list_settings(*, mask_secrets: bool = True) -> dict:
    rows = db.session.query(SystemSetting).order_by(SystemSetting.key.asc()).all()
    result = {}
    for row in rows:
        value = row.value
        if mask_secrets and value and any(m in row.key.upper() for m in SECRET_MARKERS):
            value = "********"
        result[row.key] = value
    return result
