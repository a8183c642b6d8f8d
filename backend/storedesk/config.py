# backend/storedesk/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key (also signs cart cookies)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/storedesk.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///storedesk.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Public storefront base URL used in emails and gateway callbacks
    SHOP_BASE_URL = os.environ.get("SHOP_BASE_URL", "http://localhost:3000")
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", False)

    # Payment gateway (settings table wins over these)
    PAYSTACK_API_BASE = os.environ.get("PAYSTACK_API_BASE", "https://api.paystack.co")
    PAYSTACK_SECRET_KEY = os.environ.get("PAYSTACK_SECRET_KEY")
    PAYSTACK_PUBLIC_KEY = os.environ.get("PAYSTACK_PUBLIC_KEY")

    # Outbound email (settings table wins over these)
    SMTP_HOST = os.environ.get("SMTP_HOST")
    SMTP_PORT = os.environ.get("SMTP_PORT", "587")
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD")
    SMTP_FROM_ADDRESS = os.environ.get("SMTP_FROM_ADDRESS", "noreply@storedesk.local")
    SMTP_FROM_NAME = os.environ.get("SMTP_FROM_NAME", "Storedesk")
    SMTP_ENCRYPTION = os.environ.get("SMTP_ENCRYPTION", "tls")

    # Outbound SMS
    SMS_API_URL = os.environ.get("SMS_API_URL", "https://deywuro.com/api/sms")
    SMS_USERNAME = os.environ.get("SMS_USERNAME")
    SMS_PASSWORD = os.environ.get("SMS_PASSWORD")
    SMS_SENDER_ID = os.environ.get("SMS_SENDER_ID", "Storedesk")

    # Run background tasks inline at enqueue time when no worker is deployed
    TASKS_EAGER = _env_bool("TASKS_EAGER", True)
