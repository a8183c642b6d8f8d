# Overview: Storefront cookie handling for cart contents and signed-in customers.

"""
Storefront sessions live entirely in cookies:

- cart_session: opaque UUID identifying the browser's cart (HTTP-only, 7 days)
- cart_<session>: signed JSON {"items": [{"productId", "quantity"}]}
- shop_customer: signed customer id for the storefront login (30 days)

Signing uses the app SECRET_KEY via itsdangerous, so a tampered cookie reads
as empty rather than as attacker-chosen contents.
"""

from __future__ import annotations

import uuid

from flask import current_app, request
from itsdangerous import BadSignature, URLSafeSerializer, URLSafeTimedSerializer

from .extensions import db
from .models import Customer


CART_SESSION_COOKIE = "cart_session"
CART_COOKIE_PREFIX = "cart_"
CUSTOMER_COOKIE = "shop_customer"
CART_MAX_AGE = 60 * 60 * 24 * 7
CUSTOMER_MAX_AGE = 60 * 60 * 24 * 30


def _cart_serializer() -> URLSafeSerializer:
    return URLSafeSerializer(current_app.secret_key, salt="storedesk-cart")


def _customer_serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(current_app.secret_key, salt="storedesk-customer")


def _cookie_kwargs(max_age: int) -> dict:
    return {
        "max_age": max_age,
        "httponly": True,
        "samesite": "Lax",
        "secure": bool(current_app.config.get("SESSION_COOKIE_SECURE")),
        "path": "/",
    }


# =============================================================================
# CART
# =============================================================================

def get_cart_session_id() -> str | None:
    value = request.cookies.get(CART_SESSION_COOKIE)
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def ensure_cart_session_id() -> tuple[str, bool]:
    """Returns (session_id, is_new)."""
    existing = get_cart_session_id()
    if existing:
        return existing, False
    return str(uuid.uuid4()), True


def _normalize_items(raw) -> list[dict]:
    if not isinstance(raw, list):
        return []
    items = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        product_id = entry.get("productId")
        quantity = entry.get("quantity")
        if isinstance(product_id, bool) or isinstance(quantity, bool):
            continue
        if not isinstance(product_id, int) or not isinstance(quantity, int):
            continue
        items.append({"productId": product_id, "quantity": quantity})
    return items


def read_cart_items(session_id: str | None) -> list[dict]:
    if not session_id:
        return []
    raw = request.cookies.get(f"{CART_COOKIE_PREFIX}{session_id}")
    if not raw:
        return []
    try:
        data = _cart_serializer().loads(raw)
    except BadSignature:
        current_app.logger.warning("Discarding cart cookie with bad signature for %s", session_id)
        return []
    if not isinstance(data, dict):
        return []
    return _normalize_items(data.get("items"))


def write_cart(response, session_id: str, items: list[dict]) -> None:
    kwargs = _cookie_kwargs(CART_MAX_AGE)
    response.set_cookie(CART_SESSION_COOKIE, session_id, **kwargs)
    response.set_cookie(
        f"{CART_COOKIE_PREFIX}{session_id}",
        _cart_serializer().dumps({"items": items}),
        **kwargs,
    )


def clear_cart(response, session_id: str) -> None:
    response.delete_cookie(f"{CART_COOKIE_PREFIX}{session_id}", path="/")


# =============================================================================
# CUSTOMER LOGIN
# =============================================================================

def current_customer() -> Customer | None:
    raw = request.cookies.get(CUSTOMER_COOKIE)
    if not raw:
        return None
    try:
        customer_id = _customer_serializer().loads(raw, max_age=CUSTOMER_MAX_AGE)
    except BadSignature:
        return None
    if not isinstance(customer_id, int):
        return None
    customer = db.session.get(Customer, customer_id)
    if not customer or not customer.is_active:
        return None
    return customer


def login_customer(response, customer: Customer) -> None:
    response.set_cookie(
        CUSTOMER_COOKIE,
        _customer_serializer().dumps(customer.id),
        **_cookie_kwargs(CUSTOMER_MAX_AGE),
    )


def logout_customer(response) -> None:
    response.delete_cookie(CUSTOMER_COOKIE, path="/")
