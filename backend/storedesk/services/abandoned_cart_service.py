# Overview: Service-layer operations for abandoned cart tracking and the staff listing.

"""
Abandoned Cart Tracker

WHY: The cart lives in a cookie, so the only way to remind a shopper about it
is to mirror it server-side on every change.

CONTRACT:
- upsert keyed by cart session id; last write wins
- an empty cart marks the row converted (nothing left to remind about)
- a non-empty cart on a converted row starts a fresh, unconverted cycle
- tracking failures are logged and swallowed; they never fail the cart call
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import AbandonedCart, Customer
from ..time_utils import utcnow
from .cart_service import CartSnapshot


STATUS_ACTIVE = "active"
STATUS_CONVERTED = "converted"
STATUS_ALL = "all"


def _apply_customer(cart: AbandonedCart, customer: Customer | None) -> None:
    if customer is None:
        return
    cart.customer_id = customer.id
    cart.customer_email = customer.email
    cart.customer_name = customer.full_name or cart.customer_name


def track_cart(session_id: str, snapshot: CartSnapshot, customer: Customer | None = None) -> AbandonedCart | None:
    """
    Mirror the session's current cart. Commits its own transaction.

    Returns the row, or None when the cart is empty with nothing tracked yet
    or when tracking failed.
    """
    if not session_id:
        return None
    try:
        now = utcnow()
        cart = db.session.query(AbandonedCart).filter_by(cart_session_id=session_id).first()

        if snapshot.is_empty:
            if cart is not None and not cart.converted_to_order:
                cart.items = []
                cart.subtotal_cents = 0
                cart.tax_cents = 0
                cart.total_cents = 0
                cart.converted_to_order = True
                cart.last_activity_at = now
                cart.updated_at = now
                db.session.commit()
            return cart

        if cart is None:
            cart = AbandonedCart(cart_session_id=session_id, reminder_count=0)
            db.session.add(cart)
        elif cart.converted_to_order:
            cart.converted_to_order = False
            cart.converted_order_id = None
            cart.reminder_sent_at = None

        cart.items = list(snapshot.raw_items)
        cart.subtotal_cents = snapshot.subtotal_cents
        cart.tax_cents = snapshot.tax_cents
        cart.total_cents = snapshot.subtotal_cents + snapshot.tax_cents
        cart.currency = snapshot.currency
        cart.last_activity_at = now
        cart.updated_at = now
        _apply_customer(cart, customer)

        db.session.commit()
        return cart
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to track abandoned cart %s", session_id)
        return None


def mark_converted(session_id: str, order_id: int | None = None) -> bool:
    """Flag the session's cart as converted. Best effort; commits."""
    if not session_id:
        return False
    try:
        cart = db.session.query(AbandonedCart).filter_by(cart_session_id=session_id).first()
        if cart is None:
            return False
        cart.converted_to_order = True
        if order_id is not None:
            cart.converted_order_id = order_id
        cart.updated_at = utcnow()
        db.session.commit()
        return True
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark abandoned cart %s converted", session_id)
        return False


def list_carts(
    *,
    status: str = STATUS_ACTIVE,
    search: str | None = None,
    has_email: bool | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[AbandonedCart], int]:
    """Staff listing, newest activity first. Returns (rows, total)."""
    q = db.session.query(AbandonedCart)

    if status == STATUS_ACTIVE:
        q = q.filter(AbandonedCart.converted_to_order.is_(False))
    elif status == STATUS_CONVERTED:
        q = q.filter(AbandonedCart.converted_to_order.is_(True))
    elif status != STATUS_ALL:
        raise ValueError(f"Invalid status filter: {status}")

    if has_email is True:
        q = q.filter(AbandonedCart.customer_email.isnot(None), AbandonedCart.customer_email != "")
    elif has_email is False:
        q = q.filter(or_(AbandonedCart.customer_email.is_(None), AbandonedCart.customer_email == ""))

    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            AbandonedCart.customer_email.ilike(like),
            AbandonedCart.customer_name.ilike(like),
            AbandonedCart.cart_session_id.ilike(like),
        ))

    total = q.count()
    rows = q.order_by(AbandonedCart.last_activity_at.desc(), AbandonedCart.id.desc()).offset(
        (page - 1) * limit
    ).limit(limit).all()
    return rows, total
