# Overview: Flask API routes for the public storefront; cart, checkout, customer account and payment.

# backend/storedesk/routes/shop.py
"""
Storefront API Routes

WHY: Everything a shopper does without a staff login: cookie cart, checkout,
customer sign-in, order history, and online payment.

DESIGN:
- Cart contents live in signed cookies (see shop_session); every read is
  revalidated against catalogue and stock
- Each cart mutation mirrors the cart into AbandonedCart (best effort)
- Order reads reconcile status from the back-office SalesOrder first

SECURITY:
- No bearer tokens here; customer identity is a signed cookie
- The payment webhook is authenticated by HMAC signature only
"""

from flask import Blueprint, current_app, jsonify, request

from .. import shop_session
from ..services import (
    abandoned_cart_service,
    auth_service,
    cart_service,
    checkout_service,
    order_service,
    payment_service,
)
from ..services.auth_service import AuthError, PasswordValidationError
from ..validation import ServiceError, pagination_meta, parse_pagination


shop_bp = Blueprint("shop", __name__, url_prefix="/api/shop")


def _error(e: ServiceError):
    return jsonify(e.to_dict()), e.status_code


def _cart_response(session_id: str, snapshot, *, status: int = 200, message: str | None = None, persist: bool = True):
    payload = snapshot.to_dict()
    if message:
        payload["message"] = message
    response = jsonify(payload)
    response.status_code = status
    if persist:
        shop_session.write_cart(response, session_id, snapshot.raw_items)
        abandoned_cart_service.track_cart(session_id, snapshot, shop_session.current_customer())
    return response


# =============================================================================
# CART
# =============================================================================

@shop_bp.get("/cart")
def get_cart_route():
    """
    Current cart, revalidated.

    Response includes `cleaned: true` when lines were dropped or clamped;
    the cookie is rewritten in that case.
    """
    try:
        session_id = shop_session.get_cart_session_id()
        items = shop_session.read_cart_items(session_id)
        snapshot = cart_service.build_snapshot(items)
        if session_id and snapshot.cleaned:
            return _cart_response(session_id, snapshot)
        return jsonify(snapshot.to_dict()), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.post("/cart")
def add_to_cart_route():
    """
    Request body:
    {
        "productId": 12,
        "quantity": 2   (optional, default: 1)
    }

    Returns:
        200: Updated cart
        400: Missing product id or insufficient stock (with availableStock)
        404: Product not found
    """
    try:
        data = request.get_json(silent=True) or {}
        session_id, _ = shop_session.ensure_cart_session_id()
        items = shop_session.read_cart_items(session_id)

        items = cart_service.add_item(items, data.get("productId"), data.get("quantity", 1))
        snapshot = cart_service.build_snapshot(items)
        return _cart_response(session_id, snapshot, message="Item added to cart")
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to add item to cart")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.put("/cart")
def update_cart_route():
    """
    Request body: {"productId": 12, "quantity": 3}. quantity <= 0 removes the line.
    """
    try:
        session_id = shop_session.get_cart_session_id()
        if not session_id:
            return jsonify({"error": "Cart not found"}), 404
        data = request.get_json(silent=True) or {}
        items = shop_session.read_cart_items(session_id)

        items = cart_service.update_item(items, data.get("productId"), data.get("quantity"))
        snapshot = cart_service.build_snapshot(items)
        return _cart_response(session_id, snapshot, message="Cart updated")
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to update cart")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.delete("/cart")
def delete_cart_route():
    """
    ?productId=12 removes one line; without it the whole cart is cleared
    (and its abandoned-cart record is closed out as converted).
    """
    try:
        session_id = shop_session.get_cart_session_id()
        if not session_id:
            return jsonify({"error": "Cart not found"}), 404

        product_id = request.args.get("productId")
        if product_id is None:
            product_id = (request.get_json(silent=True) or {}).get("productId")

        if product_id not in (None, ""):
            items = cart_service.remove_item(shop_session.read_cart_items(session_id), product_id)
            snapshot = cart_service.build_snapshot(items)
            return _cart_response(session_id, snapshot, message="Item removed from cart")

        snapshot = cart_service.build_snapshot([])
        response = _cart_response(session_id, snapshot, message="Cart cleared", persist=False)
        shop_session.clear_cart(response, session_id)
        abandoned_cart_service.track_cart(session_id, snapshot)
        return response
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to delete from cart")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CHECKOUT
# =============================================================================

@shop_bp.post("/checkout")
def checkout_route():
    """
    Request body:
    {
        "name": "Ama Mensah",
        "email": "ama@example.com",
        "phone": "0241234567",
        "shippingAddress": {...},
        "paymentMethod": "paystack",  (optional)
        "notes": "..."                (optional)
    }

    Returns:
        201: {order, invoice, salesOrder, cartAdjusted}; cart cookie cleared
        400: Empty cart, missing details, or insufficient stock
    """
    try:
        session_id = shop_session.get_cart_session_id()
        items = shop_session.read_cart_items(session_id)
        data = request.get_json(silent=True) or {}

        result = checkout_service.checkout(
            items,
            data,
            customer=shop_session.current_customer(),
            cart_session_id=session_id,
        )

        response = jsonify(result.to_dict())
        response.status_code = 201
        if session_id:
            shop_session.clear_cart(response, session_id)
        return response
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to check out")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CUSTOMER ACCOUNT
# =============================================================================

@shop_bp.post("/auth/register")
def register_customer_route():
    try:
        data = request.get_json(silent=True) or {}
        customer = auth_service.register_customer(
            data.get("email"),
            data.get("password"),
            first_name=data.get("firstName"),
            last_name=data.get("lastName"),
            phone=data.get("phone"),
        )
        response = jsonify({"customer": customer.to_dict()})
        response.status_code = 201
        shop_session.login_customer(response, customer)
        return response
    except (AuthError, PasswordValidationError) as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to register customer")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.post("/auth/login")
def login_customer_route():
    try:
        data = request.get_json(silent=True) or {}
        if not data.get("email") or not data.get("password"):
            return jsonify({"error": "email and password required"}), 400
        customer = auth_service.authenticate_customer(data.get("email"), data.get("password"))
        if not customer:
            return jsonify({"error": "Invalid credentials"}), 401
        response = jsonify({"customer": customer.to_dict()})
        shop_session.login_customer(response, customer)
        return response
    except Exception:
        current_app.logger.exception("Failed to log in customer")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.post("/auth/logout")
def logout_customer_route():
    response = jsonify({"message": "Logged out"})
    shop_session.logout_customer(response)
    return response


@shop_bp.get("/auth/me")
def current_customer_route():
    customer = shop_session.current_customer()
    if not customer:
        return jsonify({"error": "Not signed in"}), 401
    return jsonify({"customer": customer.to_dict()}), 200


# =============================================================================
# CUSTOMER ORDERS
# =============================================================================

def _customer_order_dict(order, include_items: bool = False) -> dict:
    data = order.to_dict(include_items=include_items)
    data["displayStatus"] = order_service.customer_display_status(order)
    return data


@shop_bp.get("/orders")
def list_customer_orders_route():
    try:
        customer = shop_session.current_customer()
        if not customer:
            return jsonify({"error": "Not signed in"}), 401
        page, limit = parse_pagination(request.args)
        rows, total = order_service.list_orders(customer_id=customer.id, page=page, limit=limit)
        meta = pagination_meta(page, limit, total)
        return jsonify({
            "data": [_customer_order_dict(o) for o in rows],
            "pagination": {"page": page, "limit": limit, "total": total, "pages": meta["pages"]},
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list customer orders")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.get("/orders/<int:order_id>")
def get_customer_order_route(order_id: int):
    try:
        customer = shop_session.current_customer()
        if not customer:
            return jsonify({"error": "Not signed in"}), 401
        order = order_service.get_order(order_id, customer_id=customer.id)
        return jsonify({"data": _customer_order_dict(order, include_items=True)}), 200
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to load customer order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# PAYMENT
# =============================================================================

@shop_bp.post("/payment/initiate")
def initiate_payment_route():
    """
    Request body:
    {
        "invoiceId": 5,            (or "invoiceNumber": "INV-000005")
        "amount": 112.5,           (major units)
        "paymentMethod": "card",
        "customerEmail": "..."     (optional)
    }

    Returns:
        200: {paymentReference, authorizationUrl, accessCode, gateway}
        400: Invalid input / no email
        404: Invoice not found
        502: Gateway rejected or unreachable
    """
    try:
        data = request.get_json(silent=True) or {}
        result = payment_service.initiate_payment(
            invoice_id=data.get("invoiceId"),
            invoice_number=data.get("invoiceNumber"),
            amount=data.get("amount"),
            payment_method=data.get("paymentMethod"),
            customer_email=data.get("customerEmail"),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to initiate payment")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.get("/payment/verify")
def verify_payment_route():
    try:
        reference = request.args.get("reference") or request.args.get("trxref")
        result = payment_service.verify_payment(reference)
        return jsonify(result), 200
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to verify payment")
        return jsonify({"error": "Internal server error"}), 500


@shop_bp.post("/payment/webhook")
def payment_webhook_route():
    try:
        result = payment_service.handle_webhook(
            request.get_data(),
            request.headers.get("x-paystack-signature"),
        )
        return jsonify(result), 200
    except ServiceError as e:
        return _error(e)
    except Exception:
        current_app.logger.exception("Failed to process payment webhook")
        return jsonify({"error": "Internal server error"}), 500
