# Overview: Flask API routes for staff views of storefront orders and abandoned carts.

# backend/storedesk/routes/ecommerce.py
"""
E-commerce Back-Office API Routes

WHY: Staff need to see what the storefront produced (orders, abandoned carts)
and to trigger reminder runs without waiting for the scheduler.

SECURITY:
- Order and cart listings: sales roles and admins
- Reminder run: admins, or a scheduler presenting X-Cron-Secret
"""

from flask import Blueprint, current_app, jsonify, request

from ..decorators import require_auth, require_auth_or_cron_secret, require_role
from ..models.auth import ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP
from ..services import abandoned_cart_service, order_service, reminder_service
from ..validation import ServiceError, pagination_meta, parse_pagination


ecommerce_bp = Blueprint("ecommerce", __name__, url_prefix="/api/ecommerce")

SALES_ROLES = (ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP)


def _parse_bool_arg(value):
    if value is None or value == "":
        return None
    return str(value).strip().lower() in ("1", "true", "yes")


# =============================================================================
# ORDERS
# =============================================================================

@ecommerce_bp.get("/orders")
@require_auth
@require_role(*SALES_ROLES)
def list_orders_route():
    """
    Query params: status, paymentStatus, search, page, limit.

    Each order is reconciled against its sales order before it is returned.
    """
    try:
        page, limit = parse_pagination(request.args)
        rows, total = order_service.list_orders(
            status=request.args.get("status"),
            payment_status=request.args.get("paymentStatus"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "data": [o.to_dict() for o in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list ecommerce orders")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.get("/orders/<int:order_id>")
@require_auth
@require_role(*SALES_ROLES)
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"data": order.to_dict(include_items=True)}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load ecommerce order")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# ABANDONED CARTS
# =============================================================================

@ecommerce_bp.get("/abandoned-carts")
@require_auth
@require_role(*SALES_ROLES)
def list_abandoned_carts_route():
    """
    Query params:
        status: active (default) | converted | all
        search: email, name or cart session id
        hasEmail: true | false
        page, limit
    """
    try:
        page, limit = parse_pagination(request.args)
        rows, total = abandoned_cart_service.list_carts(
            status=(request.args.get("status") or "active").lower(),
            search=request.args.get("search"),
            has_email=_parse_bool_arg(request.args.get("hasEmail")),
            page=page,
            limit=limit,
        )
        return jsonify({
            "data": [c.to_dict() for c in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to list abandoned carts")
        return jsonify({"error": "Internal server error"}), 500


@ecommerce_bp.post("/abandoned-carts/remind")
@require_auth_or_cron_secret
def send_reminders_route():
    """
    Run one reminder pass now.

    Returns the per-cart report; `enabled: false` when reminders are switched off.
    """
    try:
        report = reminder_service.dispatch_reminders()
        return jsonify(report), 200
    except Exception:
        current_app.logger.exception("Failed to send abandoned cart reminders")
        return jsonify({"error": "Internal server error"}), 500
