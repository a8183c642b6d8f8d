# Overview: Flask API routes for sales order status changes.

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..extensions import db
from ..models import SalesOrder
from ..models.auth import ROLE_ADMIN, ROLE_INVENTORY_MANAGER, ROLE_SALES_MANAGER
from ..services import order_service
from ..validation import ServiceError


sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/sales-orders")


@sales_orders_bp.get("/<int:sales_order_id>")
@require_auth
def get_sales_order_route(sales_order_id: int):
    sales_order = db.session.get(SalesOrder, sales_order_id)
    if sales_order is None:
        return jsonify({"error": "Sales order not found"}), 404
    return jsonify({"data": sales_order.to_dict(include_lines=True)}), 200


@sales_orders_bp.patch("/<int:sales_order_id>/status")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_INVENTORY_MANAGER)
def update_status_route(sales_order_id: int):
    """
    Request body: {"status": "SHIPPED"}

    The linked storefront order follows in the same transaction and the
    customer is notified asynchronously.

    Returns:
        200: Updated sales order
        400: Invalid status
        404: Sales order not found
    """
    try:
        data = request.get_json(silent=True) or {}
        sales_order = order_service.update_sales_order_status(
            sales_order_id,
            data.get("status"),
            user_id=g.current_user.id,
        )
        return jsonify({"data": sales_order.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update sales order status")
        return jsonify({"error": "Internal server error"}), 500
