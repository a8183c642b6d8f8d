# Overview: Flask API routes for returns operations; parses input and returns JSON responses.

# backend/storedesk/routes/returns.py
"""
Return Processing API Routes

WHY: Returns against a sales order, with administrator approval driving
restock and credit note issuance.

DESIGN:
- One return per sales order (409 on a second attempt)
- Admin-created returns are approved immediately; others wait as PENDING
- Approval queues the restock/credit-note step; the HTTP call does not wait on it

SECURITY:
- Create/list/view: admins, sales managers and sales reps
- Approve: ADMIN / SUPER_ADMIN only (enforced in the service)
- All changes logged with user attribution
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ACCOUNTANT, ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP
from ..services import activity_service, return_service
from ..validation import ServiceError, pagination_meta, parse_pagination


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")

RETURN_ROLES = (ROLE_ADMIN, ROLE_SALES_MANAGER, ROLE_SALES_REP, ROLE_ACCOUNTANT)


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("")
@require_auth
@require_role(*RETURN_ROLES)
def create_return_route():
    """
    Create a return document.

    Request body:
    {
        "salesOrderId": 7,
        "reason": "DAMAGED",
        "lines": [
            {"productId": 3, "quantity": 1, "unitPrice": 50.0, "reason": "cracked"}
        ],
        "accountId": 2,   (optional, defaults to the sales order's account)
        "notes": "..."    (optional)
    }

    Returns:
        201: Return created (APPROVED for admins, PENDING otherwise)
        400: Invalid input
        404: Sales order or account not found
        409: A return already exists for this sales order
    """
    try:
        data = request.get_json(silent=True) or {}
        return_doc = return_service.create_return(
            sales_order_id=data.get("salesOrderId"),
            reason=data.get("reason"),
            lines=data.get("lines"),
            user=g.current_user,
            account_id=data.get("accountId"),
            notes=data.get("notes"),
        )
        return jsonify({"data": return_doc.to_dict()}), 201
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN QUERIES
# =============================================================================

@returns_bp.get("")
@require_auth
@require_role(*RETURN_ROLES)
def list_returns_route():
    """Query params: status, reason, accountId, search, page, limit."""
    try:
        page, limit = parse_pagination(request.args)
        account_id = request.args.get("accountId", type=int)
        rows, total = return_service.list_returns(
            status=request.args.get("status"),
            reason=request.args.get("reason"),
            account_id=account_id,
            search=request.args.get("search"),
            page=page,
            limit=limit,
        )
        return jsonify({
            "data": [r.to_dict(include_lines=False) for r in rows],
            "pagination": pagination_meta(page, limit, total),
        }), 200
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
@require_auth
@require_role(*RETURN_ROLES)
def get_return_route(return_id: int):
    try:
        return_doc = return_service.get_return(return_id)
        data = return_doc.to_dict()
        data["activity"] = [a.to_dict() for a in activity_service.list_activity("RETURN", return_doc.id)]
        return jsonify({"data": data}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN WORKFLOW
# =============================================================================

@returns_bp.put("/<int:return_id>")
@require_auth
@require_role(*RETURN_ROLES)
def update_return_route(return_id: int):
    """
    Request body (all optional):
    {
        "status": "APPROVED" | "REJECTED" | "REFUNDED" | "COMPLETED" | "CANCELLED",
        "refundAmount": 20.0,
        "refundMethod": "CREDIT_NOTE",
        "notes": "..."
    }

    Returns:
        200: Updated return
        400: Illegal transition or bad refund amount
        403: Non-admin approval
    """
    try:
        data = request.get_json(silent=True) or {}
        return_doc = return_service.update_return(return_id, data, g.current_user)
        return jsonify({"data": return_doc.to_dict()}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.delete("/<int:return_id>")
@require_auth
@require_role(ROLE_ADMIN, ROLE_SALES_MANAGER)
def delete_return_route(return_id: int):
    try:
        return_service.delete_return(return_id, g.current_user)
        return jsonify({"message": "Return deleted"}), 200
    except ServiceError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete return")
        return jsonify({"error": "Internal server error"}), 500
