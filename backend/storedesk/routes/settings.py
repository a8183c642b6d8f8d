from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..extensions import db
from ..services import settings_service
from ..services.settings_service import SettingsError


settings_bp = Blueprint("settings", __name__, url_prefix="/api")


def _parse_updates(payload: dict) -> dict:
    if isinstance(payload.get("settings"), dict):
        return payload["settings"]
    key = payload.get("key")
    if not key:
        return {}
    return {key: payload.get("value")}


@settings_bp.get("/settings")
@require_auth
@require_admin
def get_settings_route():
    """Stored settings with secrets masked, plus the effective value of each known key."""
    known = (
        settings_service.TAX_RATE,
        settings_service.RETURN_TAX_RATE,
        settings_service.SEND_ABANDONED_CART_REMINDERS,
        settings_service.ABANDONED_CART_DELAY_HOURS,
        settings_service.SEND_ORDER_CONFIRMATION,
        settings_service.COMPANY_NAME,
    )
    return jsonify({
        "stored": settings_service.list_settings(mask_secrets=True),
        "effective": settings_service.get_settings(known),
    }), 200


@settings_bp.put("/settings")
@require_auth
@require_admin
def update_settings_route():
    """
    Request body, either form:
        {"key": "ECOMMERCE_TAX_RATE", "value": "15"}
        {"settings": {"ECOMMERCE_TAX_RATE": "15", "company_name": "Acme"}}
    """
    try:
        updates = _parse_updates(request.get_json(silent=True) or {})
        if not updates:
            return jsonify({"error": "No settings provided"}), 400

        for key, value in updates.items():
            settings_service.set_setting(key, value, user_id=g.current_user.id)
        db.session.commit()
        return jsonify({"stored": settings_service.list_settings(mask_secrets=True)}), 200
    except SettingsError as e:
        db.session.rollback()
        return jsonify({"error": str(e)}), 400
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to update settings")
        return jsonify({"error": "Internal server error"}), 500
