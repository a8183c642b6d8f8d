# Overview: Request and role decorators for API routes.

import hmac
from functools import wraps

from flask import g, jsonify, request

from .models.auth import ROLE_ADMIN, ROLE_SUPER_ADMIN
from .services import session_service, settings_service


def _is_authenticated() -> bool:
    return getattr(g, "current_user", None) is not None


def require_auth(f):
    """
    Require a staff bearer token.

    Sets:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object

    SECURITY: Returns 401 for a missing, invalid, expired or revoked token
    and for deactivated users.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]
        context = session_service.validate_session(token)
        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles: str):
    """
    Require one of `roles`. SUPER_ADMIN passes every check.

    Must be stacked below @require_auth.
    """
    allowed = set(roles) | {ROLE_SUPER_ADMIN}

    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401
            if g.current_user.role not in allowed:
                return jsonify({
                    "error": "Permission denied",
                    "required_roles": sorted(allowed),
                }), 403
            return f(*args, **kwargs)
        return decorated_function
    return decorator


require_admin = require_role(ROLE_ADMIN)


def require_auth_or_cron_secret(f):
    """
    Scheduled jobs call in with X-Cron-Secret instead of a user token.
    Without a matching secret this behaves like @require_auth + admin role.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        provided = request.headers.get("X-Cron-Secret")
        expected = settings_service.get_setting(settings_service.CRON_SECRET)
        if provided and expected and hmac.compare_digest(str(provided), str(expected)):
            g.current_user = None
            return f(*args, **kwargs)
        return require_auth(require_admin(f))(*args, **kwargs)

    return decorated_function
