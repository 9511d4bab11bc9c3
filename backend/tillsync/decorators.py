# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import jsonify, g

from .services import permission_service


def _has_tenant_context() -> bool:
    return getattr(g, "business_id", None) is not None and getattr(g, "user_id", None) is not None


def require_tenant_context(f):
    """
    Require the caller identity established by the upstream auth layer.

    MULTI-TENANT: Expects the following Flask g attributes:
    - g.business_id: The business (tenant) the request acts in - REQUIRED
    - g.user_id: The authenticated user - REQUIRED

    Returns 401 if either is missing.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not _has_tenant_context():
            return jsonify({"error": "Authentication required"}), 401
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """
    Require a specific permission in the current business.

    Must be stacked below @require_tenant_context.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _has_tenant_context():
                return jsonify({"error": "Authentication required"}), 401

            if not permission_service.user_has_permission(g.user_id, g.business_id, permission_code):
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator
