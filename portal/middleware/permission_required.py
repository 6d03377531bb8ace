"""
Permission Decorators — JWT-aware role checks for route protection.

Usage:
    @bp.route("/api/v1/admin/applications", methods=["GET"])
    @roles_required(ROLE_ADMIN)
    def list_applications():
        user = g.current_user
        ...

``super_admin`` passes every role check.  Failures raise
AuthenticationError (401) or PermissionDeniedError (403); the app error
handlers turn those into JSON, an HTML page or a login redirect.
"""

import functools
import logging

from flask import g, request

from portal.core.exceptions import AuthenticationError, PermissionDeniedError
from portal.middleware.jwt_auth import get_current_user
from portal.models.user import ROLE_SUPER_ADMIN

logger = logging.getLogger(__name__)


def _require_user():
    user = get_current_user()
    if user is None:
        raise AuthenticationError(getattr(g, "jwt_error", None) or "Authentication required")
    return user


def login_required(f):
    """Decorator: any authenticated, active user."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _require_user()
        return f(*args, **kwargs)
    return decorated


def roles_required(*roles: str):
    """Decorator: the user's role must be one of ``roles`` (super_admin always passes)."""
    allowed = set(roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user = _require_user()
            if user.role != ROLE_SUPER_ADMIN and user.role not in allowed:
                logger.warning(
                    "User %s (%s) denied on %s %s",
                    user.id, user.role, request.method, request.path,
                )
                raise PermissionDeniedError("You do not have permission to perform this action")
            return f(*args, **kwargs)
        return decorated
    return decorator
