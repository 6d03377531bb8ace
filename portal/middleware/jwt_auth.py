"""
JWT Auth Middleware — parses the access token and sets g.jwt_*.

Token sources, in order:
  1. Authorization: Bearer <token>   (API clients)
  2. ``access_token`` cookie          (server-rendered views, browser fetches)

The hook never rejects a request by itself; it only records who is
calling.  Route decorators in ``permission_required`` decide access.
"""

import logging

import jwt as pyjwt
from flask import current_app, g, request

from portal.models import db
from portal.models.user import User
from portal.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/register",
    "/api/v1/auth/refresh",
    "/api/v1/health",
    "/api/v1/payments/callback",
    "/static/",
)


def _extract_token():
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip()
    return request.cookies.get(ACCESS_COOKIE)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = None
        g.current_user = None

        path = request.path
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        token = _extract_token()
        if not token:
            return

        try:
            payload = decode_access_token(token)
            g.jwt_user_id = int(payload["sub"])
            g.jwt_role = payload.get("role")
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = "Token expired"
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            g.jwt_error = "Invalid token"


def get_current_user():
    """Return the active User behind the request's token, or None.

    The role is re-read from the database so a suspension or role change
    applies immediately, without waiting for token expiry.
    """
    if getattr(g, "current_user", None) is not None:
        return g.current_user
    user_id = getattr(g, "jwt_user_id", None)
    if user_id is None:
        return None
    user = db.session.get(User, user_id)
    if user is None or user.status != "active":
        return None
    g.current_user = user
    return user


def set_auth_cookies(response, tokens: dict):
    """Attach the token pair as HttpOnly cookies for browser clients."""
    secure = current_app.config.get("JWT_COOKIE_SECURE", False)
    response.set_cookie(
        ACCESS_COOKIE, tokens["access_token"],
        max_age=current_app.config.get("JWT_ACCESS_EXPIRES", 7200),
        httponly=True, secure=secure, samesite="Lax",
    )
    if tokens.get("refresh_token"):
        response.set_cookie(
            REFRESH_COOKIE, tokens["refresh_token"],
            max_age=current_app.config.get("JWT_REFRESH_EXPIRES", 604800),
            httponly=True, secure=secure, samesite="Strict", path="/api/v1/auth",
        )
    return response


def clear_auth_cookies(response):
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE, path="/api/v1/auth")
    return response
