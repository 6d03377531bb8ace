"""
Auth Blueprint — national-id login and JWT endpoints.

  POST /api/v1/auth/register         — Citizen sign-up → JWT pair
  POST /api/v1/auth/login            — National ID + password → JWT pair
  POST /api/v1/auth/refresh          — Refresh token → rotated pair
  POST /api/v1/auth/logout           — Revoke refresh token (or all with all=true)
  POST /api/v1/auth/forgot-password  — Issue a reset token
  POST /api/v1/auth/reset-password   — Token + new password
  POST /api/v1/auth/change-password  — Current + new password
  GET  /api/v1/auth/me               — Current user profile
"""

import logging

from flask import Blueprint, current_app, g, jsonify, request

from portal.middleware.jwt_auth import REFRESH_COOKIE, clear_auth_cookies, set_auth_cookies
from portal.middleware.permission_required import login_required
from portal.services import auth_service, user_service
from portal.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth_bp", __name__, url_prefix="/api/v1/auth")


def _client_info():
    return request.remote_addr, request.headers.get("User-Agent", "")[:255]


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/register
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/register", methods=["POST"])
def register():
    """
    Create a citizen account.

    Body: { "national_id", "phone", "first_name_ar", "last_name_ar",
            "password", "password_confirm", "email"? }
    """
    data = request.get_json(silent=True) or {}
    result = auth_service.register_user(data, *_client_info())
    resp = jsonify({"user": result["user"], **result["tokens"]})
    set_auth_cookies(resp, result["tokens"])
    return resp, 201


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/login
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/login", methods=["POST"])
def login():
    """
    Authenticate with national ID + password, return JWT pair.

    Body: { "national_id": "...", "password": "..." }
    """
    data = request.get_json(silent=True) or {}
    result = auth_service.authenticate(
        data.get("national_id", ""), data.get("password", ""), *_client_info(),
    )
    resp = jsonify({"user": result["user"], **result["tokens"]})
    set_auth_cookies(resp, result["tokens"])
    return resp, 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/refresh
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """Body: { "refresh_token": "..." } (or the refresh cookie)."""
    data = request.get_json(silent=True) or {}
    token = data.get("refresh_token") or request.cookies.get(REFRESH_COOKIE, "")
    tokens = auth_service.refresh_tokens(token, *_client_info())
    resp = jsonify(tokens)
    set_auth_cookies(resp, tokens)
    return resp, 200


# ═══════════════════════════════════════════════════════════════
# POST /api/v1/auth/logout
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/logout", methods=["POST"])
def logout():
    """Body: { "refresh_token": "...", "all": false }"""
    data = request.get_json(silent=True) or {}
    token = data.get("refresh_token") or request.cookies.get(REFRESH_COOKIE)
    revoked = auth_service.logout(
        refresh_token=token,
        user_id=g.jwt_user_id,
        everywhere=parse_bool(data.get("all")),
    )
    resp = jsonify({"message": "Logged out", "revoked_sessions": revoked})
    clear_auth_cookies(resp)
    return resp, 200


# ═══════════════════════════════════════════════════════════════
# Password flows
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    """
    Issue a password reset token.

    The response never says whether the national ID exists.  Outside
    production the raw token is echoed so the flow can be completed
    without an SMS gateway.
    """
    data = request.get_json(silent=True) or {}
    token = auth_service.request_password_reset(data.get("national_id", ""))
    body = {"message": "If the account exists, a reset code has been issued"}
    if token and current_app.config.get("EXPOSE_RESET_TOKEN"):
        body["reset_token"] = token
    return jsonify(body), 200


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    """Body: { "token", "password", "password_confirm" }"""
    data = request.get_json(silent=True) or {}
    auth_service.reset_password(data.get("token", ""), data.get("password", ""), data.get("password_confirm"))
    return jsonify({"message": "Password has been reset"}), 200


@auth_bp.route("/change-password", methods=["POST"])
@login_required
def change_password():
    """Body: { "current_password", "new_password", "new_password_confirm" }"""
    data = request.get_json(silent=True) or {}
    auth_service.change_password(
        g.current_user,
        data.get("current_password", ""),
        data.get("new_password", ""),
        data.get("new_password_confirm"),
    )
    resp = jsonify({"message": "Password changed; please log in again"})
    clear_auth_cookies(resp)
    return resp, 200


# ═══════════════════════════════════════════════════════════════
# GET /api/v1/auth/me
# ═══════════════════════════════════════════════════════════════
@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    return jsonify(user_service.get_profile(g.current_user.id)), 200
