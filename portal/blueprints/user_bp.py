"""
User Blueprint — self-service profile and staff account management.

  GET    /api/v1/users/profile           — own profile
  PUT    /api/v1/users/profile           — update names, phone, email
  GET    /api/v1/users                   — list (admin)
  GET    /api/v1/users/<id>              — detail (admin)
  PUT    /api/v1/users/<id>              — role / status (super_admin)
  POST   /api/v1/users/<id>/suspend      — (admin)
  POST   /api/v1/users/<id>/activate     — (admin)
  DELETE /api/v1/users/<id>              — (super_admin)
"""

from flask import Blueprint, g, jsonify, request

from portal.blueprints import request_filters
from portal.middleware.permission_required import login_required, roles_required
from portal.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN
from portal.services import user_service

user_bp = Blueprint("user_bp", __name__, url_prefix="/api/v1/users")


# ── Self service ─────────────────────────────────────────────────────────

@user_bp.route("/profile", methods=["GET"])
@login_required
def get_profile():
    return jsonify(user_service.get_profile(g.current_user.id))


@user_bp.route("/profile", methods=["PUT", "PATCH"])
@login_required
def update_profile():
    data = request.get_json(silent=True) or {}
    return jsonify(user_service.update_profile(g.current_user.id, data).to_dict())


# ── Staff management ─────────────────────────────────────────────────────

@user_bp.route("", methods=["GET"])
@roles_required(ROLE_ADMIN)
def list_users():
    return jsonify(user_service.list_users(request_filters("role", "status", "search", "page", "limit")))


@user_bp.route("/<int:user_id>", methods=["GET"])
@roles_required(ROLE_ADMIN)
def get_user(user_id):
    return jsonify(user_service.get_profile(user_id))


@user_bp.route("/<int:user_id>", methods=["PUT", "PATCH"])
@roles_required(ROLE_SUPER_ADMIN)
def update_user(user_id):
    data = request.get_json(silent=True) or {}
    return jsonify(user_service.update_user(user_id, data, g.current_user).to_dict())


@user_bp.route("/<int:user_id>/suspend", methods=["POST"])
@roles_required(ROLE_ADMIN)
def suspend_user(user_id):
    return jsonify(user_service.set_user_status(user_id, "suspended", g.current_user).to_dict())


@user_bp.route("/<int:user_id>/activate", methods=["POST"])
@roles_required(ROLE_ADMIN)
def activate_user(user_id):
    return jsonify(user_service.set_user_status(user_id, "active", g.current_user).to_dict())


@user_bp.route("/<int:user_id>", methods=["DELETE"])
@roles_required(ROLE_SUPER_ADMIN)
def delete_user(user_id):
    user_service.delete_user(user_id, g.current_user)
    return jsonify({"deleted": True, "id": user_id})
