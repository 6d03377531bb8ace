"""
Admin Blueprint — review desk and reference-data management.

Application review:
  GET  /api/v1/admin/dashboard
  GET  /api/v1/admin/applications
  GET  /api/v1/admin/applications/<id>
  POST /api/v1/admin/applications/<id>/<action>     — start_review | approve | reject | mark_ready | complete
  GET  /api/v1/admin/applications/<id>/supply-order

Reference data:
  GET|POST /api/v1/admin/prices,  PUT|DELETE /api/v1/admin/prices/<id>
  GET|POST /api/v1/admin/news,    GET|PUT|DELETE /api/v1/admin/news/<id>, POST .../toggle-publish
  GET|POST /api/v1/admin/required-documents, PUT|DELETE /api/v1/admin/required-documents/<id>

Audit (super_admin only):
  GET /api/v1/admin/audit-logs
  GET /api/v1/admin/audit-logs/filters
"""

import logging

from flask import Blueprint, g, jsonify, request

from portal.blueprints import expected_version, request_filters
from portal.middleware.permission_required import roles_required
from portal.models.user import ROLE_ADMIN, ROLE_SUPER_ADMIN
from portal.services import (
    admin_service,
    audit_service,
    document_service,
    news_service,
    pricing_service,
)

logger = logging.getLogger(__name__)

admin_bp = Blueprint("admin_bp", __name__, url_prefix="/api/v1/admin")

# URL action → lifecycle event
_ACTION_EVENTS = {
    "start-review": "start_review",
    "start_review": "start_review",
    "approve": "approve",
    "reject": "reject",
    "mark-ready": "mark_ready",
    "mark_ready": "mark_ready",
    "complete": "complete",
}


# ═══════════════════════════════════════════════════════════════════════════
#  APPLICATION REVIEW
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/dashboard", methods=["GET"])
@roles_required(ROLE_ADMIN)
def dashboard():
    return jsonify(admin_service.get_dashboard_stats())


@admin_bp.route("/applications", methods=["GET"])
@roles_required(ROLE_ADMIN)
def list_applications():
    filters = request_filters("status", "type", "category", "search", "start_date", "end_date", "page", "limit")
    return jsonify(admin_service.list_applications(filters))


@admin_bp.route("/applications/<int:application_id>", methods=["GET"])
@roles_required(ROLE_ADMIN)
def get_application(application_id):
    return jsonify(admin_service.get_application_for_review(application_id, g.current_user))


@admin_bp.route("/applications/<int:application_id>/<action>", methods=["POST"])
@roles_required(ROLE_ADMIN)
def transition(application_id, action):
    """
    Fire a review event.

    Body: { "reason"?: "...", "notes"?: "...", "version"?: 3 }
    Header: If-Match: <version> (optional)
    """
    data = request.get_json(silent=True) or {}
    event = _ACTION_EVENTS.get(action, action)
    result = admin_service.review_transition(
        application_id, event, g.current_user,
        reason=data.get("reason"),
        notes=data.get("notes"),
        expected_version=expected_version(data),
    )
    return jsonify(result)


@admin_bp.route("/applications/<int:application_id>/supply-order", methods=["GET"])
@roles_required(ROLE_ADMIN)
def supply_order(application_id):
    return jsonify(admin_service.get_supply_order_data(application_id))


# ═══════════════════════════════════════════════════════════════════════════
#  PRICES
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/prices", methods=["GET"])
@roles_required(ROLE_ADMIN)
def list_prices():
    filters = request_filters("license_type", "category", "is_active")
    return jsonify({"items": pricing_service.list_prices(filters)})


@admin_bp.route("/prices", methods=["POST"])
@roles_required(ROLE_ADMIN)
def create_price():
    data = request.get_json(silent=True) or {}
    row = pricing_service.create_price(data, g.current_user)
    return jsonify(row.to_dict()), 201


@admin_bp.route("/prices/<int:price_id>", methods=["PUT", "PATCH"])
@roles_required(ROLE_ADMIN)
def update_price(price_id):
    data = request.get_json(silent=True) or {}
    return jsonify(pricing_service.update_price(price_id, data, g.current_user).to_dict())


@admin_bp.route("/prices/<int:price_id>", methods=["DELETE"])
@roles_required(ROLE_ADMIN)
def delete_price(price_id):
    pricing_service.delete_price(price_id, g.current_user)
    return jsonify({"deleted": True, "id": price_id})


# ═══════════════════════════════════════════════════════════════════════════
#  NEWS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/news", methods=["GET"])
@roles_required(ROLE_ADMIN)
def list_news():
    filters = request_filters("search", "category", "published", "page", "limit")
    return jsonify(news_service.list_news(filters))


@admin_bp.route("/news", methods=["POST"])
@roles_required(ROLE_ADMIN)
def create_news():
    data = request.get_json(silent=True) or {}
    return jsonify(news_service.create_news(data, g.current_user).to_dict()), 201


@admin_bp.route("/news/<int:news_id>", methods=["GET"])
@roles_required(ROLE_ADMIN)
def get_news(news_id):
    return jsonify(news_service.get_news(news_id).to_dict())


@admin_bp.route("/news/<int:news_id>", methods=["PUT", "PATCH"])
@roles_required(ROLE_ADMIN)
def update_news(news_id):
    data = request.get_json(silent=True) or {}
    return jsonify(news_service.update_news(news_id, data, g.current_user).to_dict())


@admin_bp.route("/news/<int:news_id>", methods=["DELETE"])
@roles_required(ROLE_ADMIN)
def delete_news(news_id):
    news_service.delete_news(news_id, g.current_user)
    return jsonify({"deleted": True, "id": news_id})


@admin_bp.route("/news/<int:news_id>/toggle-publish", methods=["POST"])
@roles_required(ROLE_ADMIN)
def toggle_publish(news_id):
    return jsonify(news_service.toggle_publish(news_id, g.current_user).to_dict())


# ═══════════════════════════════════════════════════════════════════════════
#  REQUIRED DOCUMENTS
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/required-documents", methods=["GET"])
@roles_required(ROLE_ADMIN)
def list_required_documents():
    return jsonify({"items": document_service.list_required_document_rows(request.args.get("service_category"))})


@admin_bp.route("/required-documents", methods=["POST"])
@roles_required(ROLE_ADMIN)
def create_required_document():
    data = request.get_json(silent=True) or {}
    return jsonify(document_service.create_required_document(data, g.current_user).to_dict()), 201


@admin_bp.route("/required-documents/<int:row_id>", methods=["PUT", "PATCH"])
@roles_required(ROLE_ADMIN)
def update_required_document(row_id):
    data = request.get_json(silent=True) or {}
    return jsonify(document_service.update_required_document(row_id, data, g.current_user).to_dict())


@admin_bp.route("/required-documents/<int:row_id>", methods=["DELETE"])
@roles_required(ROLE_ADMIN)
def delete_required_document(row_id):
    document_service.delete_required_document(row_id, g.current_user)
    return jsonify({"deleted": True, "id": row_id})


# ═══════════════════════════════════════════════════════════════════════════
#  AUDIT LOG
# ═══════════════════════════════════════════════════════════════════════════

@admin_bp.route("/audit-logs", methods=["GET"])
@roles_required(ROLE_SUPER_ADMIN)
def list_audit_logs():
    filters = request_filters("entity_type", "entity_id", "action", "actor_user_id",
                              "start_date", "end_date", "page", "limit")
    return jsonify(audit_service.list_audit_logs(filters))


@admin_bp.route("/audit-logs/filters", methods=["GET"])
@roles_required(ROLE_SUPER_ADMIN)
def audit_filter_options():
    return jsonify(audit_service.get_filter_options())
