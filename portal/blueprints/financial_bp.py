"""
Financial Blueprint — payment verification desk.

  GET  /api/v1/financial/dashboard
  GET  /api/v1/financial/payments/pending
  GET  /api/v1/financial/payments/history
  GET  /api/v1/financial/payments/history/export   — xlsx download
  GET  /api/v1/financial/payments/<id>
  POST /api/v1/financial/payments/<id>/verify
  POST /api/v1/financial/payments/<id>/reject
"""

import logging
from datetime import date

from flask import Blueprint, Response, g, jsonify, request

from portal.blueprints import expected_version, request_filters
from portal.middleware.permission_required import roles_required
from portal.models.user import ROLE_ADMIN, ROLE_FINANCIAL_OFFICER
from portal.services import financial_service

logger = logging.getLogger(__name__)

financial_bp = Blueprint("financial_bp", __name__, url_prefix="/api/v1/financial")

_HISTORY_FILTERS = ("start_date", "end_date", "type", "search", "page", "limit")


@financial_bp.route("/dashboard", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def dashboard():
    return jsonify(financial_service.get_dashboard_stats())


@financial_bp.route("/payments/pending", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def pending_payments():
    return jsonify(financial_service.list_pending_payments(request_filters("status", "search", "page", "limit")))


@financial_bp.route("/payments/history", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def payment_history():
    return jsonify(financial_service.get_payment_history(request_filters(*_HISTORY_FILTERS)))


@financial_bp.route("/payments/history/export", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def export_history():
    content = financial_service.export_payment_history_xlsx(request_filters(*_HISTORY_FILTERS))
    filename = f"payments_{date.today().isoformat()}.xlsx"
    logger.info("Payment report exported by user %s", g.current_user.id)
    return Response(
        content,
        mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@financial_bp.route("/payments/<int:application_id>", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def payment_details(application_id):
    return jsonify(financial_service.get_payment_details(application_id))


@financial_bp.route("/payments/<int:application_id>/verify", methods=["POST"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def verify_payment(application_id):
    """Body: { "notes"?: "...", "version"?: 3 }"""
    data = request.get_json(silent=True) or {}
    result = financial_service.verify_payment(
        application_id, g.current_user, notes=data.get("notes"), expected_version=expected_version(data),
    )
    return jsonify(result)


@financial_bp.route("/payments/<int:application_id>/reject", methods=["POST"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def reject_payment(application_id):
    """Body: { "reason": "...", "version"?: 3 }"""
    data = request.get_json(silent=True) or {}
    result = financial_service.reject_payment(
        application_id, g.current_user, data.get("reason"), expected_version=expected_version(data),
    )
    return jsonify(result)
