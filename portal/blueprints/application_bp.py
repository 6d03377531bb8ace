"""
Application Blueprint — citizen application endpoints.

  POST   /api/v1/applications                          — submit (JSON or multipart)
  GET    /api/v1/applications                          — my applications
  GET    /api/v1/applications/dashboard                — my counts per status
  GET    /api/v1/applications/required-documents       — documents per type
  GET    /api/v1/applications/<id>                     — detail (owner or staff)
  POST   /api/v1/applications/<id>/cancel              — cancel
  POST   /api/v1/applications/<id>/receipt             — upload payment receipt
  GET    /api/v1/applications/<id>/documents           — list documents
  POST   /api/v1/applications/<id>/documents           — add documents (multipart)
  DELETE /api/v1/applications/<id>/documents/<doc_id>  — delete a document
"""

import json
import logging

from flask import Blueprint, g, jsonify, request

from portal.blueprints import expected_version, request_filters
from portal.core.exceptions import NotFoundError, ValidationError
from portal.middleware.permission_required import login_required
from portal.services import application_service, document_service
from portal.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

application_bp = Blueprint("application_bp", __name__, url_prefix="/api/v1/applications")


def _request_payload() -> dict:
    """JSON body, or the form fields of a multipart submission.

    A multipart ``data`` field may carry the per-type fields as a JSON string.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}
    data = request.form.to_dict()
    raw = data.get("data")
    if isinstance(raw, str) and raw.strip():
        try:
            data["data"] = json.loads(raw)
        except ValueError as exc:
            raise ValidationError("data must be a JSON object", details={"data": "invalid_json"}) from exc
    return data


def _request_files() -> list:
    return [(field, f) for field, f in request.files.items(multi=True) if f and f.filename]


def _owned_application(application_id):
    app_row = application_service.get_application_for_user(application_id, g.current_user)
    if app_row.user_id != g.current_user.id:
        raise NotFoundError("Application", application_id)
    return app_row


# ═══════════════════════════════════════════════════════════════
# Submit / list
# ═══════════════════════════════════════════════════════════════

@application_bp.route("", methods=["POST"])
@login_required
def create_application():
    result = application_service.create_application(_request_payload(), g.current_user, _request_files())
    return jsonify(result), 201


@application_bp.route("", methods=["GET"])
@login_required
def list_applications():
    filters = request_filters("status", "type", "page", "limit")
    return jsonify(application_service.list_user_applications(g.current_user.id, filters))


@application_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    return jsonify(application_service.get_user_dashboard_stats(g.current_user.id))


@application_bp.route("/required-documents", methods=["GET"])
@login_required
def required_documents():
    app_type = request.args.get("type", "")
    if not app_type:
        raise ValidationError("type is required", details={"type": "required"})
    docs = document_service.get_required_documents(app_type, parse_bool(request.args.get("is_renewal")))
    return jsonify({"items": docs})


@application_bp.route("/<int:application_id>", methods=["GET"])
@login_required
def get_application(application_id):
    return jsonify(application_service.get_application_detail(application_id, g.current_user))


# ═══════════════════════════════════════════════════════════════
# Citizen transitions
# ═══════════════════════════════════════════════════════════════

@application_bp.route("/<int:application_id>/cancel", methods=["POST"])
@login_required
def cancel_application(application_id):
    data = request.get_json(silent=True) or {}
    result = application_service.cancel_application(
        application_id, g.current_user, expected_version=expected_version(data),
    )
    return jsonify(result)


@application_bp.route("/<int:application_id>/receipt", methods=["POST"])
@login_required
def upload_receipt(application_id):
    file = request.files.get("receipt") or request.files.get("file")
    if not file or not file.filename:
        raise ValidationError("Receipt file is required", details={"receipt": "required"})
    result = application_service.upload_receipt(
        application_id, g.current_user, file, expected_version=expected_version(request.form),
    )
    return jsonify(result)


# ═══════════════════════════════════════════════════════════════
# Documents
# ═══════════════════════════════════════════════════════════════

@application_bp.route("/<int:application_id>/documents", methods=["GET"])
@login_required
def list_documents(application_id):
    app_row = application_service.get_application_for_user(application_id, g.current_user)
    return jsonify({"items": document_service.list_documents(app_row.id)})


@application_bp.route("/<int:application_id>/documents", methods=["POST"])
@login_required
def add_documents(application_id):
    app_row = _owned_application(application_id)
    docs = document_service.add_documents(app_row, _request_files())
    return jsonify({"items": docs}), 201


@application_bp.route("/<int:application_id>/documents/<int:document_id>", methods=["DELETE"])
@login_required
def delete_document(application_id, document_id):
    app_row = _owned_application(application_id)
    document_service.delete_document(app_row, document_id)
    return jsonify({"deleted": True, "id": document_id})
