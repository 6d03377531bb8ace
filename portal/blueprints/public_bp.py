"""
Public Blueprint — unauthenticated lookups.

  GET /api/v1/public/info
  GET /api/v1/public/news                    — published, ?category=&page=&limit=
  GET /api/v1/public/news/<id>
  GET /api/v1/public/prices
  GET /api/v1/public/statuses                — ?category=
  GET /api/v1/public/required-documents/<service_category>
  GET /api/v1/public/track/<application_number>
"""

from flask import Blueprint, jsonify, request

from portal.services import application_service, news_service, public_service
from portal.utils.helpers import parse_bool

public_bp = Blueprint("public_bp", __name__, url_prefix="/api/v1/public")


@public_bp.route("/info", methods=["GET"])
def portal_info():
    return jsonify(public_service.get_portal_info())


@public_bp.route("/news", methods=["GET"])
def list_news():
    result = news_service.list_published_news(
        page=request.args.get("page", 1, type=int),
        limit=request.args.get("limit", 10, type=int),
        category=request.args.get("category") or None,
    )
    return jsonify(result)


@public_bp.route("/news/<int:news_id>", methods=["GET"])
def get_news(news_id):
    return jsonify(news_service.get_published_news(news_id))


@public_bp.route("/prices", methods=["GET"])
def prices():
    return jsonify(public_service.get_active_prices())


@public_bp.route("/statuses", methods=["GET"])
def statuses():
    return jsonify({"items": public_service.get_application_statuses(request.args.get("category") or None)})


@public_bp.route("/required-documents/<service_category>", methods=["GET"])
def required_documents(service_category):
    docs = public_service.get_required_documents(service_category, parse_bool(request.args.get("is_renewal")))
    return jsonify({"items": docs})


@public_bp.route("/track/<path:application_number>", methods=["GET"])
def track(application_number):
    return jsonify(application_service.track_by_number(application_number))
