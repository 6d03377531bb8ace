"""
Payment Blueprint — Paymob checkout for citizens.

  POST /api/v1/payments/<id>/initiate   — create a gateway order, return the iframe URL
  GET  /api/v1/payments/<id>/status     — paid | pending | not_required
  POST /api/v1/payments/callback        — gateway webhook (HMAC-authenticated)
  GET  /api/v1/payments/redirect        — browser return from checkout

The webhook always answers 200: the gateway retries on anything else,
and the outcome is recorded in the response body and the logs.
"""

import logging

from flask import Blueprint, g, jsonify, redirect, request, url_for

from portal.middleware.permission_required import login_required
from portal.services import payment_service

logger = logging.getLogger(__name__)

payment_bp = Blueprint("payment_bp", __name__, url_prefix="/api/v1/payments")


@payment_bp.route("/<int:application_id>/initiate", methods=["POST"])
@login_required
def initiate(application_id):
    return jsonify(payment_service.initiate_payment(application_id, g.current_user))


@payment_bp.route("/<int:application_id>/status", methods=["GET"])
@login_required
def status(application_id):
    return jsonify(payment_service.get_payment_status(application_id, g.current_user))


@payment_bp.route("/callback", methods=["POST"])
def callback():
    """Transaction-processed webhook.  The HMAC comes as ``?hmac=`` or in the body."""
    body = request.get_json(silent=True) or {}
    result = payment_service.process_callback(body, request.args.get("hmac"))
    logger.info("Payment callback handled: %s", result)
    return jsonify(result), 200


@payment_bp.route("/redirect", methods=["GET"])
def checkout_redirect():
    result = payment_service.handle_redirect(request.args.to_dict())
    # Browsers come back here from the checkout iframe; API clients get JSON
    if request.accept_mimetypes.best_match(["application/json", "text/html"]) != "text/html":
        return jsonify(result), 200
    app_data = result.get("application")
    if app_data:
        return redirect(url_for("view_bp.application_detail", application_id=app_data["id"],
                                payment=result["status"]))
    return redirect(url_for("view_bp.dashboard"))
