"""
App-wide error handlers.

API callers (path under /api/, or a client that prefers JSON) get
``{"error", "code", ...}`` bodies; browsers get the rendered error page.
An unauthenticated browser request is redirected to the login page.
"""

import logging

import jwt as pyjwt
from flask import jsonify, redirect, render_template, request, url_for
from sqlalchemy.exc import IntegrityError
from werkzeug.exceptions import HTTPException

from portal.core.exceptions import AuthenticationError, PortalError
from portal.models import db
from portal.utils.errors import E, api_error, code_for_status

logger = logging.getLogger(__name__)


def wants_json() -> bool:
    if request.path.startswith("/api/"):
        return True
    best = request.accept_mimetypes.best_match(["application/json", "text/html"])
    return best == "application/json" and request.accept_mimetypes[best] > request.accept_mimetypes["text/html"]


def _render_page(status: int, message: str):
    return render_template("error.html", status=status, message=message), status


def register_error_handlers(app):

    @app.errorhandler(PortalError)
    def _portal_error(exc: PortalError):
        if exc.status_code >= 500:
            logger.error("%s: %s", type(exc).__name__, exc.message)
        if isinstance(exc, AuthenticationError) and not wants_json():
            return redirect(url_for("view_bp.login_page", next=request.full_path.rstrip("?")))
        if wants_json():
            return jsonify(exc.to_dict()), exc.status_code
        return _render_page(exc.status_code, exc.message)

    @app.errorhandler(IntegrityError)
    def _integrity_error(exc: IntegrityError):
        db.session.rollback()
        logger.warning("Integrity error: %s", exc.orig)
        if wants_json():
            return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation", status=409)
        return _render_page(409, "البيانات مكررة أو غير صالحة")

    @app.errorhandler(pyjwt.InvalidTokenError)
    def _jwt_error(exc):
        message = "Token expired" if isinstance(exc, pyjwt.ExpiredSignatureError) else "Invalid token"
        if wants_json():
            return api_error(E.UNAUTHENTICATED, message, status=401)
        return redirect(url_for("view_bp.login_page"))

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        status = exc.code or 500
        if wants_json():
            message = exc.description if status != 404 else "Not found"
            return api_error(code_for_status(status), message, status=status)
        return _render_page(status, exc.description or exc.name)

    @app.errorhandler(Exception)
    def _unhandled(exc: Exception):
        db.session.rollback()
        logger.error("Unhandled error on %s %s", request.method, request.path, exc_info=exc)
        if wants_json():
            return api_error(E.INTERNAL, "Internal server error", status=500)
        return _render_page(500, "حدث خطأ غير متوقع")
