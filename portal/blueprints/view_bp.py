"""
View Blueprint — server-rendered pages (Jinja2, Arabic RTL).

Pages read the same ``access_token`` cookie the API accepts.  Without a
valid token the error handlers redirect to /login; a wrong role gets the
403 page.
"""

import logging

from flask import Blueprint, g, redirect, render_template, request, url_for

from portal.blueprints import request_filters
from portal.core.exceptions import PortalError
from portal.middleware.jwt_auth import clear_auth_cookies, get_current_user, set_auth_cookies
from portal.middleware.permission_required import login_required, roles_required
from portal.models.application import APPLICATION_STATUSES, APPLICATION_TYPES
from portal.models.user import ROLE_ADMIN, ROLE_FINANCIAL_OFFICER, ROLE_SUPER_ADMIN
from portal.services import (
    admin_service,
    application_service,
    auth_service,
    financial_service,
    news_service,
    public_service,
)

logger = logging.getLogger(__name__)

view_bp = Blueprint("view_bp", __name__)


def _landing_for_role(role):
    if role in (ROLE_ADMIN, ROLE_SUPER_ADMIN):
        return url_for("view_bp.admin_applications")
    if role == ROLE_FINANCIAL_OFFICER:
        return url_for("view_bp.financial_dashboard")
    return url_for("view_bp.dashboard")


def _safe_next(target):
    # Only same-site paths
    if target and target.startswith("/") and not target.startswith("//"):
        return target
    return None


def _client_info():
    return request.remote_addr, request.headers.get("User-Agent", "")[:255]


@view_bp.app_template_global()
def page_url(page):
    """Current page URL with ``page`` replaced; other filters are kept."""
    args = request.args.to_dict()
    args["page"] = page
    return url_for(request.endpoint, **(request.view_args or {}), **args)


@view_bp.route("/", methods=["GET"])
def home():
    return render_template(
        "home.html",
        info=public_service.get_portal_info(),
        news=news_service.list_published_news(page=1, limit=5)["items"],
        user=get_current_user(),
    )


# ═══════════════════════════════════════════════════════════════
# Login / register / logout
# ═══════════════════════════════════════════════════════════════

@view_bp.route("/login", methods=["GET", "POST"])
def login_page():
    next_url = _safe_next(request.values.get("next"))
    if request.method == "GET":
        return render_template("login.html", error=None, next=next_url, national_id="")

    national_id = request.form.get("national_id", "")
    try:
        result = auth_service.authenticate(national_id, request.form.get("password", ""), *_client_info())
    except PortalError as exc:
        return render_template("login.html", error=exc.message, next=next_url,
                               national_id=national_id), exc.status_code

    resp = redirect(next_url or _landing_for_role(result["user"]["role"]))
    set_auth_cookies(resp, result["tokens"])
    return resp


@view_bp.route("/register", methods=["GET", "POST"])
def register_page():
    if request.method == "GET":
        return render_template("register.html", error=None, form={})

    form = request.form.to_dict()
    try:
        result = auth_service.register_user(form, *_client_info())
    except PortalError as exc:
        form.pop("password", None)
        form.pop("password_confirm", None)
        details = getattr(exc, "details", None) or {}
        return render_template("register.html", error=exc.message, details=details, form=form), exc.status_code

    resp = redirect(url_for("view_bp.dashboard"))
    set_auth_cookies(resp, result["tokens"])
    return resp


@view_bp.route("/logout", methods=["GET", "POST"])
def logout_page():
    if getattr(g, "jwt_user_id", None):
        auth_service.logout(user_id=g.jwt_user_id, everywhere=True)
    resp = redirect(url_for("view_bp.login_page"))
    clear_auth_cookies(resp)
    return resp


# ═══════════════════════════════════════════════════════════════
# Citizen
# ═══════════════════════════════════════════════════════════════

@view_bp.route("/dashboard", methods=["GET"])
@login_required
def dashboard():
    user = g.current_user
    applications = application_service.list_user_applications(
        user.id, request_filters("status", "type", "page"),
    )
    return render_template(
        "dashboard.html",
        user=user,
        stats=application_service.get_user_dashboard_stats(user.id),
        applications=applications["items"],
        pagination=applications["pagination"],
    )


@view_bp.route("/applications/<int:application_id>", methods=["GET"])
@login_required
def application_detail(application_id):
    return render_template(
        "application_detail.html",
        user=g.current_user,
        application=application_service.get_application_detail(application_id, g.current_user),
        payment_result=request.args.get("payment"),
    )


# ═══════════════════════════════════════════════════════════════
# Staff
# ═══════════════════════════════════════════════════════════════

@view_bp.route("/admin/applications", methods=["GET"])
@roles_required(ROLE_ADMIN)
def admin_applications():
    filters = request_filters("status", "type", "search", "start_date", "end_date", "page")
    result = admin_service.list_applications(filters)
    return render_template(
        "admin_applications.html",
        user=g.current_user,
        stats=admin_service.get_dashboard_stats(),
        applications=result["items"],
        pagination=result["pagination"],
        filters=filters,
        statuses=APPLICATION_STATUSES,
        types=APPLICATION_TYPES,
    )


@view_bp.route("/financial", methods=["GET"])
@roles_required(ROLE_FINANCIAL_OFFICER, ROLE_ADMIN)
def financial_dashboard():
    pending = financial_service.list_pending_payments(request_filters("status", "search", "page"))
    return render_template(
        "financial_dashboard.html",
        user=g.current_user,
        stats=financial_service.get_dashboard_stats(),
        payments=pending["items"],
        pagination=pending["pagination"],
    )
