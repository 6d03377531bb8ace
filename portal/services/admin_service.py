"""
Admin Service — review desk queries and review transitions.

The dashboard counters are cached for a short TTL; every lifecycle
transition fired from here drops that entry.
"""

import logging
from datetime import datetime, time, timedelta

from sqlalchemy import func, or_

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.application import (
    PAID_STATUSES,
    STATUS_COMPLETED,
    STATUS_RECEIVED,
    STATUS_UNDER_REVIEW,
    Application,
)
from portal.services.application_lifecycle import get_available_events, transition_application
from portal.services.cache_service import ADMIN_DASHBOARD_KEY, DASHBOARD_TTL, get_cache
from portal.utils.helpers import paginate_query, parse_date

logger = logging.getLogger(__name__)

REVIEW_EVENTS = ("start_review", "approve", "reject", "mark_ready", "complete")


# ═══════════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════════

def get_dashboard_stats() -> dict:
    return get_cache().get_or_set(ADMIN_DASHBOARD_KEY, _load_dashboard_stats, ttl=DASHBOARD_TTL)


def _load_dashboard_stats() -> dict:
    by_status = dict(
        db.session.query(Application.status, func.count(Application.id))
        .group_by(Application.status).all()
    )
    by_type = dict(
        db.session.query(Application.application_type, func.count(Application.id))
        .group_by(Application.application_type).all()
    )
    revenue = db.session.query(func.coalesce(func.sum(Application.payment_amount), 0)) \
        .filter(Application.status.in_(PAID_STATUSES)).scalar()
    recent = Application.query.order_by(Application.created_at.desc(), Application.id.desc()).limit(10).all()
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "pending_review": by_status.get(STATUS_RECEIVED, 0) + by_status.get(STATUS_UNDER_REVIEW, 0),
        "completed": by_status.get(STATUS_COMPLETED, 0),
        "total_revenue": float(revenue or 0),
        "recent": [a.to_dict() for a in recent],
    }


def invalidate_dashboard() -> None:
    get_cache().delete(ADMIN_DASHBOARD_KEY)


# ═══════════════════════════════════════════════════════════════
# Listing & review
# ═══════════════════════════════════════════════════════════════

def list_applications(filters: dict) -> dict:
    """All applications with status/type/search/date-range filters, newest first."""
    q = Application.query
    if filters.get("status"):
        q = q.filter(Application.status == filters["status"])
    if filters.get("type"):
        q = q.filter(Application.application_type == filters["type"])
    if filters.get("category"):
        q = q.filter(Application.license_category == filters["category"])
    if filters.get("search"):
        like = f"%{filters['search'].strip()}%"
        q = q.filter(or_(
            Application.application_number.ilike(like),
            Application.license_holder_name.ilike(like),
            Application.license_holder_national_id.ilike(like),
        ))
    start = parse_date(filters.get("start_date"))
    end = parse_date(filters.get("end_date"))
    if start and end and end < start:
        raise ValidationError("end_date precedes start_date")
    if start:
        q = q.filter(Application.created_at >= datetime.combine(start, time.min))
    if end:
        q = q.filter(Application.created_at < datetime.combine(end + timedelta(days=1), time.min))

    q = q.order_by(Application.created_at.desc(), Application.id.desc())
    return paginate_query(q, filters.get("page", 1), filters.get("limit", 20))


def get_application_for_review(application_id: int, actor) -> dict:
    app_row = db.session.get(Application, application_id)
    if not app_row:
        raise NotFoundError("Application", application_id)
    d = app_row.to_dict(include_documents=True, include_history=True)
    d["applicant"] = app_row.user.to_dict() if app_row.user else None
    d["reviewer"] = app_row.reviewer.full_name_ar if app_row.reviewer else None
    d["available_events"] = get_available_events(app_row, actor)
    return d


def get_supply_order_data(application_id: int) -> dict:
    """Fields printed on the supply order handed to the citizen after approval."""
    app_row = db.session.get(Application, application_id)
    if not app_row:
        raise NotFoundError("Application", application_id)
    if not app_row.supply_order_id:
        raise ValidationError("Application has no supply order yet")
    return {
        "supply_order_id": app_row.supply_order_id,
        "application_number": app_row.application_number,
        "license_holder_name": app_row.license_holder_name,
        "license_holder_national_id": app_row.license_holder_national_id,
        "application_type": app_row.application_type,
        "license_category": app_row.license_category,
        "duration": app_row.duration,
        "payment_amount": float(app_row.payment_amount) if app_row.payment_amount is not None else None,
        "approved_at": app_row.approved_at.isoformat() if app_row.approved_at else None,
    }


def review_transition(application_id: int, event: str, actor, *, reason=None, notes=None,
                      expected_version=None) -> dict:
    if event not in REVIEW_EVENTS:
        raise ValidationError(f"Unknown review action: {event}", details={"event": list(REVIEW_EVENTS)})
    result = transition_application(
        application_id, event, actor=actor, reason=reason, notes=notes,
        expected_version=expected_version,
    )
    invalidate_dashboard()
    return result
