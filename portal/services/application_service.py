"""
Application Service — citizen-facing application operations.

Creation, numbering, listing, tracking and the citizen's own transitions
(receipt upload, cancel).  Every status change goes through
``application_lifecycle.transition_application``; this module never
writes ``Application.status`` after creation.

Numbering: ``<PREFIX>-<YEAR>-<SEQ>`` where SEQ is the 4-digit, per-year
sequence.  The unique index on ``application_number`` resolves races:
a losing insert retries with the next number.
"""

import logging
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from portal.core.exceptions import NotFoundError, PortalError, ValidationError
from portal.models import db
from portal.models.application import (
    APPLICATION_TYPES,
    AWAITING_PAYMENT_STATUSES,
    BOAT_TYPES,
    DEFAULT_BOAT_TYPE,
    DURATIONS,
    LICENSE_CATEGORIES,
    STATUS_COMPLETED,
    STATUS_RECEIVED,
    STATUS_REJECTED,
    STATUS_UNDER_REVIEW,
    Application,
    ApplicationStatus,
    ApplicationStatusHistory,
)
from portal.models.audit import write_audit
from portal.services import document_service, pricing_service
from portal.services.application_data import parse_application_data
from portal.services.application_lifecycle import (
    get_available_events,
    transition_application,
)
from portal.services.notification_service import NotificationService
from portal.utils.helpers import commit_or_raise, paginate_query, parse_bool

logger = logging.getLogger(__name__)

MAX_NUMBER_ATTEMPTS = 5

# camelCase form field → snake_case column
_FIELD_ALIASES = {
    "applicationType": "application_type",
    "licenseCategory": "license_category",
    "isRenewal": "is_renewal",
    "boatType": "boat_type",
    "licenseHolderName": "license_holder_name",
    "licenseHolderNationalId": "license_holder_national_id",
}


# ═══════════════════════════════════════════════════════════════
# Numbering
# ═══════════════════════════════════════════════════════════════

def generate_application_number(year: int | None = None) -> str:
    """Next free number for ``year`` (defaults to the current year)."""
    year = year or datetime.now(timezone.utc).year
    prefix = f"{current_app.config['APPLICATION_NUMBER_PREFIX']}-{year}-"
    last = (
        db.session.query(Application.application_number)
        .filter(Application.application_number.like(f"{prefix}%"))
        .order_by(func.length(Application.application_number).desc(),
                  Application.application_number.desc())
        .first()
    )
    seq = 1
    if last:
        try:
            seq = int(last[0].rsplit("-", 1)[1]) + 1
        except (ValueError, IndexError):
            logger.warning("Unparsable application number %s; restarting sequence", last[0])
    return f"{prefix}{seq:04d}"


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

def _normalize_payload(data: dict) -> dict:
    out = {}
    for key, value in (data or {}).items():
        out[_FIELD_ALIASES.get(key, key)] = value
    return out


def validate_classification(data: dict) -> dict:
    """Check type, category, duration and boat type. Returns the cleaned values."""
    app_type = data.get("application_type")
    if app_type not in APPLICATION_TYPES:
        raise ValidationError("Invalid application type",
                              details={"application_type": list(APPLICATION_TYPES)})

    category = (data.get("license_category") or "").strip()
    if not category:
        raise ValidationError("license_category is required", details={"license_category": "required"})
    allowed = LICENSE_CATEGORIES.get(app_type)
    if allowed is not None and category not in allowed:
        raise ValidationError(
            f"License category '{category}' is not valid for {app_type}",
            details={"license_category": list(allowed)},
        )

    base = pricing_service.get_base_duration(category)
    duration = data.get("duration") or base
    if duration not in DURATIONS:
        raise ValidationError("Invalid duration", details={"duration": list(DURATIONS)})
    valid = pricing_service.get_valid_durations(category)
    if duration not in valid:
        raise ValidationError(
            f"Duration '{duration}' is not available for '{category}'",
            details={"duration": list(valid)},
        )

    boat_type = None
    if app_type == "boat":
        boat_type = data.get("boat_type") or DEFAULT_BOAT_TYPE
        if boat_type not in BOAT_TYPES:
            raise ValidationError("Invalid boat type", details={"boat_type": list(BOAT_TYPES)})

    return {
        "application_type": app_type,
        "license_category": category,
        "is_renewal": parse_bool(data.get("is_renewal")),
        "duration": duration,
        "boat_type": boat_type,
    }


def create_application(data: dict, user, files=None) -> dict:
    """
    Submit a new application for ``user``.

    Args:
        data: classification fields plus a ``data`` dict (or flat type fields)
        user: the submitting citizen
        files: list of (form field name, FileStorage)

    Returns:
        {"application": {...}, "price_estimate": {...} | None}
    """
    data = _normalize_payload(data)
    clean = validate_classification(data)

    raw_payload = data.get("data")
    if not isinstance(raw_payload, dict):
        raw_payload = data
    payload = parse_application_data(clean["application_type"], raw_payload, clean["is_renewal"])

    holder_name = (data.get("license_holder_name") or "").strip() or user.full_name_ar
    holder_nid = (data.get("license_holder_national_id") or "").strip() or user.national_id

    stored = _store_uploads(files)
    received_status = ApplicationStatus.query.filter_by(code=STATUS_RECEIVED).first()

    app_row = None
    for attempt in range(1, MAX_NUMBER_ATTEMPTS + 1):
        app_row = Application(
            application_number=generate_application_number(),
            user_id=user.id,
            status=STATUS_RECEIVED,
            status_id=received_status.id if received_status else None,
            license_holder_name=holder_name,
            license_holder_national_id=holder_nid,
            **clean,
        )
        app_row.data = payload.to_dict()
        db.session.add(app_row)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            logger.warning("Application number collision on attempt %d; retrying", attempt)
            received_status = ApplicationStatus.query.filter_by(code=STATUS_RECEIVED).first()
            app_row = None
            continue
        break
    if app_row is None:
        _discard_uploads(stored)
        raise ValidationError("Could not allocate an application number; please retry")

    try:
        _record_submission(app_row, user, stored)
        commit_or_raise("Application")
    except (PortalError, IntegrityError):
        db.session.rollback()
        _discard_uploads(stored)
        raise

    logger.info("Application %s created by user %s (%s/%s)",
                app_row.application_number, user.id, app_row.application_type, app_row.license_category)

    estimate = pricing_service.get_current_price(
        app_row.application_type, app_row.license_category, app_row.is_renewal,
        app_row.duration, app_row.boat_type,
    )
    return {
        "application": app_row.to_dict(include_documents=True),
        "price_estimate": _estimate_to_dict(estimate),
    }


def _store_uploads(files) -> list:
    """Write every upload to disk; on a rejected file remove the ones already written."""
    stored = []
    try:
        for field, f in files or []:
            stored.append((field, document_service.store_upload(f)))
    except PortalError:
        _discard_uploads(stored)
        raise
    return stored


def _discard_uploads(stored) -> None:
    for _, meta in stored:
        document_service.remove_stored_file(meta["file_path"])


def _record_submission(app_row, user, stored) -> None:
    for field, meta in stored:
        document_service.stage_document(app_row.id, meta, document_service.document_type_for_field(field))

    db.session.add(ApplicationStatusHistory(
        application_id=app_row.id,
        old_status=None,
        new_status=STATUS_RECEIVED,
        changed_by=user.id,
        notes="تم تقديم الطلب",
    ))
    NotificationService.create(
        user_id=user.id,
        type="application_received",
        title="تم استلام طلبك",
        message=f"تم استلام طلبك رقم {app_row.application_number} بنجاح وسيتم مراجعته قريباً.",
        application_id=app_row.id,
        commit=False,
    )
    write_audit(
        entity_type="application",
        entity_id=app_row.id,
        action="application.create",
        actor=user.national_id,
        actor_user_id=user.id,
        diff={"status": {"old": None, "new": STATUS_RECEIVED}},
    )


def _estimate_to_dict(estimate):
    if estimate is None:
        return None
    return {
        "base_price": float(estimate["base_price"]),
        "base_duration": estimate["base_duration"],
        "duration": estimate["duration"],
        "amount": float(estimate["amount"]),
    }


# ═══════════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════════

def list_user_applications(user_id: int, filters: dict) -> dict:
    q = Application.query.filter_by(user_id=user_id)
    if filters.get("status"):
        q = q.filter(Application.status == filters["status"])
    if filters.get("type"):
        q = q.filter(Application.application_type == filters["type"])
    q = q.order_by(Application.created_at.desc(), Application.id.desc())
    return paginate_query(q, filters.get("page", 1), filters.get("limit", 10))


def get_application(application_id: int) -> Application:
    app_row = db.session.get(Application, application_id)
    if not app_row:
        raise NotFoundError("Application", application_id)
    return app_row


def get_application_for_user(application_id: int, user) -> Application:
    """Owner or staff; anyone else sees 404."""
    app_row = get_application(application_id)
    if app_row.user_id != user.id and not user.is_staff:
        raise NotFoundError("Application", application_id)
    return app_row


def get_application_detail(application_id: int, user) -> dict:
    app_row = get_application_for_user(application_id, user)
    d = app_row.to_dict(include_documents=True, include_history=True)
    d["available_events"] = get_available_events(app_row, user)
    return d


def _mask_name(name: str | None) -> str | None:
    if not name:
        return None
    parts = []
    for word in name.split():
        parts.append(word[0] + "*" * (len(word) - 1) if len(word) > 1 else word)
    return " ".join(parts)


def track_by_number(application_number: str) -> dict:
    """Public tracking view: no personal data besides a masked holder name."""
    app_row = Application.query.filter_by(application_number=(application_number or "").strip()).first()
    if not app_row:
        raise NotFoundError("Application", application_number)
    return {
        "application_number": app_row.application_number,
        "application_type": app_row.application_type,
        "license_category": app_row.license_category,
        "status": app_row.status,
        "status_info": app_row.status_ref.to_dict() if app_row.status_ref else None,
        "license_holder_name": _mask_name(app_row.license_holder_name),
        "submitted_at": app_row.submitted_at.isoformat() if app_row.submitted_at else None,
        "updated_at": app_row.updated_at.isoformat() if app_row.updated_at else None,
        "history": [
            {"status": h.new_status, "created_at": h.created_at.isoformat() if h.created_at else None}
            for h in app_row.history.all()
        ],
    }


def get_user_dashboard_stats(user_id: int) -> dict:
    rows = (
        db.session.query(Application.status, func.count(Application.id))
        .filter(Application.user_id == user_id)
        .group_by(Application.status)
        .all()
    )
    by_status = {status: count for status, count in rows}
    recent = (
        Application.query.filter_by(user_id=user_id)
        .order_by(Application.created_at.desc(), Application.id.desc())
        .limit(5)
        .all()
    )
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "under_review": by_status.get(STATUS_RECEIVED, 0) + by_status.get(STATUS_UNDER_REVIEW, 0),
        "pending_payment": sum(by_status.get(s, 0) for s in AWAITING_PAYMENT_STATUSES),
        "completed": by_status.get(STATUS_COMPLETED, 0),
        "rejected": by_status.get(STATUS_REJECTED, 0),
        "recent": [a.to_dict() for a in recent],
    }


# ═══════════════════════════════════════════════════════════════
# Citizen transitions
# ═══════════════════════════════════════════════════════════════

def upload_receipt(application_id: int, user, file, expected_version=None) -> dict:
    """Store the receipt as a ``payment_receipt`` document and fire ``submit_receipt``."""
    app_row = get_application_for_user(application_id, user)
    if app_row.user_id != user.id:
        raise NotFoundError("Application", application_id)
    meta = document_service.store_upload(file, subdir="receipts")
    try:
        document_service.stage_document(app_row.id, meta, "payment_receipt")
        return transition_application(
            app_row.id, "submit_receipt", actor=user,
            receipt_path=meta["file_path"], expected_version=expected_version,
        )
    except Exception:
        db.session.rollback()
        document_service.remove_stored_file(meta["file_path"])
        raise


def cancel_application(application_id: int, user, expected_version=None) -> dict:
    return transition_application(application_id, "cancel", actor=user, expected_version=expected_version)
