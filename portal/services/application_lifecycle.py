"""
Application Lifecycle Service

Manages application status transitions with:
  - Transition validation (APPLICATION_TRANSITIONS, checked only here)
  - Actor checks (staff role per event, ownership for citizen events)
  - Side effects (approve → stamp fee + supply order, verify → verifier, ...)
  - One ApplicationStatusHistory row, zero-or-one Notification and one
    AuditLog row, committed in the same transaction as the status change

Concurrency: ``Application.version`` is SQLAlchemy's version_id_col, so
the UPDATE only matches the row version that was read.  A concurrent
writer makes the commit raise StaleDataError, which surfaces as a 409
and leaves nothing written.

Usage:
    from portal.services.application_lifecycle import transition_application

    result = transition_application(
        application_id=42,
        event="approve",
        actor=current_user,
    )
"""

import logging
import secrets
import string
import time
from datetime import datetime, timezone

from sqlalchemy.orm.exc import StaleDataError

from portal.core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransitionError,
)
from portal.models import db
from portal.models.application import (
    APPLICATION_TRANSITIONS,
    Application,
    ApplicationStatus,
    ApplicationStatusHistory,
)
from portal.models.audit import write_audit
from portal.models.user import ROLE_ADMIN, ROLE_FINANCIAL_OFFICER, ROLE_SUPER_ADMIN
from portal.services import pricing_service
from portal.services.notification_service import NotificationService
from portal.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

CANCELLED_BY_USER_REASON = "تم إلغاء الطلب بواسطة المستخدم"

_REVIEW_ROLES = frozenset({ROLE_ADMIN, ROLE_SUPER_ADMIN})
_PAYMENT_ROLES = frozenset({ROLE_FINANCIAL_OFFICER, ROLE_ADMIN, ROLE_SUPER_ADMIN})

# Who may fire each event.  "owner" = the submitting citizen,
# "system" = payment gateway callbacks (no user actor).
EVENT_ACTORS = {
    "start_review": _REVIEW_ROLES,
    "approve": _REVIEW_ROLES,
    "reject": _REVIEW_ROLES,
    "mark_ready": _REVIEW_ROLES,
    "complete": _REVIEW_ROLES,
    "verify_payment": _PAYMENT_ROLES,
    "reject_payment": _PAYMENT_ROLES,
    "submit_receipt": "owner",
    "cancel": "owner",
    "gateway_confirm": "system",
    "gateway_redirect": "system",
}

# event → (notification type, title, message template); absent = no notification
_EVENT_NOTIFICATIONS = {
    "start_review": (
        "application_under_review",
        "طلبك قيد المراجعة",
        "طلبك رقم {number} قيد المراجعة الآن.",
    ),
    "approve": (
        "application_approved",
        "تمت الموافقة على طلبك",
        "تمت الموافقة على طلبك رقم {number}. المبلغ المطلوب: {amount} جنيه. رقم أمر التوريد: {supply_order}.",
    ),
    "reject": (
        "application_rejected",
        "تم رفض طلبك",
        "تم رفض طلبك رقم {number}. السبب: {reason}",
    ),
    "submit_receipt": (
        "payment_submitted",
        "تم استلام إيصال الدفع",
        "تم استلام إيصال الدفع للطلب رقم {number} وسيتم التحقق منه.",
    ),
    "verify_payment": (
        "payment_verified",
        "تم التحقق من الدفع",
        "تم التحقق من دفع الطلب رقم {number}. جاري تجهيز الترخيص.",
    ),
    "reject_payment": (
        "payment_rejected",
        "تم رفض إيصال الدفع",
        "تم رفض إيصال الدفع للطلب رقم {number}. السبب: {reason}. يرجى إعادة رفع إيصال صحيح.",
    ),
    "gateway_confirm": (
        "payment_verified",
        "تم الدفع بنجاح",
        "تم استلام الدفع الإلكتروني للطلب رقم {number} بنجاح.",
    ),
    "gateway_redirect": (
        "payment_verified",
        "تم الدفع بنجاح",
        "تم تأكيد الدفع الإلكتروني للطلب رقم {number}.",
    ),
    "mark_ready": (
        "license_ready",
        "الترخيص جاهز للاستلام",
        "ترخيصك للطلب رقم {number} جاهز للاستلام.",
    ),
}

_HISTORY_NOTES = {
    "start_review": "بدء مراجعة الطلب",
    "approve": "تمت الموافقة على الطلب",
    "submit_receipt": "تم رفع إيصال الدفع",
    "verify_payment": "تم التحقق من الدفع",
    "gateway_confirm": "تم الدفع عبر بوابة الدفع الإلكتروني",
    "gateway_redirect": "تم تأكيد الدفع عبر بوابة الدفع الإلكتروني",
    "mark_ready": "الترخيص جاهز",
    "complete": "تم تسليم الترخيص",
}


def generate_supply_order_id() -> str:
    """``SO-<epoch ms>-<5 upper-case alphanumerics>``."""
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(5))
    return f"SO-{int(time.time() * 1000)}-{suffix}"


def validate_transition(application: Application, event: str) -> dict:
    """
    Validate whether an event is valid for the current state.

    Returns:
        {"valid": bool, "from": str, "to": str|None, "reason": str|None}
    """
    rule = APPLICATION_TRANSITIONS.get(event)
    if not rule:
        return {"valid": False, "from": application.status, "to": None,
                "reason": f"Unknown event: {event}"}

    if application.status not in rule["from"]:
        return {"valid": False, "from": application.status, "to": rule["to"],
                "reason": f"Cannot '{event}' from status '{application.status}'"}

    return {"valid": True, "from": application.status, "to": rule["to"], "reason": None}


def _authorize(application: Application, event: str, actor) -> None:
    allowed = EVENT_ACTORS.get(event)
    if allowed == "system":
        if actor is not None:
            raise PermissionDeniedError(f"'{event}' is reserved for the payment gateway")
        return
    if actor is None:
        raise PermissionDeniedError(f"'{event}' requires an authenticated user")
    if allowed == "owner":
        if application.user_id != actor.id:
            # Hide other citizens' applications entirely
            raise NotFoundError("Application", application.id)
        return
    if actor.role not in allowed:
        raise PermissionDeniedError(f"Role '{actor.role}' may not '{event}' applications")


def get_available_events(application: Application, actor=None) -> list[str]:
    """Events the actor could fire on the application right now."""
    events = []
    for event, rule in APPLICATION_TRANSITIONS.items():
        if application.status not in rule["from"]:
            continue
        allowed = EVENT_ACTORS[event]
        if allowed == "system":
            continue
        if actor is None:
            continue
        if allowed == "owner":
            if application.user_id == actor.id:
                events.append(event)
        elif actor.role in allowed:
            events.append(event)
    return events


def _status_id_for(code: str):
    row = ApplicationStatus.query.filter_by(code=code).first()
    return row.id if row else None


def transition_application(
    application_id: int,
    event: str,
    *,
    actor=None,
    reason: str | None = None,
    notes: str | None = None,
    receipt_path: str | None = None,
    transaction_id: str | None = None,
    expected_version: int | None = None,
    actor_label: str | None = None,
) -> dict:
    """
    Execute one lifecycle transition atomically.

    Args:
        application_id: PK of the application
        event: key of APPLICATION_TRANSITIONS
        actor: User firing the event; None for gateway events
        reason: required for reject / reject_payment
        notes: optional verifier notes (verify_payment) or history note
        receipt_path: stored receipt path, required for submit_receipt
        transaction_id: gateway transaction id for gateway events
        expected_version: optional client-supplied version (If-Match)
        actor_label: audit actor name for system events

    Returns:
        {"application_id", "application_number", "previous_status",
         "new_status", "event", "application"}

    Raises:
        NotFoundError, PermissionDeniedError, TransitionError,
        ValidationError (no matching price), ConflictError (lost race)
    """
    app_row = db.session.get(Application, application_id)
    if not app_row:
        raise NotFoundError("Application", application_id)

    # 1. Who may fire it
    _authorize(app_row, event, actor)

    # 2. Stale client view
    if expected_version is not None and int(expected_version) != app_row.version:
        raise ConflictError(
            "Application",
            message=f"Application {app_row.application_number} changed since version {expected_version}",
        )

    # 3. State machine
    validation = validate_transition(app_row, event)
    if not validation["valid"]:
        raise TransitionError(app_row.application_number, event, app_row.status, validation["reason"])

    # 4. Guards (nothing is mutated before these pass)
    if event == "cancel":
        reason = CANCELLED_BY_USER_REASON
    if event in ("reject", "reject_payment") and not (reason or "").strip():
        raise TransitionError(app_row.application_number, event, app_row.status, "reason is required")
    if event == "submit_receipt" and not receipt_path:
        raise TransitionError(app_row.application_number, event, app_row.status, "receipt file is required")

    price = None
    if event == "approve":
        price = pricing_service.require_price(
            app_row.application_type,
            app_row.license_category,
            app_row.is_renewal,
            app_row.duration,
            app_row.boat_type,
        )

    # 5. Execute transition, side effects, history, notification, audit
    new_status_id = _status_id_for(validation["to"])
    try:
        previous_status = _apply_transition(
            app_row, event, validation["to"], new_status_id,
            actor=actor, reason=reason, notes=notes, receipt_path=receipt_path,
            transaction_id=transaction_id, price=price, actor_label=actor_label,
        )
        # 6. Commit everything or nothing
        commit_or_raise("Application")
    except StaleDataError as exc:
        # Raised by the audit flush, ahead of commit_or_raise
        db.session.rollback()
        raise ConflictError(
            "Application",
            message=f"Application {application_id} was modified by another request; reload and retry",
        ) from exc

    logger.info(
        "Application %s: %s → %s via %s (actor=%s)",
        app_row.application_number, previous_status, app_row.status, event,
        actor.id if actor else (actor_label or "system"),
    )

    return {
        "application_id": app_row.id,
        "application_number": app_row.application_number,
        "previous_status": previous_status,
        "new_status": app_row.status,
        "event": event,
        "application": app_row.to_dict(),
    }


def _apply_transition(app_row, event, new_status, new_status_id, *, actor, reason, notes,
                      receipt_path, transaction_id, price, actor_label) -> str:
    """Stage the status change and its rows in the session. Returns the previous status."""
    now = datetime.now(timezone.utc)
    previous_status = app_row.status
    app_row.status = new_status
    app_row.status_id = new_status_id
    diff = {"status": {"old": previous_status, "new": new_status}}

    if event == "start_review":
        app_row.reviewed_by = actor.id
        app_row.reviewed_at = now
    elif event == "approve":
        if app_row.payment_amount is None:
            app_row.payment_amount = price["amount"]
            diff["payment_amount"] = {"old": None, "new": str(price["amount"])}
        app_row.supply_order_id = generate_supply_order_id()
        app_row.approved_at = now
        app_row.reviewed_by = actor.id
        app_row.reviewed_at = app_row.reviewed_at or now
        diff["supply_order_id"] = {"old": None, "new": app_row.supply_order_id}
    elif event in ("reject", "cancel"):
        app_row.rejection_reason = reason.strip()
        if event == "reject":
            app_row.reviewed_by = actor.id
            app_row.reviewed_at = now
        diff["rejection_reason"] = {"old": None, "new": app_row.rejection_reason}
    elif event == "submit_receipt":
        diff["payment_receipt_path"] = {"old": app_row.payment_receipt_path, "new": receipt_path}
        app_row.payment_receipt_path = receipt_path
    elif event == "verify_payment":
        app_row.payment_verified_by = actor.id
        app_row.payment_verified_at = now
        app_row.payment_verification_notes = notes
    elif event == "reject_payment":
        diff["payment_receipt_path"] = {"old": app_row.payment_receipt_path, "new": None}
        app_row.payment_receipt_path = None
        app_row.payment_verification_notes = reason
    elif event in ("gateway_confirm", "gateway_redirect"):
        app_row.payment_verified_at = now
        if transaction_id:
            app_row.paymob_transaction_id = str(transaction_id)
            diff["paymob_transaction_id"] = {"old": None, "new": str(transaction_id)}

    if event in ("reject", "reject_payment", "cancel"):
        history_note = reason
    elif event == "verify_payment":
        history_note = _HISTORY_NOTES[event]
    else:
        history_note = notes or _HISTORY_NOTES.get(event)
    db.session.add(ApplicationStatusHistory(
        application_id=app_row.id,
        old_status=previous_status,
        new_status=new_status,
        changed_by=actor.id if actor else None,
        notes=history_note,
    ))

    template = _EVENT_NOTIFICATIONS.get(event)
    if template:
        ntype, title, message = template
        NotificationService.create(
            user_id=app_row.user_id,
            type=ntype,
            title=title,
            message=message.format(
                number=app_row.application_number,
                amount=app_row.payment_amount,
                supply_order=app_row.supply_order_id,
                reason=reason or "",
            ),
            application_id=app_row.id,
            commit=False,
        )

    write_audit(
        entity_type="application",
        entity_id=app_row.id,
        action=f"application.{event}",
        actor=actor.national_id if actor else (actor_label or "system"),
        actor_user_id=actor.id if actor else None,
        diff=diff,
    )
    return previous_status
