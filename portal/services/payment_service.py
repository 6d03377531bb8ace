"""
Payment Service — gateway checkout and callback reconciliation.

    initiate_payment   owner, approved_payment_pending → checkout URL
    process_callback   server-to-server webhook (HMAC-verified, idempotent)
    handle_redirect    browser return from the hosted checkout
    get_payment_status paid | pending | not_required

The webhook never raises to its caller: bad signatures, unknown
applications and unparsable order ids are logged and reported as
``ignored`` so the endpoint can always answer 200.

Idempotency: each verified transaction id is written to
``processed_payment_transactions`` in the same commit as the transition
it caused.  A redelivery finds the row and stops before any side effect;
a concurrent delivery loses on the unique key and is reported as a duplicate.
"""

import json
import logging

from sqlalchemy.exc import IntegrityError

from portal.core.exceptions import NotFoundError, PortalError, ValidationError
from portal.integrations.paymob_gateway import (
    extract_application_id,
    get_gateway,
    parse_transaction_status,
)
from portal.models import db
from portal.models.application import (
    APPLICATION_TRANSITIONS,
    AWAITING_PAYMENT_STATUSES,
    PAID_STATUSES,
    STATUS_APPROVED_PAYMENT_PENDING,
    Application,
)
from portal.models.audit import write_audit
from portal.models.payment import ProcessedPaymentTransaction
from portal.services.application_lifecycle import transition_application
from portal.services.notification_service import NotificationService
from portal.utils.helpers import commit_or_raise

logger = logging.getLogger(__name__)

GATEWAY_ACTOR = "paymob"


# ═══════════════════════════════════════════════════════════════
# Checkout
# ═══════════════════════════════════════════════════════════════

def initiate_payment(application_id: int, user) -> dict:
    app_row = db.session.get(Application, application_id)
    if not app_row or app_row.user_id != user.id:
        raise NotFoundError("Application", application_id)
    if app_row.status != STATUS_APPROVED_PAYMENT_PENDING:
        raise ValidationError("Application is not awaiting payment",
                              details={"status": app_row.status})
    if app_row.payment_amount is None or app_row.payment_amount <= 0:
        raise ValidationError("Payment amount has not been set")

    checkout = get_gateway().initiate_payment(
        application_id=app_row.id,
        application_number=app_row.application_number,
        amount=app_row.payment_amount,
        applicant_name=user.full_name_ar,
        phone=user.phone,
        email=user.email or "",
        description=f"{app_row.application_type} - {app_row.license_category}",
    )

    old_order = app_row.paymob_order_id
    app_row.paymob_order_id = checkout["order_id"]
    write_audit(
        entity_type="application",
        entity_id=app_row.id,
        action="payment.initiate",
        actor=user.national_id,
        actor_user_id=user.id,
        diff={"paymob_order_id": {"old": old_order, "new": checkout["order_id"]}},
    )
    commit_or_raise("Application")
    logger.info("Payment initiated for %s (order %s, %s cents)",
                app_row.application_number, checkout["order_id"], checkout["amount_cents"])

    return {
        "application_id": app_row.id,
        "application_number": app_row.application_number,
        "amount": float(app_row.payment_amount),
        **checkout,
    }


# ═══════════════════════════════════════════════════════════════
# Webhook
# ═══════════════════════════════════════════════════════════════

def _merchant_order_id(obj: dict):
    order = obj.get("order")
    if isinstance(order, dict):
        return order.get("merchant_order_id")
    return obj.get("merchant_order_id")


def _already_processed(transaction_id) -> bool:
    return ProcessedPaymentTransaction.query.filter_by(transaction_id=str(transaction_id)).first() is not None


def _record(transaction_id, app_row, merchant_order_id, outcome, obj) -> ProcessedPaymentTransaction:
    entry = ProcessedPaymentTransaction(
        transaction_id=str(transaction_id),
        application_id=app_row.id,
        merchant_order_id=merchant_order_id,
        outcome=outcome,
        amount_cents=obj.get("amount_cents") if isinstance(obj.get("amount_cents"), int) else None,
        payload_json=json.dumps(obj, default=str, ensure_ascii=False),
    )
    db.session.add(entry)
    return entry


def process_callback(body: dict, received_hmac: str | None = None) -> dict:
    """
    Reconcile one gateway webhook.

    Returns:
        {"status": "success" | "failed" | "recorded" | "duplicate" | "ignored",
         "reason": str | None, "application_id": int | None}
    """
    body = body or {}
    obj = body.get("obj") or {}
    received_hmac = received_hmac or body.get("hmac")
    gateway = get_gateway()

    if not gateway.verify_hmac(obj, received_hmac):
        logger.warning("Rejected payment callback with invalid signature (txn=%s)", obj.get("id"))
        return {"status": "ignored", "reason": "invalid_signature", "application_id": None}

    transaction_id = obj.get("id")
    merchant_order_id = _merchant_order_id(obj)
    application_id = extract_application_id(merchant_order_id)
    if transaction_id is None or application_id is None:
        logger.warning("Payment callback without usable ids (txn=%s, order=%s)", transaction_id, merchant_order_id)
        return {"status": "ignored", "reason": "unparsable_order", "application_id": None}

    if _already_processed(transaction_id):
        logger.info("Duplicate payment callback for transaction %s", transaction_id)
        return {"status": "duplicate", "reason": None, "application_id": application_id}

    app_row = db.session.get(Application, application_id)
    if not app_row:
        logger.warning("Payment callback for unknown application %s", application_id)
        return {"status": "ignored", "reason": "application_not_found", "application_id": application_id}

    outcome = parse_transaction_status(obj)["status"]
    try:
        # Unique transaction_id: a concurrent delivery that committed first fails here
        _record(transaction_id, app_row, merchant_order_id, outcome, obj)
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        logger.info("Duplicate payment callback for transaction %s (concurrent delivery)", transaction_id)
        return {"status": "duplicate", "reason": None, "application_id": application_id}

    try:
        if outcome == "success" and app_row.status in APPLICATION_TRANSITIONS["gateway_confirm"]["from"]:
            transition_application(
                app_row.id, "gateway_confirm",
                transaction_id=transaction_id, actor_label=GATEWAY_ACTOR,
            )
            return {"status": "success", "reason": None, "application_id": app_row.id}

        if outcome == "failed":
            NotificationService.create(
                user_id=app_row.user_id,
                type="payment_failed",
                title="فشل الدفع",
                message=f"فشلت عملية الدفع لطلب {app_row.application_number}. يرجى المحاولة مرة أخرى.",
                application_id=app_row.id,
                commit=False,
            )
        commit_or_raise("ProcessedPaymentTransaction")
    except (PortalError, IntegrityError) as exc:
        # Lost a race with a concurrent delivery or status change
        db.session.rollback()
        logger.warning("Payment callback for %s not applied: %s", application_id, exc)
        return {"status": "ignored", "reason": "conflict", "application_id": application_id}

    logger.info("Payment callback recorded for %s: %s (status %s)",
                app_row.application_number, outcome, app_row.status)
    return {
        "status": "failed" if outcome == "failed" else "recorded",
        "reason": None,
        "application_id": app_row.id,
    }


# ═══════════════════════════════════════════════════════════════
# Browser redirect
# ═══════════════════════════════════════════════════════════════

def handle_redirect(params: dict) -> dict:
    """Apply ``gateway_redirect`` for a successful, untampered checkout return.

    The query string must carry a valid ``hmac``; unsigned returns are ignored.

    Returns:
        {"status": "success" | "failed" | "ignored", "application": dict | None}
    """
    params = dict(params or {})
    received_hmac = params.pop("hmac", None)
    if not get_gateway().verify_hmac(params, received_hmac):
        logger.warning("Rejected payment redirect with missing or invalid signature")
        return {"status": "ignored", "application": None}

    application_id = extract_application_id(params.get("merchant_order_id"))
    app_row = db.session.get(Application, application_id) if application_id else None
    if not app_row:
        return {"status": "ignored", "application": None}

    if params.get("success") != "true":
        return {"status": "failed", "application": app_row.to_dict()}

    if app_row.status in APPLICATION_TRANSITIONS["gateway_redirect"]["from"]:
        try:
            transition_application(
                app_row.id, "gateway_redirect",
                transaction_id=params.get("id"), actor_label=GATEWAY_ACTOR,
            )
        except PortalError as exc:
            logger.warning("Payment redirect for %s not applied: %s", app_row.id, exc.message)
        app_row = db.session.get(Application, app_row.id)
    return {"status": "success", "application": app_row.to_dict()}


# ═══════════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════════

def get_payment_status(application_id: int, user) -> dict:
    app_row = db.session.get(Application, application_id)
    if not app_row or (app_row.user_id != user.id and not user.is_staff):
        raise NotFoundError("Application", application_id)

    if app_row.status in PAID_STATUSES or app_row.payment_verified_at:
        state = "paid"
    elif app_row.status in AWAITING_PAYMENT_STATUSES:
        state = "pending"
    else:
        state = "not_required"
    return {
        "application_id": app_row.id,
        "application_number": app_row.application_number,
        "status": app_row.status,
        "payment_status": state,
        "amount": float(app_row.payment_amount) if app_row.payment_amount is not None else None,
        "paid_at": app_row.payment_verified_at.isoformat() if app_row.payment_verified_at else None,
        "paymob_order_id": app_row.paymob_order_id,
    }
