"""
Lake Authority Licensing Portal
Application domain model.

Models:
    - Application: one citizen's license request and its lifecycle state.
    - ApplicationStatusHistory: append-only log, one row per transition.
    - ApplicationStatus: presentational lookup (name, colour, icon) per status code.

The transition table ``APPLICATION_TRANSITIONS`` is the single source of
truth for which event may move an application from which status.
"""

import json
from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

APPLICATION_TYPES = ("fisherman", "boat", "vehicle", "trade", "entry", "other")

# Whitelisted license categories per application type. ``other`` has none.
LICENSE_CATEGORIES = {
    "fisherman": ("صياد مؤمن عليه", "صياد غير مؤمن عليه", "صياد تحت السن", "صيد رجلي"),
    "trade": ("تاجر", "مندوب", "عامل تاجر", "تاجر خارج المحافظة", "بياع"),
    "entry": ("شيال", "نجار", "ميكانيكي", "أفراد شركات"),
    "boat": ("مركب خاص", "مركب الجهاز", "تغيير مرسي", "تغيير موتور"),
    "vehicle": ("سيارة", "تروسيكل"),
}

DURATIONS = ("1_month", "3_months", "6_months", "season")
DEFAULT_DURATION = "3_months"

BOAT_TYPES = ("private", "agency")
DEFAULT_BOAT_TYPE = "private"

STATUS_RECEIVED = "received"
STATUS_UNDER_REVIEW = "under_review"
STATUS_APPROVED_PAYMENT_PENDING = "approved_payment_pending"
STATUS_PAYMENT_SUBMITTED = "payment_submitted"
STATUS_PAYMENT_VERIFIED = "payment_verified"
STATUS_READY = "ready"
STATUS_COMPLETED = "completed"
STATUS_REJECTED = "rejected"

APPLICATION_STATUSES = (
    STATUS_RECEIVED,
    STATUS_UNDER_REVIEW,
    STATUS_APPROVED_PAYMENT_PENDING,
    STATUS_PAYMENT_SUBMITTED,
    STATUS_PAYMENT_VERIFIED,
    STATUS_READY,
    STATUS_COMPLETED,
    STATUS_REJECTED,
)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_REJECTED})
AWAITING_PAYMENT_STATUSES = (STATUS_APPROVED_PAYMENT_PENDING, STATUS_PAYMENT_SUBMITTED)
PAID_STATUSES = (STATUS_PAYMENT_VERIFIED, STATUS_READY, STATUS_COMPLETED)

# Valid status transitions: event → {"from": [...], "to": status}
APPLICATION_TRANSITIONS = {
    "start_review": {"from": [STATUS_RECEIVED], "to": STATUS_UNDER_REVIEW},
    "approve": {"from": [STATUS_RECEIVED, STATUS_UNDER_REVIEW], "to": STATUS_APPROVED_PAYMENT_PENDING},
    "reject": {
        "from": [STATUS_RECEIVED, STATUS_UNDER_REVIEW, STATUS_APPROVED_PAYMENT_PENDING, STATUS_PAYMENT_SUBMITTED],
        "to": STATUS_REJECTED,
    },
    "submit_receipt": {"from": [STATUS_APPROVED_PAYMENT_PENDING], "to": STATUS_PAYMENT_SUBMITTED},
    "verify_payment": {"from": list(AWAITING_PAYMENT_STATUSES), "to": STATUS_PAYMENT_VERIFIED},
    "reject_payment": {"from": [STATUS_PAYMENT_SUBMITTED], "to": STATUS_APPROVED_PAYMENT_PENDING},
    "gateway_confirm": {"from": list(AWAITING_PAYMENT_STATUSES), "to": STATUS_COMPLETED},
    "gateway_redirect": {"from": list(AWAITING_PAYMENT_STATUSES), "to": STATUS_PAYMENT_VERIFIED},
    "mark_ready": {"from": [STATUS_PAYMENT_VERIFIED], "to": STATUS_READY},
    "complete": {"from": [STATUS_READY], "to": STATUS_COMPLETED},
    "cancel": {"from": [STATUS_RECEIVED, STATUS_UNDER_REVIEW], "to": STATUS_REJECTED},
}


class Application(db.Model):
    """
    A license application.

    ``version`` is the optimistic-lock counter: SQLAlchemy adds
    ``WHERE version = :old`` to every UPDATE and raises ``StaleDataError``
    when another writer got there first.
    """

    __tablename__ = "applications"
    __table_args__ = (
        db.Index("idx_app_user_status", "user_id", "status"),
        db.Index("idx_app_type_category", "application_type", "license_category"),
        db.Index("idx_app_created", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    application_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Classification
    application_type = db.Column(db.String(20), nullable=False)
    license_category = db.Column(db.String(50), nullable=False)
    is_renewal = db.Column(db.Boolean, nullable=False, default=False)
    duration = db.Column(db.String(20), nullable=False, default=DEFAULT_DURATION)
    boat_type = db.Column(db.String(20), nullable=True)

    # Lifecycle
    status = db.Column(db.String(40), nullable=False, default=STATUS_RECEIVED, index=True)
    status_id = db.Column(
        db.Integer, db.ForeignKey("application_statuses.id", ondelete="SET NULL"), nullable=True,
    )
    rejection_reason = db.Column(db.Text)

    # License holder (defaults to the submitting user)
    license_holder_name = db.Column(db.String(200))
    license_holder_national_id = db.Column(db.String(14))

    # Financial
    payment_amount = db.Column(db.Numeric(10, 2), nullable=True)
    supply_order_id = db.Column(db.String(30), nullable=True)
    payment_receipt_path = db.Column(db.String(255), nullable=True)
    paymob_order_id = db.Column(db.String(50), nullable=True, index=True)
    paymob_transaction_id = db.Column(db.String(50), nullable=True)
    payment_verified_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    payment_verified_at = db.Column(db.DateTime)
    payment_verification_notes = db.Column(db.Text)

    # Review
    reviewed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    reviewed_at = db.Column(db.DateTime)
    approved_at = db.Column(db.DateTime)
    submitted_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Type-specific payload, validated by portal.services.application_data
    data_json = db.Column(db.Text, default="{}")

    version = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": version}

    # Relationships
    user = db.relationship("User", back_populates="applications", foreign_keys=[user_id])
    reviewer = db.relationship("User", foreign_keys=[reviewed_by])
    payment_verifier = db.relationship("User", foreign_keys=[payment_verified_by])
    status_ref = db.relationship("ApplicationStatus")
    documents = db.relationship(
        "Document", back_populates="application", lazy="dynamic", cascade="all, delete-orphan",
    )
    history = db.relationship(
        "ApplicationStatusHistory", back_populates="application", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ApplicationStatusHistory.id",
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def data(self) -> dict:
        try:
            return json.loads(self.data_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    @data.setter
    def data(self, value: dict):
        self.data_json = json.dumps(value or {}, ensure_ascii=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self, include_documents=False, include_history=False):
        d = {
            "id": self.id,
            "application_number": self.application_number,
            "user_id": self.user_id,
            "application_type": self.application_type,
            "license_category": self.license_category,
            "is_renewal": self.is_renewal,
            "duration": self.duration,
            "boat_type": self.boat_type,
            "status": self.status,
            "status_info": self.status_ref.to_dict() if self.status_ref else None,
            "is_terminal": self.is_terminal,
            "rejection_reason": self.rejection_reason,
            "license_holder_name": self.license_holder_name,
            "license_holder_national_id": self.license_holder_national_id,
            "payment_amount": float(self.payment_amount) if self.payment_amount is not None else None,
            "supply_order_id": self.supply_order_id,
            "payment_receipt_path": self.payment_receipt_path,
            "paymob_order_id": self.paymob_order_id,
            "paymob_transaction_id": self.paymob_transaction_id,
            "payment_verified_by": self.payment_verified_by,
            "payment_verified_at": self.payment_verified_at.isoformat() if self.payment_verified_at else None,
            "payment_verification_notes": self.payment_verification_notes,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "data": self.data,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_documents:
            d["documents"] = [doc.to_dict() for doc in self.documents.all()]
        if include_history:
            d["history"] = [h.to_dict() for h in self.history.all()]
        return d

    def __repr__(self):
        return f"<Application {self.id}: {self.application_number} [{self.status}]>"


class ApplicationStatusHistory(db.Model):
    """Immutable record of one status change."""

    __tablename__ = "application_status_history"

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    old_status = db.Column(db.String(40), nullable=True)
    new_status = db.Column(db.String(40), nullable=False)
    changed_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    application = db.relationship("Application", back_populates="history")
    actor = db.relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "application_id": self.application_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "changed_by": self.changed_by,
            "changed_by_name": self.actor.full_name_ar if self.actor else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ApplicationStatus(db.Model):
    """Display metadata for a status code. Not consulted for transition rules."""

    __tablename__ = "application_statuses"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(40), unique=True, nullable=False)
    name_ar = db.Column(db.String(100), nullable=False)
    name_en = db.Column(db.String(100))
    description = db.Column(db.Text)
    category = db.Column(db.String(30), default="processing", comment="initial | processing | payment | final")
    color = db.Column(db.String(20), default="#6c757d")
    icon = db.Column(db.String(50))
    display_order = db.Column(db.Integer, default=0)
    next_statuses_json = db.Column(db.Text, default="[]")
    is_active = db.Column(db.Boolean, default=True)

    @property
    def next_statuses(self) -> list:
        try:
            return json.loads(self.next_statuses_json or "[]")
        except (json.JSONDecodeError, TypeError):
            return []

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "name_ar": self.name_ar,
            "name_en": self.name_en,
            "description": self.description,
            "category": self.category,
            "color": self.color,
            "icon": self.icon,
            "display_order": self.display_order,
            "next_statuses": self.next_statuses,
            "is_active": self.is_active,
        }
