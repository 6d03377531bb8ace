"""
Audit trail.

Every lifecycle transition and every staff write appends one ``AuditLog``
row in the same transaction as the change it describes.  Rows are never
updated or deleted by the application.
"""

import json
from datetime import datetime, timezone

from flask import g, has_request_context, request

from portal.models import db

AUDIT_ENTITY_TYPES = {"application", "license_price", "news", "user", "required_document"}

# Lifecycle events are logged as "application.<event>"
LIFECYCLE_EVENTS = (
    "create", "start_review", "approve", "reject", "submit_receipt", "verify_payment",
    "reject_payment", "gateway_confirm", "gateway_redirect", "mark_ready", "complete", "cancel",
)
AUDIT_ACTIONS = (
    {f"application.{event}" for event in LIFECYCLE_EVENTS}
    | {"payment.initiate", "create", "update", "delete"}
)


class AuditLog(db.Model):
    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("ix_audit_logs_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_logs_action", "action"),
        db.Index("ix_audit_logs_timestamp", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(60), nullable=False)

    # National id of the acting user, or "system" / "paymob" for unattended events
    actor = db.Column(db.String(150), nullable=False, default="system")
    actor_user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    ip_address = db.Column(db.String(45))
    request_id = db.Column(db.String(64))

    diff_json = db.Column(db.Text, default="{}", comment="JSON: {field: {old, new}}")
    timestamp = db.Column(db.DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))

    actor_user = db.relationship("User", foreign_keys=[actor_user_id])

    @property
    def diff(self) -> dict:
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "actor_user_id": self.actor_user_id,
            "actor_name": self.actor_user.full_name_ar if self.actor_user else None,
            "ip_address": self.ip_address,
            "request_id": self.request_id,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.action} {self.entity_type}/{self.entity_id}>"


def write_audit(
    *,
    entity_type: str,
    entity_id,
    action: str,
    actor: str = "system",
    actor_user_id: int | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """Stage one audit row and flush it; the caller owns the commit."""
    in_request = has_request_context()
    row = AuditLog(
        entity_type=entity_type,
        entity_id=str(entity_id),
        action=action,
        actor=actor,
        actor_user_id=actor_user_id,
        ip_address=request.remote_addr if in_request else None,
        request_id=getattr(g, "request_id", None) if in_request else None,
        diff_json=json.dumps(diff or {}, default=str, ensure_ascii=False),
    )
    db.session.add(row)
    db.session.flush()
    return row
