"""
Lake Authority Licensing Portal
Notification domain model.

Models:
    - Notification: in-app message for one user with read tracking
"""

from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = {
    "application_received",
    "application_under_review",
    "application_approved",
    "application_rejected",
    "payment_submitted",
    "payment_verified",
    "payment_rejected",
    "payment_failed",
    "license_ready",
    "system",
}


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    type = db.Column(db.String(40), nullable=False, default="system")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, default="")
    application_id = db.Column(
        db.Integer, db.ForeignKey("applications.id", ondelete="CASCADE"), nullable=True, index=True,
    )

    # Read tracking
    is_read = db.Column(db.Boolean, default=False)
    read_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def mark_read(self):
        self.is_read = True
        self.read_at = datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "application_id": self.application_id,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"
