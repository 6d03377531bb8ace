"""
Identity models — users and refresh-token sessions.

A user has exactly one role. Refresh tokens are never stored raw: each
``RefreshSession`` row holds the SHA-256 of one issued refresh token and
is revoked on logout, rotation, or password change.
"""

import uuid
from datetime import datetime, timezone

from portal.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ROLE_CITIZEN = "citizen"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ROLE_FINANCIAL_OFFICER = "financial_officer"

ROLES = {ROLE_CITIZEN, ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_FINANCIAL_OFFICER}
STAFF_ROLES = {ROLE_ADMIN, ROLE_SUPER_ADMIN, ROLE_FINANCIAL_OFFICER}

USER_STATUSES = {"active", "suspended"}


# ═══════════════════════════════════════════════════════════════
# 1. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    national_id = db.Column(db.String(14), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(20), unique=True, nullable=False)
    email = db.Column(db.String(200), nullable=True)
    first_name_ar = db.Column(db.String(100), nullable=False)
    last_name_ar = db.Column(db.String(100), nullable=False)
    first_name_en = db.Column(db.String(100))
    last_name_en = db.Column(db.String(100))
    password_hash = db.Column(db.String(256), nullable=False)
    role = db.Column(db.String(30), nullable=False, default=ROLE_CITIZEN)
    status = db.Column(db.String(20), nullable=False, default="active")

    # Lockout
    login_attempts = db.Column(db.Integer, nullable=False, default=0)
    lock_until = db.Column(db.DateTime)

    # Password reset (SHA-256 of the emailed/returned token)
    password_reset_token = db.Column(db.String(64))
    password_reset_expires = db.Column(db.DateTime)
    password_changed_at = db.Column(db.DateTime)

    last_login_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    sessions = db.relationship(
        "RefreshSession", back_populates="user", lazy="dynamic", cascade="all, delete-orphan",
    )
    applications = db.relationship(
        "Application", back_populates="user", lazy="dynamic",
        foreign_keys="Application.user_id",
    )

    @property
    def full_name_ar(self):
        return f"{self.first_name_ar} {self.last_name_ar}".strip()

    @property
    def is_staff(self):
        return self.role in STAFF_ROLES

    @property
    def is_locked(self):
        if not self.lock_until:
            return False
        return self.lock_until.replace(tzinfo=timezone.utc) > datetime.now(timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "national_id": self.national_id,
            "phone": self.phone,
            "email": self.email,
            "first_name_ar": self.first_name_ar,
            "last_name_ar": self.last_name_ar,
            "first_name_en": self.first_name_en,
            "last_name_en": self.last_name_en,
            "full_name_ar": self.full_name_ar,
            "role": self.role,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<User {self.id}: {self.national_id} ({self.role})>"


# ═══════════════════════════════════════════════════════════════
# 2. REFRESH SESSIONS
# ═══════════════════════════════════════════════════════════════
class RefreshSession(db.Model):
    __tablename__ = "refresh_sessions"

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    token_hash = db.Column(db.String(64), nullable=False, index=True)  # SHA-256 of refresh token
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    expires_at = db.Column(db.DateTime, nullable=False)
    last_used_at = db.Column(db.DateTime)

    user = db.relationship("User", back_populates="sessions")

    @property
    def is_expired(self):
        return datetime.now(timezone.utc) > self.expires_at.replace(tzinfo=timezone.utc)

    def to_dict(self):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
