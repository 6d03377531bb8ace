"""
User Service — profile and staff-side account management.
"""

import logging

from sqlalchemy import or_

from portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_audit
from portal.models.user import ROLES, USER_STATUSES, User
from portal.services import jwt_service
from portal.services.auth_service import normalize_email, validate_phone
from portal.utils.helpers import commit_or_raise, paginate_query
from portal.utils.national_id import parse_national_id

logger = logging.getLogger(__name__)


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError("User", user_id)
    return user


def get_profile(user_id: int) -> dict:
    user = get_user(user_id)
    d = user.to_dict()
    d["national_id_info"] = parse_national_id(user.national_id)
    return d


def update_profile(user_id: int, data: dict) -> User:
    """Self-service update: names, phone and email only."""
    user = get_user(user_id)

    for field in ("first_name_ar", "last_name_ar"):
        if field in data:
            value = (data.get(field) or "").strip()
            if len(value) < 2:
                raise ValidationError(f"{field} must be at least 2 characters", details={field: "too_short"})
            setattr(user, field, value)
    for field in ("first_name_en", "last_name_en"):
        if field in data:
            setattr(user, field, (data.get(field) or "").strip() or None)
    if "phone" in data:
        phone = validate_phone(data["phone"])
        clash = User.query.filter(User.phone == phone, User.id != user.id).first()
        if clash:
            raise ConflictError("User", "phone", phone)
        user.phone = phone
    if "email" in data:
        user.email = normalize_email(data["email"])

    commit_or_raise("User")
    return user


def list_users(filters: dict) -> dict:
    """Admin listing with role/status/search filters, paginated."""
    q = User.query
    if filters.get("role"):
        q = q.filter(User.role == filters["role"])
    if filters.get("status"):
        q = q.filter(User.status == filters["status"])
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            User.national_id.like(like),
            User.phone.like(like),
            User.first_name_ar.like(like),
            User.last_name_ar.like(like),
        ))
    q = q.order_by(User.created_at.desc())
    return paginate_query(q, filters.get("page"), filters.get("limit"))


def update_user(user_id: int, data: dict, actor: User) -> User:
    """Super-admin update of role and/or status."""
    user = get_user(user_id)
    diff = {}
    if "role" in data:
        role = data["role"]
        if role not in ROLES:
            raise ValidationError(f"Invalid role: {role}", details={"role": sorted(ROLES)})
        diff["role"] = {"old": user.role, "new": role}
        user.role = role
    if "status" in data:
        status = data["status"]
        if status not in USER_STATUSES:
            raise ValidationError(f"Invalid status: {status}", details={"status": sorted(USER_STATUSES)})
        diff["status"] = {"old": user.status, "new": status}
        user.status = status
    if "role" in diff or diff.get("status", {}).get("new") == "suspended":
        jwt_service.revoke_all_user_sessions(user.id)

    write_audit(entity_type="user", entity_id=user.id, action="update",
                actor=actor.national_id, actor_user_id=actor.id, diff=diff)
    commit_or_raise("User")
    return user


def set_user_status(user_id: int, status: str, actor: User) -> User:
    """Suspend or activate an account."""
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot change your own account status")
    return update_user(user_id, {"status": status}, actor)


def delete_user(user_id: int, actor: User) -> None:
    user = get_user(user_id)
    if user.id == actor.id:
        raise ValidationError("You cannot delete your own account")
    if user.applications.count():
        raise ValidationError("User owns applications and cannot be deleted; suspend instead")
    write_audit(entity_type="user", entity_id=user.id, action="delete",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={"national_id": {"old": user.national_id, "new": None}})
    db.session.delete(user)
    commit_or_raise("User")
    logger.info("User %s deleted by %s", user_id, actor.id)
