"""Shared utility functions for services and blueprints.

parse_date:        returns None on bad input
parse_bool:        form/query flags ("true", "1", "on")
paginate_query:    page/limit → items + pagination meta
commit_or_raise:   commit, translating DB races/duplicates into ConflictError
"""
import logging
from datetime import date, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from portal.core.exceptions import ConflictError
from portal.models import db

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


def parse_date(value):
    """Parse a date string (ISO or DD/MM/YYYY) to a date object.

    Returns None for empty/invalid input.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        pass
    try:
        return datetime.strptime(str(value), "%d/%m/%Y").date()
    except (ValueError, TypeError):
        return None


def parse_bool(value) -> bool:
    """Interpret JSON booleans and form strings alike."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def paginate_query(query, page=1, limit=DEFAULT_PAGE_SIZE, serializer=None):
    """Apply offset pagination to a SQLAlchemy query.

    Returns:
        {"items": [...], "pagination": {"page", "limit", "total", "pages"}}
    """
    try:
        page = max(int(page or 1), 1)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    except (TypeError, ValueError):
        limit = DEFAULT_PAGE_SIZE

    total = query.order_by(None).count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    serializer = serializer or (lambda obj: obj.to_dict())
    return {
        "items": [serializer(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit if total else 0,
        },
    }


def commit_or_raise(resource: str = "Record"):
    """Commit the current session or roll back and raise.

    IntegrityError → ConflictError (duplicate / constraint violation)
    StaleDataError → ConflictError (optimistic version check lost a race)
    """
    try:
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        logger.warning("Concurrent update on %s: %s", resource, exc)
        raise ConflictError(
            resource,
            message=f"{resource} was modified by another request; reload and retry",
        ) from exc
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        raise ConflictError(resource, message="Duplicate or constraint violation") from exc
