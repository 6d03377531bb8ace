"""
Pricing Service — fee lookup and license price administration.

Lookup rules:
    - only active rows whose window contains the lookup date
      (effective_from ≤ day ≤ effective_until, open-ended when NULL)
    - boat prices additionally match ``boat_type``
    - the most recent ``effective_from`` wins
    - a missing renewal price falls back to the new-license price
    - the row prices its ``base_duration``; other durations scale
      proportionally by month count and round to 2 decimals
"""

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import or_

from portal.core.exceptions import ConflictError, NotFoundError, ValidationError
from portal.models import db
from portal.models.application import APPLICATION_TYPES, BOAT_TYPES, DURATIONS
from portal.models.audit import write_audit
from portal.models.pricing import (
    CATEGORY_BASE_DURATIONS,
    DURATION_MONTHS,
    VALID_DURATIONS_BY_BASE,
    LicensePrice,
)
from portal.services.cache_service import ACTIVE_PRICES_KEY, PRICES_TTL, get_cache
from portal.utils.helpers import commit_or_raise, parse_bool, parse_date

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


# ═══════════════════════════════════════════════════════════════
# Duration arithmetic
# ═══════════════════════════════════════════════════════════════

def get_base_duration(category: str) -> str:
    """Base duration a category is priced at (3 months when unknown)."""
    return CATEGORY_BASE_DURATIONS.get(category, "3_months")


def get_valid_durations(category: str) -> tuple:
    return VALID_DURATIONS_BY_BASE[get_base_duration(category)]


def calculate_price_for_duration(base_price, base_duration: str, target_duration: str) -> Decimal:
    """Scale ``base_price`` from ``base_duration`` to ``target_duration``.

    >>> calculate_price_for_duration(Decimal("100"), "1_month", "season")
    Decimal('900.00')
    """
    base_months = DURATION_MONTHS.get(base_duration)
    target_months = DURATION_MONTHS.get(target_duration)
    if not base_months or not target_months:
        raise ValidationError(f"Unknown duration: {base_duration!r} / {target_duration!r}")
    amount = Decimal(str(base_price)) * Decimal(target_months) / Decimal(base_months)
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


# ═══════════════════════════════════════════════════════════════
# Lookup
# ═══════════════════════════════════════════════════════════════

def _find_price_row(license_type, category, is_renewal, boat_type, on_date):
    q = LicensePrice.query.filter(
        LicensePrice.license_type == license_type,
        LicensePrice.category == category,
        LicensePrice.is_renewal_price == bool(is_renewal),
        LicensePrice.is_active.is_(True),
        LicensePrice.effective_from <= on_date,
        or_(LicensePrice.effective_until.is_(None), LicensePrice.effective_until >= on_date),
    )
    if license_type == "boat" and boat_type:
        q = q.filter(LicensePrice.boat_type == boat_type)
    return q.order_by(LicensePrice.effective_from.desc(), LicensePrice.id.desc()).first()


def get_current_price(
    license_type: str,
    category: str,
    is_renewal: bool = False,
    duration: str | None = None,
    boat_type: str | None = None,
    on_date: date | None = None,
) -> dict | None:
    """Resolve the fee for an application tuple.

    Returns:
        {"price_id", "base_price", "base_duration", "duration", "amount"}
        or None when no active row matches.
    """
    on_date = on_date or date.today()
    row = _find_price_row(license_type, category, is_renewal, boat_type, on_date)
    if row is None and is_renewal:
        row = _find_price_row(license_type, category, False, boat_type, on_date)
    if row is None:
        return None

    base_duration = row.base_duration or get_base_duration(category)
    duration = duration or base_duration
    return {
        "price_id": row.id,
        "base_price": Decimal(str(row.price)),
        "base_duration": base_duration,
        "duration": duration,
        "amount": calculate_price_for_duration(row.price, base_duration, duration),
    }


def require_price(license_type, category, is_renewal=False, duration=None, boat_type=None) -> dict:
    """Like ``get_current_price`` but raises when nothing matches."""
    price = get_current_price(license_type, category, is_renewal, duration, boat_type)
    if price is None:
        raise ValidationError(
            f"No active price configured for {license_type}/{category}",
            details={"license_type": license_type, "category": category, "is_renewal": bool(is_renewal)},
        )
    return price


# ═══════════════════════════════════════════════════════════════
# Public price list (cached)
# ═══════════════════════════════════════════════════════════════

def get_active_price_list() -> dict:
    """Active prices grouped by license type."""
    return get_cache().get_or_set(ACTIVE_PRICES_KEY, _load_active_price_list, ttl=PRICES_TTL)


def _load_active_price_list() -> dict:
    today = date.today()
    rows = (
        LicensePrice.query
        .filter(
            LicensePrice.is_active.is_(True),
            LicensePrice.effective_from <= today,
            or_(LicensePrice.effective_until.is_(None), LicensePrice.effective_until >= today),
        )
        .order_by(LicensePrice.license_type, LicensePrice.category, LicensePrice.is_renewal_price)
        .all()
    )
    grouped: dict = {}
    for row in rows:
        item = row.to_dict()
        durations = VALID_DURATIONS_BY_BASE.get(row.base_duration, ())
        item["valid_durations"] = list(durations)
        item["prices"] = {
            d: float(calculate_price_for_duration(row.price, row.base_duration, d)) for d in durations
        }
        grouped.setdefault(row.license_type, []).append(item)
    return grouped


def _invalidate_price_cache():
    get_cache().delete(ACTIVE_PRICES_KEY)


# ═══════════════════════════════════════════════════════════════
# Administration
# ═══════════════════════════════════════════════════════════════

def list_prices(filters: dict) -> list[dict]:
    q = LicensePrice.query
    if filters.get("license_type"):
        q = q.filter(LicensePrice.license_type == filters["license_type"])
    if filters.get("category"):
        q = q.filter(LicensePrice.category == filters["category"])
    if "is_active" in filters and filters["is_active"] not in (None, ""):
        q = q.filter(LicensePrice.is_active.is_(parse_bool(filters["is_active"])))
    rows = q.order_by(LicensePrice.license_type, LicensePrice.category, LicensePrice.effective_from.desc()).all()
    return [r.to_dict() for r in rows]


def get_price(price_id: int) -> LicensePrice:
    row = db.session.get(LicensePrice, price_id)
    if not row:
        raise NotFoundError("LicensePrice", price_id)
    return row


def _validate_price_payload(data: dict, partial=False) -> dict:
    clean = {}
    if not partial or "license_type" in data:
        if data.get("license_type") not in APPLICATION_TYPES:
            raise ValidationError("Invalid license_type", details={"license_type": list(APPLICATION_TYPES)})
        clean["license_type"] = data["license_type"]
    if not partial or "category" in data:
        category = (data.get("category") or "").strip()
        if not category:
            raise ValidationError("category is required", details={"category": "required"})
        clean["category"] = category
    if not partial or "price" in data:
        try:
            price = Decimal(str(data.get("price")))
        except Exception as exc:
            raise ValidationError("price must be a number", details={"price": "invalid"}) from exc
        if price < 0:
            raise ValidationError("price must not be negative", details={"price": "negative"})
        clean["price"] = price
    if "base_duration" in data:
        if data["base_duration"] not in DURATIONS:
            raise ValidationError("Invalid base_duration", details={"base_duration": list(DURATIONS)})
        clean["base_duration"] = data["base_duration"]
    elif not partial:
        clean["base_duration"] = get_base_duration(clean["category"])
    if "boat_type" in data:
        boat_type = data.get("boat_type") or None
        if boat_type is not None and boat_type not in BOAT_TYPES:
            raise ValidationError("Invalid boat_type", details={"boat_type": list(BOAT_TYPES)})
        clean["boat_type"] = boat_type
    if "is_renewal_price" in data or not partial:
        clean["is_renewal_price"] = parse_bool(data.get("is_renewal_price"))
    if "effective_from" in data:
        clean["effective_from"] = parse_date(data["effective_from"]) or date.today()
    if "effective_until" in data:
        clean["effective_until"] = parse_date(data["effective_until"])
    if "notes" in data:
        clean["notes"] = data.get("notes")
    if "is_active" in data:
        clean["is_active"] = parse_bool(data["is_active"])
    if clean.get("effective_from") and clean.get("effective_until") \
            and clean["effective_until"] < clean["effective_from"]:
        raise ValidationError("effective_until precedes effective_from")
    return clean


def create_price(data: dict, actor) -> LicensePrice:
    """Create a price row; one active row per (type, category, renewal, boat type)."""
    clean = _validate_price_payload(data)
    duplicate = LicensePrice.query.filter_by(
        license_type=clean["license_type"],
        category=clean["category"],
        is_renewal_price=clean["is_renewal_price"],
        boat_type=clean.get("boat_type"),
        is_active=True,
    ).first()
    if duplicate:
        raise ConflictError(
            "LicensePrice", "category", clean["category"],
            message="An active price already exists for this type and category",
        )

    row = LicensePrice(created_by=actor.id if actor else None, **clean)
    db.session.add(row)
    db.session.flush()
    write_audit(entity_type="license_price", entity_id=row.id, action="create",
                actor=actor.national_id if actor else "system",
                actor_user_id=actor.id if actor else None,
                diff={"price": {"old": None, "new": str(row.price)}})
    commit_or_raise("LicensePrice")
    _invalidate_price_cache()
    logger.info("Price created %s/%s = %s", row.license_type, row.category, row.price)
    return row


def update_price(price_id: int, data: dict, actor) -> LicensePrice:
    row = get_price(price_id)
    clean = _validate_price_payload(data, partial=True)
    diff = {}
    for key, value in clean.items():
        old = getattr(row, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(row, key, value)
    write_audit(entity_type="license_price", entity_id=row.id, action="update",
                actor=actor.national_id, actor_user_id=actor.id, diff=diff)
    commit_or_raise("LicensePrice")
    _invalidate_price_cache()
    return row


def delete_price(price_id: int, actor) -> LicensePrice:
    """Soft delete: the row stays for history but no longer matches lookups."""
    row = get_price(price_id)
    row.is_active = False
    write_audit(entity_type="license_price", entity_id=row.id, action="delete",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={"is_active": {"old": True, "new": False}})
    commit_or_raise("LicensePrice")
    _invalidate_price_cache()
    return row
