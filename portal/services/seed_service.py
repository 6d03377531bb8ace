"""
Seed Service — reference data for a fresh database.

Idempotent: every seeder skips rows that already exist, so
``flask seed-portal`` can be re-run after upgrades.
"""

import json
import logging
from datetime import date
from decimal import Decimal

from portal.models import db
from portal.models.application import APPLICATION_TRANSITIONS, ApplicationStatus
from portal.models.document import ServiceRequiredDocument
from portal.models.pricing import CATEGORY_BASE_DURATIONS, LicensePrice
from portal.models.user import ROLE_SUPER_ADMIN, User
from portal.services.document_service import DEFAULT_REQUIRED_DOCUMENTS
from portal.utils.crypto import hash_password

logger = logging.getLogger(__name__)

# (code, name_ar, name_en, category, color, icon)
STATUS_SEED = (
    ("received", "تم الاستلام", "Received", "initial", "#0d6efd", "inbox"),
    ("under_review", "قيد المراجعة", "Under review", "processing", "#fd7e14", "search"),
    ("approved_payment_pending", "تمت الموافقة - بانتظار الدفع", "Approved, awaiting payment",
     "payment", "#6f42c1", "credit-card"),
    ("payment_submitted", "تم رفع إيصال الدفع", "Payment receipt submitted", "payment", "#20c997", "receipt"),
    ("payment_verified", "تم التحقق من الدفع", "Payment verified", "payment", "#198754", "check-circle"),
    ("ready", "الترخيص جاهز", "License ready", "processing", "#0dcaf0", "award"),
    ("completed", "مكتمل", "Completed", "final", "#198754", "check-all"),
    ("rejected", "مرفوض", "Rejected", "final", "#dc3545", "x-circle"),
)

# (license_type, category, new price, renewal price[, boat_type])
PRICE_SEED = (
    ("fisherman", "صياد مؤمن عليه", "150", "120"),
    ("fisherman", "صياد غير مؤمن عليه", "200", "160"),
    ("fisherman", "صياد تحت السن", "100", "80"),
    ("fisherman", "صيد رجلي", "90", "70"),
    ("trade", "تاجر", "400", "350"),
    ("trade", "مندوب", "250", "200"),
    ("trade", "عامل تاجر", "120", "100"),
    ("trade", "تاجر خارج المحافظة", "600", "500"),
    ("trade", "بياع", "100", "80"),
    ("entry", "شيال", "80", "60"),
    ("entry", "نجار", "150", "120"),
    ("entry", "ميكانيكي", "150", "120"),
    ("entry", "أفراد شركات", "200", "150"),
    ("boat", "مركب خاص", "2000", "1500", "private"),
    ("boat", "مركب الجهاز", "1200", "1000", "agency"),
    ("boat", "تغيير مرسي", "300", "300", "private"),
    ("boat", "تغيير موتور", "500", "500", "private"),
    ("vehicle", "سيارة", "300", "250"),
    ("vehicle", "تروسيكل", "200", "150"),
)


def _next_statuses(code: str) -> list[str]:
    return sorted({rule["to"] for rule in APPLICATION_TRANSITIONS.values() if code in rule["from"]})


def seed_statuses() -> int:
    created = 0
    for order, (code, name_ar, name_en, category, color, icon) in enumerate(STATUS_SEED, start=1):
        if ApplicationStatus.query.filter_by(code=code).first():
            continue
        db.session.add(ApplicationStatus(
            code=code, name_ar=name_ar, name_en=name_en, category=category,
            color=color, icon=icon, display_order=order,
            next_statuses_json=json.dumps(_next_statuses(code)),
        ))
        created += 1
    db.session.commit()
    return created


def seed_prices(created_by: int | None = None) -> int:
    created = 0
    for entry in PRICE_SEED:
        license_type, category, new_price, renewal_price = entry[:4]
        boat_type = entry[4] if len(entry) > 4 else None
        for is_renewal, price in ((False, new_price), (True, renewal_price)):
            exists = LicensePrice.query.filter_by(
                license_type=license_type, category=category,
                is_renewal_price=is_renewal, boat_type=boat_type, is_active=True,
            ).first()
            if exists:
                continue
            db.session.add(LicensePrice(
                license_type=license_type,
                category=category,
                base_duration=CATEGORY_BASE_DURATIONS.get(category, "3_months"),
                boat_type=boat_type,
                price=Decimal(price),
                is_renewal_price=is_renewal,
                effective_from=date(date.today().year, 1, 1),
                created_by=created_by,
            ))
            created += 1
    db.session.commit()
    return created


def seed_required_documents() -> int:
    created = 0
    for service, docs in DEFAULT_REQUIRED_DOCUMENTS.items():
        if ServiceRequiredDocument.query.filter_by(service_category=service).first():
            continue
        for order, (doc_type, name_ar, required, renewal_only) in enumerate(docs, start=1):
            db.session.add(ServiceRequiredDocument(
                service_category=service, document_type=doc_type, name_ar=name_ar,
                is_required=required, renewal_only=renewal_only, display_order=order,
            ))
            created += 1
    db.session.commit()
    return created


def seed_super_admin(national_id: str | None, password: str | None, phone: str = "01000000000") -> User | None:
    """Create the first super admin. Returns None when credentials are missing or it exists."""
    if not national_id or not password:
        logger.warning("SUPER_ADMIN_NATIONAL_ID / SUPER_ADMIN_PASSWORD not set; skipping super admin")
        return None
    if User.query.filter_by(national_id=national_id).first():
        return None
    user = User(
        national_id=national_id,
        phone=phone,
        first_name_ar="مدير",
        last_name_ar="النظام",
        password_hash=hash_password(password),
        role=ROLE_SUPER_ADMIN,
    )
    db.session.add(user)
    db.session.commit()
    return user


def seed_all(config) -> dict:
    admin = seed_super_admin(
        config.get("SUPER_ADMIN_NATIONAL_ID"),
        config.get("SUPER_ADMIN_PASSWORD"),
        config.get("SUPER_ADMIN_PHONE", "01000000000"),
    )
    summary = {
        "statuses": seed_statuses(),
        "prices": seed_prices(admin.id if admin else None),
        "required_documents": seed_required_documents(),
        "super_admin": bool(admin),
    }
    logger.info("Seed complete: %s", summary)
    return summary
