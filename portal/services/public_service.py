"""
Public Service — unauthenticated lookups for the portal front page.
"""

from portal.models.application import APPLICATION_TYPES, LICENSE_CATEGORIES, ApplicationStatus
from portal.services import document_service, pricing_service
from portal.services.cache_service import (
    PORTAL_INFO_KEY,
    PORTAL_INFO_TTL,
    STATUSES_TTL,
    get_cache,
    statuses_key,
)

LICENSE_TYPE_NAMES = {
    "fisherman": "ترخيص صياد",
    "boat": "ترخيص مركب",
    "vehicle": "ترخيص سيارة",
    "trade": "ترخيص تاجر",
    "entry": "تصريح دخول",
    "other": "تراخيص أخرى",
}


def get_portal_info() -> dict:
    return get_cache().get_or_set(PORTAL_INFO_KEY, _build_portal_info, ttl=PORTAL_INFO_TTL)


def _build_portal_info() -> dict:
    return {
        "portal": {
            "name_ar": "بوابة تراخيص بحيرة البردويل",
            "name_en": "Bardawil Lake Licensing Portal",
            "description": "النظام الرقمي لإصدار وتجديد تراخيص الصيد والمراكب",
            "contact": {
                "phone": "+20 1234567890",
                "email": "info@bardawil-lake.gov.eg",
                "address": "شمال سيناء، مصر",
            },
            "working_hours": {
                "days": "الأحد - الخميس",
                "hours": "8:00 ص - 4:00 م",
            },
        },
        "license_types": [
            {
                "id": app_type,
                "name_ar": LICENSE_TYPE_NAMES[app_type],
                "categories": list(LICENSE_CATEGORIES.get(app_type, ())),
            }
            for app_type in APPLICATION_TYPES
        ],
    }


def get_application_statuses(category: str | None = None) -> list[dict]:
    def _load():
        q = ApplicationStatus.query.filter(ApplicationStatus.is_active.is_(True))
        if category:
            q = q.filter(ApplicationStatus.category == category)
        return [s.to_dict() for s in q.order_by(ApplicationStatus.display_order, ApplicationStatus.id).all()]

    return get_cache().get_or_set(statuses_key(category), _load, ttl=STATUSES_TTL)


def get_active_prices() -> dict:
    return pricing_service.get_active_price_list()


def get_required_documents(service_category: str, is_renewal=False) -> list[dict]:
    return document_service.get_required_documents(service_category, is_renewal)
