"""Audit log queries (super admin)."""

from datetime import datetime, time, timedelta

from portal.models.audit import AUDIT_ACTIONS, AUDIT_ENTITY_TYPES, AuditLog
from portal.utils.helpers import paginate_query, parse_date


def list_audit_logs(filters: dict) -> dict:
    """Newest first; filters: entity_type, entity_id, action, actor_user_id, start_date, end_date."""
    q = AuditLog.query
    if filters.get("entity_type"):
        q = q.filter(AuditLog.entity_type == filters["entity_type"])
    if filters.get("entity_id"):
        q = q.filter(AuditLog.entity_id == str(filters["entity_id"]))
    if filters.get("action"):
        q = q.filter(AuditLog.action == filters["action"])
    if filters.get("actor_user_id"):
        q = q.filter(AuditLog.actor_user_id == int(filters["actor_user_id"]))
    start = parse_date(filters.get("start_date"))
    end = parse_date(filters.get("end_date"))
    if start:
        q = q.filter(AuditLog.timestamp >= datetime.combine(start, time.min))
    if end:
        q = q.filter(AuditLog.timestamp < datetime.combine(end + timedelta(days=1), time.min))
    q = q.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
    return paginate_query(q, filters.get("page", 1), filters.get("limit", 50))


def get_filter_options() -> dict:
    return {
        "entity_types": sorted(AUDIT_ENTITY_TYPES),
        "actions": sorted(AUDIT_ACTIONS),
    }
