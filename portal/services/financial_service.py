"""
Financial Service — payment verification desk for financial officers.

Verification and receipt rejection are lifecycle events
(``verify_payment`` / ``reject_payment``); this module only adds the
officer-facing queries and the Excel report.
"""

import io
import logging
from datetime import datetime, time, timedelta, timezone

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from sqlalchemy import func, or_

from portal.core.exceptions import NotFoundError
from portal.models import db
from portal.models.application import (
    AWAITING_PAYMENT_STATUSES,
    PAID_STATUSES,
    STATUS_PAYMENT_SUBMITTED,
    Application,
)
from portal.models.user import User
from portal.services.application_lifecycle import transition_application
from portal.utils.helpers import paginate_query, parse_date

logger = logging.getLogger(__name__)

HEADER_FILL = PatternFill(start_color="1F5F8B", end_color="1F5F8B", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style="thin"),
    right=Side(style="thin"),
    top=Side(style="thin"),
    bottom=Side(style="thin"),
)

REPORT_COLUMNS = (
    "رقم الطلب",
    "نوع الترخيص",
    "الفئة",
    "اسم صاحب الترخيص",
    "الرقم القومي",
    "المبلغ",
    "رقم أمر التوريد",
    "طريقة الدفع",
    "تاريخ الدفع",
    "الحالة",
)


def _with_applicant(q):
    return q.join(User, Application.user_id == User.id)


def _payment_row(app_row: Application) -> dict:
    d = app_row.to_dict()
    user = app_row.user
    d["applicant"] = {
        "id": user.id,
        "national_id": user.national_id,
        "full_name_ar": user.full_name_ar,
        "phone": user.phone,
    } if user else None
    return d


# ═══════════════════════════════════════════════════════════════
# Dashboard
# ═══════════════════════════════════════════════════════════════

def get_dashboard_stats() -> dict:
    now = datetime.now(timezone.utc)
    start_of_day = datetime.combine(now.date(), time.min, tzinfo=timezone.utc)
    start_of_month = start_of_day.replace(day=1)

    paid = Application.status.in_(PAID_STATUSES)

    def _sum(*criteria):
        value = db.session.query(func.coalesce(func.sum(Application.payment_amount), 0)).filter(*criteria).scalar()
        return float(value or 0)

    def _count(*criteria):
        return db.session.query(func.count(Application.id)).filter(*criteria).scalar() or 0

    per_type = (
        db.session.query(Application.application_type,
                         func.count(Application.id),
                         func.coalesce(func.sum(Application.payment_amount), 0))
        .filter(paid)
        .group_by(Application.application_type)
        .all()
    )

    return {
        "pending_payments": _count(Application.status.in_(AWAITING_PAYMENT_STATUSES)),
        "receipts_to_review": _count(Application.status == STATUS_PAYMENT_SUBMITTED),
        "verified_count": _count(paid),
        "verified_today": _count(paid, Application.payment_verified_at >= start_of_day),
        "verified_this_month": _count(paid, Application.payment_verified_at >= start_of_month),
        "total_collected": _sum(paid),
        "collected_today": _sum(paid, Application.payment_verified_at >= start_of_day),
        "collected_this_month": _sum(paid, Application.payment_verified_at >= start_of_month),
        "collected_by_type": {
            app_type: {"count": count, "amount": float(amount or 0)}
            for app_type, count, amount in per_type
        },
    }


# ═══════════════════════════════════════════════════════════════
# Queues
# ═══════════════════════════════════════════════════════════════

def _apply_search(q, search):
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(or_(
            Application.application_number.ilike(like),
            User.national_id.ilike(like),
            User.first_name_ar.ilike(like),
            User.last_name_ar.ilike(like),
        ))
    return q


def list_pending_payments(filters: dict) -> dict:
    """Awaiting payment, oldest first."""
    q = _with_applicant(Application.query).filter(Application.status.in_(AWAITING_PAYMENT_STATUSES))
    if filters.get("status") in AWAITING_PAYMENT_STATUSES:
        q = q.filter(Application.status == filters["status"])
    q = _apply_search(q, filters.get("search"))
    q = q.order_by(Application.updated_at.asc(), Application.id.asc())
    return paginate_query(q, filters.get("page", 1), filters.get("limit", 20), serializer=_payment_row)


def get_payment_details(application_id: int) -> dict:
    app_row = db.session.get(Application, application_id)
    if not app_row:
        raise NotFoundError("Application", application_id)
    d = _payment_row(app_row)
    d["documents"] = [doc.to_dict() for doc in app_row.documents.all()]
    d["history"] = [h.to_dict() for h in app_row.history.all()]
    return d


def verify_payment(application_id: int, officer, notes=None, expected_version=None) -> dict:
    return transition_application(application_id, "verify_payment", actor=officer,
                                  notes=notes, expected_version=expected_version)


def reject_payment(application_id: int, officer, reason, expected_version=None) -> dict:
    return transition_application(application_id, "reject_payment", actor=officer,
                                  reason=reason, expected_version=expected_version)


# ═══════════════════════════════════════════════════════════════
# History & export
# ═══════════════════════════════════════════════════════════════

def _history_query(filters: dict):
    q = _with_applicant(Application.query).filter(Application.status.in_(PAID_STATUSES))
    start = parse_date(filters.get("start_date"))
    end = parse_date(filters.get("end_date"))
    if start:
        q = q.filter(Application.payment_verified_at >= datetime.combine(start, time.min))
    if end:
        q = q.filter(Application.payment_verified_at < datetime.combine(end + timedelta(days=1), time.min))
    if filters.get("type"):
        q = q.filter(Application.application_type == filters["type"])
    return _apply_search(q, filters.get("search"))


def get_payment_history(filters: dict) -> dict:
    q = _history_query(filters)
    total_amount = q.with_entities(func.coalesce(func.sum(Application.payment_amount), 0)).scalar()
    result = paginate_query(
        q.order_by(Application.payment_verified_at.desc(), Application.id.desc()),
        filters.get("page", 1), filters.get("limit", 50), serializer=_payment_row,
    )
    result["total_amount"] = float(total_amount or 0)
    return result


def export_payment_history_xlsx(filters: dict) -> bytes:
    """Styled workbook of the filtered payment history."""
    rows = _history_query(filters).order_by(Application.payment_verified_at.desc()).all()

    wb = Workbook()
    ws = wb.active
    ws.title = "المدفوعات"
    ws.sheet_view.rightToLeft = True

    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(REPORT_COLUMNS))
    ws["A1"] = "تقرير المدفوعات — بوابة تراخيص بحيرة البردويل"
    ws["A1"].font = Font(size=14, bold=True)
    ws["A2"] = f"تاريخ التقرير: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M')} UTC"
    ws["A2"].font = Font(size=10, italic=True, color="666666")

    header_row = 4
    for col, title in enumerate(REPORT_COLUMNS, start=1):
        cell = ws.cell(row=header_row, column=col, value=title)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.border = THIN_BORDER
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    total = 0.0
    for i, app_row in enumerate(rows, start=header_row + 1):
        amount = float(app_row.payment_amount or 0)
        total += amount
        values = (
            app_row.application_number,
            app_row.application_type,
            app_row.license_category,
            app_row.license_holder_name,
            app_row.license_holder_national_id,
            amount,
            app_row.supply_order_id,
            "إلكتروني" if app_row.paymob_transaction_id else "إيصال",
            app_row.payment_verified_at.strftime("%Y-%m-%d %H:%M") if app_row.payment_verified_at else "",
            app_row.status,
        )
        for col, value in enumerate(values, start=1):
            ws.cell(row=i, column=col, value=value).border = THIN_BORDER

    total_row = header_row + len(rows) + 1
    ws.cell(row=total_row, column=5, value="الإجمالي").font = Font(bold=True)
    ws.cell(row=total_row, column=6, value=total).font = Font(bold=True)

    for col in range(1, len(REPORT_COLUMNS) + 1):
        letter = get_column_letter(col)
        width = max((len(str(c.value)) for c in ws[letter][header_row - 1:] if c.value), default=10)
        ws.column_dimensions[letter].width = min(max(width + 4, 12), 50)

    buf = io.BytesIO()
    wb.save(buf)
    buf.seek(0)
    logger.info("Payment history export: %d rows, total %.2f", len(rows), total)
    return buf.getvalue()
