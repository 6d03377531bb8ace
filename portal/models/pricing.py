"""
License price table.

A row prices one (license type, category, renewal flag[, boat type]) for a
*base duration* inside an effective date window. Prices for other
durations are derived proportionally by ``portal.services.pricing_service``.
"""

from datetime import date, datetime, timezone

from portal.models import db


# Months per duration code, used for proportional pricing
DURATION_MONTHS = {
    "1_month": 1,
    "3_months": 3,
    "6_months": 6,
    "season": 9,
}

# Base duration a category is priced at
CATEGORY_BASE_DURATIONS = {
    # monthly
    "تاجر": "1_month",
    "مندوب": "1_month",
    "تاجر خارج المحافظة": "1_month",
    "سيارة": "1_month",
    "نجار": "1_month",
    "ميكانيكي": "1_month",
    # quarterly
    "صياد مؤمن عليه": "3_months",
    "صياد غير مؤمن عليه": "3_months",
    "صياد تحت السن": "3_months",
    "صيد رجلي": "3_months",
    "عامل تاجر": "3_months",
    "بياع": "3_months",
    "شيال": "3_months",
    "تروسيكل": "3_months",
    "أفراد شركات": "3_months",
    # seasonal
    "مركب خاص": "season",
    "مركب الجهاز": "season",
    "تغيير مرسي": "season",
    "تغيير موتور": "season",
}

# Durations that can be bought for a given base duration
VALID_DURATIONS_BY_BASE = {
    "1_month": ("1_month", "3_months", "6_months", "season"),
    "3_months": ("3_months", "6_months", "season"),
    "6_months": ("6_months", "season"),
    "season": ("season",),
}


class LicensePrice(db.Model):
    __tablename__ = "license_prices"
    __table_args__ = (
        db.Index("idx_price_lookup", "license_type", "category", "is_renewal_price", "is_active"),
    )

    id = db.Column(db.Integer, primary_key=True)
    license_type = db.Column(db.String(20), nullable=False)
    category = db.Column(db.String(50), nullable=False)
    base_duration = db.Column(db.String(20), nullable=False, default="3_months")
    boat_type = db.Column(db.String(20), nullable=True)
    price = db.Column(db.Numeric(10, 2), nullable=False)
    is_renewal_price = db.Column(db.Boolean, nullable=False, default=False)
    effective_from = db.Column(db.Date, nullable=False, default=date.today)
    effective_until = db.Column(db.Date, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    notes = db.Column(db.Text)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "license_type": self.license_type,
            "category": self.category,
            "base_duration": self.base_duration,
            "boat_type": self.boat_type,
            "price": float(self.price) if self.price is not None else None,
            "is_renewal_price": self.is_renewal_price,
            "effective_from": self.effective_from.isoformat() if self.effective_from else None,
            "effective_until": self.effective_until.isoformat() if self.effective_until else None,
            "is_active": self.is_active,
            "notes": self.notes,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<LicensePrice {self.id}: {self.license_type}/{self.category} {self.price}>"
