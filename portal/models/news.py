"""
News and announcements shown on the public portal.
"""

from datetime import datetime, timezone

from portal.models import db


NEWS_CATEGORIES = ("announcement", "news", "update", "alert")


class News(db.Model):
    __tablename__ = "news"
    __table_args__ = (
        db.Index("idx_news_published", "is_published", "published_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title_ar = db.Column(db.String(300), nullable=False)
    title_en = db.Column(db.String(300))
    content_ar = db.Column(db.Text, nullable=False)
    content_en = db.Column(db.Text)
    category = db.Column(db.String(20), nullable=False, default="news")
    image_path = db.Column(db.String(255))
    is_published = db.Column(db.Boolean, default=False)
    published_at = db.Column(db.DateTime)
    is_pinned = db.Column(db.Boolean, default=False)
    view_count = db.Column(db.Integer, default=0)
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self, summary=False):
        d = {
            "id": self.id,
            "title_ar": self.title_ar,
            "title_en": self.title_en,
            "category": self.category,
            "image_path": self.image_path,
            "is_published": self.is_published,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "is_pinned": self.is_pinned,
            "view_count": self.view_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if summary:
            d["excerpt_ar"] = (self.content_ar or "")[:200]
        else:
            d["content_ar"] = self.content_ar
            d["content_en"] = self.content_en
        return d

    def __repr__(self):
        return f"<News {self.id}: {self.title_ar[:40]}>"
