"""
News Service — portal announcements.

Admin writes invalidate every cached ``news:*`` page; the public list is
served cache-aside.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_

from portal.core.exceptions import NotFoundError, ValidationError
from portal.models import db
from portal.models.audit import write_audit
from portal.models.news import NEWS_CATEGORIES, News
from portal.services.cache_service import NEWS_TTL, get_cache, news_key
from portal.utils.helpers import commit_or_raise, paginate_query, parse_bool

logger = logging.getLogger(__name__)


def _invalidate_news_cache():
    get_cache().delete_pattern("news:*")


# ═══════════════════════════════════════════════════════════════
# Public
# ═══════════════════════════════════════════════════════════════

def list_published_news(page=1, limit=10, category=None) -> dict:
    def _load():
        q = News.query.filter(News.is_published.is_(True))
        if category:
            q = q.filter(News.category == category)
        q = q.order_by(News.is_pinned.desc(), News.published_at.desc(), News.id.desc())
        return paginate_query(q, page, limit, serializer=lambda n: n.to_dict(summary=True))

    return get_cache().get_or_set(news_key(page, limit, category), _load, ttl=NEWS_TTL)


def get_published_news(news_id: int) -> dict:
    """Public detail; counts the view."""
    news = db.session.get(News, news_id)
    if not news or not news.is_published:
        raise NotFoundError("News", news_id)
    News.query.filter_by(id=news_id).update({News.view_count: News.view_count + 1},
                                            synchronize_session=False)
    db.session.commit()
    db.session.refresh(news)
    return news.to_dict()


# ═══════════════════════════════════════════════════════════════
# Admin
# ═══════════════════════════════════════════════════════════════

def list_news(filters: dict) -> dict:
    q = News.query
    if filters.get("search"):
        like = f"%{filters['search'].strip()}%"
        q = q.filter(or_(News.title_ar.ilike(like), News.content_ar.ilike(like)))
    if filters.get("category"):
        q = q.filter(News.category == filters["category"])
    if filters.get("published") not in (None, ""):
        q = q.filter(News.is_published.is_(parse_bool(filters["published"])))
    q = q.order_by(News.created_at.desc(), News.id.desc())
    return paginate_query(q, filters.get("page", 1), filters.get("limit", 10))


def get_news(news_id: int) -> News:
    news = db.session.get(News, news_id)
    if not news:
        raise NotFoundError("News", news_id)
    return news


def _apply(news: News, data: dict, partial: bool) -> None:
    for key in ("title_ar", "content_ar"):
        if not partial or key in data:
            value = (data.get(key) or "").strip()
            if not value:
                raise ValidationError(f"{key} is required", details={key: "required"})
            setattr(news, key, value)
    for key in ("title_en", "content_en", "image_path"):
        if key in data:
            setattr(news, key, data[key] or None)
    if "category" in data or not partial:
        category = data.get("category") or "news"
        if category not in NEWS_CATEGORIES:
            raise ValidationError("Invalid category", details={"category": list(NEWS_CATEGORIES)})
        news.category = category
    if "is_pinned" in data:
        news.is_pinned = parse_bool(data["is_pinned"])
    if "is_published" in data:
        _set_published(news, parse_bool(data["is_published"]))


def _set_published(news: News, published: bool) -> None:
    news.is_published = published
    news.published_at = datetime.now(timezone.utc) if published else None


def create_news(data: dict, actor) -> News:
    news = News(created_by=actor.id)
    _apply(news, data, partial=False)
    db.session.add(news)
    db.session.flush()
    write_audit(entity_type="news", entity_id=news.id, action="create",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={"title_ar": {"old": None, "new": news.title_ar}})
    commit_or_raise("News")
    _invalidate_news_cache()
    return news


def update_news(news_id: int, data: dict, actor) -> News:
    news = get_news(news_id)
    _apply(news, data, partial=True)
    write_audit(entity_type="news", entity_id=news.id, action="update",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={k: {"new": v} for k, v in data.items() if k != "content_ar"})
    commit_or_raise("News")
    _invalidate_news_cache()
    return news


def delete_news(news_id: int, actor) -> None:
    news = get_news(news_id)
    write_audit(entity_type="news", entity_id=news.id, action="delete",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={"title_ar": {"old": news.title_ar, "new": None}})
    db.session.delete(news)
    commit_or_raise("News")
    _invalidate_news_cache()


def toggle_publish(news_id: int, actor) -> News:
    news = get_news(news_id)
    _set_published(news, not news.is_published)
    write_audit(entity_type="news", entity_id=news.id, action="update",
                actor=actor.national_id, actor_user_id=actor.id,
                diff={"is_published": {"old": not news.is_published, "new": news.is_published}})
    commit_or_raise("News")
    _invalidate_news_cache()
    logger.info("News %s %s", news.id, "published" if news.is_published else "unpublished")
    return news
