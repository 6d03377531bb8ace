"""
Lake Authority Licensing Portal
Notification Service.

Central service for creating and querying user notifications.  Lifecycle
transitions call ``NotificationService.create`` with ``commit=False`` so
the notification lands in the same transaction as the status change.
"""

from datetime import datetime, timezone

from portal.core.exceptions import NotFoundError
from portal.models import db
from portal.models.notification import Notification
from portal.utils.helpers import paginate_query, parse_bool


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="system", application_id=None, commit=True):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (flushed; committed when ``commit``).
        """
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            application_id=application_id,
        )
        db.session.add(notif)
        if commit:
            db.session.commit()
        else:
            db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, *, unread_only=False, page=1, limit=20):
        """Paginated notifications for a user, newest first, with the unread count."""
        q = Notification.query.filter_by(user_id=user_id)
        if parse_bool(unread_only):
            q = q.filter_by(is_read=False)
        q = q.order_by(Notification.created_at.desc(), Notification.id.desc())
        result = paginate_query(q, page, limit)
        result["unread_count"] = NotificationService.unread_count(user_id)
        return result

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Update ────────────────────────────────────────────────────────────

    @staticmethod
    def _get_own(notification_id, user_id):
        notif = db.session.get(Notification, notification_id)
        if not notif or notif.user_id != user_id:
            raise NotFoundError("Notification", notification_id)
        return notif

    @staticmethod
    def mark_read(notification_id, user_id):
        notif = NotificationService._get_own(notification_id, user_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all unread notifications of a user as read. Returns the count updated."""
        count = Notification.query.filter_by(user_id=user_id, is_read=False).update(
            {"is_read": True, "read_at": datetime.now(timezone.utc)},
            synchronize_session=False,
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(notification_id, user_id):
        notif = NotificationService._get_own(notification_id, user_id)
        db.session.delete(notif)
        db.session.commit()
