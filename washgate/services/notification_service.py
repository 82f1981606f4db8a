from datetime import datetime
from flask import current_app
from washgate.extensions import db
from washgate.models import Notification
from washgate.errors import NotFoundError


class NotificationService:

    @staticmethod
    def notify(user_id, notification_type, title, message, data=None):
        """
        Store an in-app notification for a user.
        Best effort: the state change it reports has already been committed,
        so a failure here is logged and swallowed.
        """
        try:
            notification = Notification(
                user_id=user_id,
                type=getattr(notification_type, 'value', notification_type),
                title=title,
                message=message,
                data=data or {},
            )
            db.session.add(notification)
            db.session.commit()
            return notification
        except Exception:
            db.session.rollback()
            current_app.logger.exception("Notification %s for user %s failed", notification_type, user_id)
            return None

    @staticmethod
    def get_user_notifications(user_id, unread_only=False):
        query = Notification.query.filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)  # noqa: E712
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        ).count()

    @staticmethod
    def _get_own(notification_id, user_id):
        # someone else's notification looks the same as a missing one
        notification = Notification.query.filter_by(id=notification_id, user_id=user_id).first()
        if not notification:
            raise NotFoundError('Notification', notification_id)
        return notification

    @staticmethod
    def mark_read(notification_id, user_id, now=None):
        notification = NotificationService._get_own(notification_id, user_id)
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = now or datetime.now()
            db.session.commit()
        return notification

    @staticmethod
    def mark_all_read(user_id, now=None):
        """Returns how many notifications were marked."""
        marked = Notification.query.filter(
            Notification.user_id == user_id,
            Notification.is_read == False,  # noqa: E712
        ).update({'is_read': True, 'read_at': now or datetime.now()}, synchronize_session=False)
        db.session.commit()
        return marked

    @staticmethod
    def delete_notification(notification_id, user_id):
        db.session.delete(NotificationService._get_own(notification_id, user_id))
        db.session.commit()
