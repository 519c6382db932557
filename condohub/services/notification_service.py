"""
Notification Service - best-effort notification sink
"""
from typing import Optional, List, Iterable, Dict, Any
from sqlalchemy.orm import Session
import json
import logging

from condohub.core.exceptions import NotificationDispatchError
from condohub.models import Notification, User, NotificationPriority

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Stores notifications for users.

    Failures are logged and swallowed: a notification that cannot be stored
    never rolls back the financial or maintenance change that caused it.
    """

    def __init__(self, db: Session):
        self.db = db

    def create_notification(
        self,
        user_id: Optional[int],
        title: str,
        message: str,
        type: str = "system",
        priority: str = NotificationPriority.MEDIUM.value,
        condominium_id: Optional[int] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> Optional[Notification]:
        """Create a notification, returning None when it could not be stored"""
        if user_id is None:
            logger.debug(f"Notification '{title}' has no recipient, skipped")
            return None

        try:
            return self._store(
                Notification(
                    condominium_id=condominium_id,
                    user_id=user_id,
                    title=title,
                    message=message,
                    type=type,
                    priority=priority,
                    data=json.dumps(data, default=str) if data else None
                )
            )
        except NotificationDispatchError as e:
            logger.warning(f"Failed to dispatch notification '{title}' to user={user_id}: {e}")
            return None

    def _store(self, notification: Notification) -> Notification:
        try:
            # SAVEPOINT so a failed insert leaves the outer transaction usable
            with self.db.begin_nested():
                self.db.add(notification)
            return notification
        except Exception as e:
            raise NotificationDispatchError(str(e)) from e

    def notify_roles(
        self,
        condominium_id: Optional[int],
        roles: Iterable[str],
        title: str,
        message: str,
        type: str = "system",
        priority: str = NotificationPriority.MEDIUM.value,
        data: Optional[Dict[str, Any]] = None
    ) -> List[Notification]:
        """Notify every active user holding one of the given roles"""
        try:
            users = self.db.query(User).filter(
                User.role.in_(list(roles)),
                User.is_active == True
            ).all()
        except Exception as e:
            logger.warning(f"Failed to look up recipients for '{title}': {e}")
            return []

        sent = []
        for user in users:
            notification = self.create_notification(
                user.id, title, message, type=type, priority=priority,
                condominium_id=condominium_id, data=data
            )
            if notification is not None:
                sent.append(notification)
        return sent

    def get_for_user(self, user_id: int, unread_only: bool = False, limit: int = 50) -> List[Notification]:
        """Get a user's notifications, newest first"""
        query = self.db.query(Notification).filter(Notification.user_id == user_id)
        if unread_only:
            query = query.filter(Notification.is_read == False)
        return query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()

    def mark_as_read(self, notification_id: int, user_id: int) -> bool:
        notification = self.db.query(Notification).filter(
            Notification.id == notification_id,
            Notification.user_id == user_id
        ).first()
        if not notification:
            return False
        notification.is_read = True
        self.db.flush()
        return True
