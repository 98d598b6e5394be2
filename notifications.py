import logging
from typing import Callable, List, Optional, Protocol

from pymongo import DESCENDING

from database import DocumentStore, Unsubscribe
from schemas import Notification, NotificationType

logger = logging.getLogger(__name__)

COLLECTION = "notifications"
NEWEST_FIRST = [("createdAt", DESCENDING)]


class Notifier(Protocol):
    def notify_success(self, message: str) -> None: ...

    def notify_error(self, message: str) -> None: ...


class LoggingNotifier:
    def notify_success(self, message: str) -> None:
        logger.info("%s", message)

    def notify_error(self, message: str) -> None:
        logger.error("%s", message)


class NotificationRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    def create(self, user_id: str, title: str, message: str, type: NotificationType = "info",
               action_url: Optional[str] = None, metadata: Optional[dict] = None) -> str:
        return self.store.add(COLLECTION, {
            "userId": user_id,
            "title": title,
            "message": message,
            "type": type,
            "read": False,
            "actionUrl": action_url,
            "metadata": metadata or {},
            "createdAt": self.store.server_timestamp(),
        })

    def get_for_user(self, user_id: str, unread_only: bool = False) -> List[Notification]:
        filters = {"userId": user_id}
        if unread_only:
            filters["read"] = False
        docs = self.store.find(COLLECTION, filters, sort=NEWEST_FIRST)
        # unread first, newest first within each group
        return sorted((Notification(**d) for d in docs), key=lambda n: n.read)

    def get_by_id(self, notification_id: str) -> Optional[Notification]:
        doc = self.store.get(COLLECTION, notification_id)
        return Notification(**doc) if doc else None

    def mark_read(self, notification_id: str) -> None:
        self.store.update(COLLECTION, notification_id, {"read": True})

    def mark_all_read(self, user_id: str) -> int:
        unread = self.get_for_user(user_id, unread_only=True)
        for n in unread:
            self.store.update(COLLECTION, n.id, {"read": True})
        return len(unread)

    def subscribe_for_user(self, user_id: str, callback: Callable[[List[Notification]], None]) -> Unsubscribe:
        return self.store.listen(
            COLLECTION, {"userId": user_id}, NEWEST_FIRST,
            lambda docs: callback([Notification(**d) for d in docs]),
        )


class StoreNotifier:
    """Notifier that leaves its messages in a user's notification inbox."""

    def __init__(self, notifications: NotificationRepository, user_id: str):
        self.notifications = notifications
        self.user_id = user_id

    def notify_success(self, message: str) -> None:
        self.notifications.create(self.user_id, "Success", message, type="success")

    def notify_error(self, message: str) -> None:
        self.notifications.create(self.user_id, "Error", message, type="error")
