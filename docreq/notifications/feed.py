"""
Read side of notifications: per-user listing, unread counter, read
marking, and the live subscription for a user's feed.
"""

from __future__ import annotations

from typing import Optional

from docreq.errors import NotFoundError
from docreq.notifications.realtime import (
    EventHub,
    Handler,
    SubscriptionToken,
    notifications_topic,
)
from docreq.store.database import Database
from docreq.store.models import Notification


class NotificationFeed:
    """
    A user's notification inbox.

    Usage:
        feed = NotificationFeed(db, hub)
        latest = feed.list_for_user("u1", limit=10)
        feed.mark_all_read("u1")
    """

    def __init__(self, db: Database, hub: Optional[EventHub] = None) -> None:
        self.db = db
        self.hub = hub

    def list_for_user(
        self, user_id: str, limit: int = 10, unread_only: bool = False
    ) -> list[Notification]:
        """Newest first. ``limit <= 0`` returns everything."""
        with self.db.session() as session:
            q = session.query(Notification).filter(Notification.user_id == user_id)
            if unread_only:
                q = q.filter(Notification.is_read.is_(False))
            q = q.order_by(Notification.created_at.desc())
            if limit > 0:
                q = q.limit(limit)
            return q.all()

    def unread_count(self, user_id: str) -> int:
        with self.db.session() as session:
            return (
                session.query(Notification)
                .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
                .count()
            )

    def mark_read(self, notification_id: str) -> Notification:
        with self.db.session() as session:
            notification = session.get(Notification, notification_id)
            if notification is None:
                raise NotFoundError("Notification", notification_id)
            notification.is_read = True
            session.flush()
            session.refresh(notification)
            return notification

    def mark_all_read(self, user_id: str) -> int:
        with self.db.session() as session:
            return (
                session.query(Notification)
                .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
                .update({Notification.is_read: True}, synchronize_session=False)
            )

    def delete(self, notification_id: str) -> bool:
        with self.db.session() as session:
            deleted = (
                session.query(Notification).filter(Notification.id == notification_id).delete()
            )
            return deleted > 0

    def subscribe(self, user_id: str, handler: Handler) -> SubscriptionToken:
        if self.hub is None:
            raise RuntimeError("NotificationFeed was created without an EventHub")
        return self.hub.subscribe(notifications_topic(user_id), handler)
