"""
Notifications: per-recipient fan-out, the user feed and the realtime hub.
"""

from docreq.notifications.realtime import (
    EventHub,
    SubscriptionToken,
    notifications_topic,
    request_topic,
)
from docreq.notifications.fanout import (
    EVENT_TEMPLATES,
    FanoutResult,
    NotificationService,
    unique_recipients,
)
from docreq.notifications.feed import NotificationFeed

__all__ = [
    "EVENT_TEMPLATES",
    "EventHub",
    "FanoutResult",
    "NotificationFeed",
    "NotificationService",
    "SubscriptionToken",
    "notifications_topic",
    "request_topic",
    "unique_recipients",
]
