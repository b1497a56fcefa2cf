"""
In-process realtime event hub.

Viewers register a handler per topic and get a token back; the token
tears the subscription down. Publishing is fire-and-forget: handler
errors are logged and never reach the publisher, and a viewer that
misses a push is expected to refetch.

Topics used by the tracker:
    notifications:{user_id}   one message per notification inserted
    requests:{request_id}     one message per request mutation
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Handler = Callable[[str, dict[str, Any]], None]


def notifications_topic(user_id: str) -> str:
    return f"notifications:{user_id}"


def request_topic(request_id: str) -> str:
    return f"requests:{request_id}"


@dataclass
class SubscriptionToken:
    """Handle for one subscription. Usable as a context manager."""

    topic: str
    token_id: int
    _hub: Optional["EventHub"] = field(default=None, repr=False, compare=False)

    def unsubscribe(self) -> bool:
        if self._hub is None:
            return False
        removed = self._hub.unsubscribe(self)
        self._hub = None
        return removed

    def __enter__(self) -> "SubscriptionToken":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.unsubscribe()


class EventHub:
    """
    Topic-based publish/subscribe.

    Usage:
        hub = EventHub()
        token = hub.subscribe("notifications:u1", lambda topic, payload: print(payload))
        hub.publish("notifications:u1", {"title": "New Request"})
        hub.unsubscribe(token)
    """

    def __init__(self) -> None:
        self._handlers: dict[str, dict[int, Handler]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, topic: str, handler: Handler) -> SubscriptionToken:
        with self._lock:
            token_id = next(self._ids)
            self._handlers.setdefault(topic, {})[token_id] = handler
        return SubscriptionToken(topic=topic, token_id=token_id, _hub=self)

    def unsubscribe(self, token: SubscriptionToken) -> bool:
        with self._lock:
            handlers = self._handlers.get(token.topic)
            if not handlers or token.token_id not in handlers:
                return False
            del handlers[token.token_id]
            if not handlers:
                del self._handlers[token.topic]
            return True

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver ``payload`` to every handler on ``topic``.

        Returns the number of handlers that accepted the message.
        """
        with self._lock:
            handlers = list(self._handlers.get(topic, {}).values())
        delivered = 0
        for handler in handlers:
            try:
                handler(topic, payload)
                delivered += 1
            except Exception:
                logger.exception("Subscriber on %s failed", topic)
        return delivered

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._handlers.get(topic, {}))
            return sum(len(h) for h in self._handlers.values())

    def close(self) -> None:
        """Drop every subscription."""
        with self._lock:
            self._handlers.clear()
