"""
notify/event_bus.py — In-memory pub/sub for real-time notifications
===================================================================
When a notification row is written, the route publishes an event here.
SSE listeners (connected via /notifications/stream) receive it instantly.

Each subscriber gets its own asyncio.Queue, keyed by the user it belongs
to. Publishing may happen from a worker thread (sync routes), so events
are handed to the subscriber's loop with call_soon_threadsafe.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Set, Tuple

from ..models import Notification


@dataclass
class NotificationEvent:
    """Lightweight event payload pushed to one user's subscribers."""

    event_type: str  # "notification"
    notification_id: str
    user_id: str
    type: str
    post_id: Optional[str]
    from_username: str
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def from_row(cls, row: Notification) -> "NotificationEvent":
        return cls(
            event_type="notification",
            notification_id=row.id,
            user_id=row.user_id,
            type=row.type,
            post_id=row.post_id,
            from_username=row.from_username,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "event": self.event_type,
                "id": self.notification_id,
                "type": self.type,
                "post_id": self.post_id,
                "from_username": self.from_username,
                "timestamp": self.timestamp,
            }
        )


_Subscriber = Tuple[asyncio.AbstractEventLoop, "asyncio.Queue[NotificationEvent]"]


def _offer(queue: "asyncio.Queue[NotificationEvent]", event: NotificationEvent) -> None:
    try:
        queue.put_nowait(event)
    except asyncio.QueueFull:
        pass  # slow consumer; it can catch up via GET /notifications


class NotificationBus:
    """Per-user broadcast pub/sub."""

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[_Subscriber]] = {}

    def subscribe(self, user_id: str) -> "asyncio.Queue[NotificationEvent]":
        """Register a subscriber for ``user_id``. Must be called from a running loop."""
        q: asyncio.Queue[NotificationEvent] = asyncio.Queue(maxsize=256)
        loop = asyncio.get_running_loop()
        self._subscribers.setdefault(user_id, set()).add((loop, q))
        return q

    def unsubscribe(self, user_id: str, q: "asyncio.Queue[NotificationEvent]") -> None:
        subs = self._subscribers.get(user_id)
        if not subs:
            return
        for entry in [s for s in subs if s[1] is q]:
            subs.discard(entry)
        if not subs:
            self._subscribers.pop(user_id, None)

    def publish(self, event: NotificationEvent) -> None:
        """Hand the event to every queue subscribed for its user. Never blocks."""
        for loop, q in list(self._subscribers.get(event.user_id, ())):
            if loop.is_closed():
                continue
            loop.call_soon_threadsafe(_offer, q, event)

    def subscriber_count(self, user_id: Optional[str] = None) -> int:
        if user_id is not None:
            return len(self._subscribers.get(user_id, ()))
        return sum(len(s) for s in self._subscribers.values())


# Module-level singleton
notification_bus = NotificationBus()
