"""Lightweight in-process event bus used as the notification sink.

Events are logged, kept in a bounded outbox for inspection/draining, and handed
to any subscribed handlers. A handler that raises is logged and skipped so a
broken subscriber never fails the publishing operation.
"""

from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
import json, logging

from pydantic import BaseModel

log = logging.getLogger(__name__)

Handler = Callable[[str, str, Dict[str, Any]], None]

NOTIFICATIONS_TOPIC = "notifications"


class Notification(BaseModel):
    """User-facing notification payload."""
    user_id: str
    title: str
    message: str
    type: str = "INFO"
    link_url: Optional[str] = None


class EventBus:
    """Topic publisher with an in-memory outbox and synchronous subscribers."""

    def __init__(self, outbox_size: int = 1000) -> None:
        self._outbox: Deque[Dict[str, Any]] = deque(maxlen=outbox_size)
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, topic: str, handler: Handler) -> None:
        self._handlers.setdefault(topic, []).append(handler)

    def publish(self, topic: str, key: str, value: dict[str, Any]) -> None:
        """Publish a message to subscribers and record it in the outbox.

        Args:
            topic: Topic name.
            key: Message key (e.g. the user id).
            value: JSON-serializable payload dictionary.
        """
        self._outbox.append({"topic": topic, "key": key, "value": value})
        log.info(f"PUBLISH topic={topic} key={key} value={json.dumps(value, default=str)}")
        for handler in self._handlers.get(topic, []):
            try:
                handler(topic, key, value)
            except Exception:
                log.exception("event handler failed for topic=%s", topic)

    def notify(self, notification: Notification) -> None:
        self.publish(NOTIFICATIONS_TOPIC, notification.user_id, notification.model_dump())

    def drain(self, topic: Optional[str] = None) -> List[Dict[str, Any]]:
        """Remove and return outbox messages, optionally only those of `topic`."""
        taken = [m for m in self._outbox if topic is None or m["topic"] == topic]
        kept = [m for m in self._outbox if not (topic is None or m["topic"] == topic)]
        self._outbox.clear()
        self._outbox.extend(kept)
        return taken
