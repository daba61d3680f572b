"""
Session event bus. The network layer publishes "auth:logout" here; the UI subscribes once at
startup and reacts (clear state, show login). No replay for late subscribers.
"""
import logging
from typing import Callable

from session_client.config import LOGOUT_EVENT

logger = logging.getLogger(__name__)

Subscriber = Callable[[str], None]


class SessionEventBus:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register callback(event_name); returns a function that removes it again."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: str = LOGOUT_EVENT) -> None:
        """Deliver to current subscribers in order. A failing subscriber does not stop the rest."""
        subscribers = list(self._subscribers)
        logger.info("Publishing session event %s to %d subscriber(s)", event, len(subscribers))
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception("Session event subscriber failed for %s", event)
