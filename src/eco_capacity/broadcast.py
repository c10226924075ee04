"""
Publish-only real-time channel for weather and capacity changes.

Payloads are small tagged records::

    {"type": "weather_update", "destinationId": "manali", "weather": {...}, "timestamp": "..."}

Publishing never raises into the caller: a broken subscriber or an
unreachable Redis must not undo the change being announced.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable

    import redis

    from eco_capacity.schemas import BroadcastMessage

logger = logging.getLogger(__name__)


class Broadcaster(Protocol):
    def publish(self, message: BroadcastMessage) -> None: ...


class LocalBroadcaster:
    """Fans messages out to in-process subscriber callables."""

    def __init__(self) -> None:
        self._subscribers: list[Callable[[BroadcastMessage], None]] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[BroadcastMessage], None]) -> Callable[[], None]:
        """Register ``callback``. Returns a function that unsubscribes it."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, message: BroadcastMessage) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(message)
            except Exception:
                logger.exception("Subscriber failed handling %s", message.type)


class RedisBroadcaster:
    """Publishes JSON payloads to a Redis pub/sub channel."""

    def __init__(self, client: redis.Redis, channel: str = "eco-capacity:events") -> None:
        self.client = client
        self.channel = channel

    def publish(self, message: BroadcastMessage) -> None:
        payload = json.dumps(message.to_payload())
        try:
            self.client.publish(self.channel, payload)
        except Exception:
            logger.exception("Failed to publish %s to %s", message.type, self.channel)
