"""Notification Hub - per-user publish/subscribe channel.

Publishers (tools, routes, the weekly batch) may run on any thread; each
subscriber queue belongs to the event loop that created it and messages are
handed over with ``call_soon_threadsafe``.
"""

import asyncio
import logging
import threading
from typing import Any


logger = logging.getLogger(__name__)


class NotificationHub:
    """Fan-out of events to every open connection of a user."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str) -> asyncio.Queue:
        """Open a queue for ``user_id``; must be called inside a running loop."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.setdefault(user_id, []).append((loop, queue))
        logger.debug("Subscriber added for %s", user_id[:8])
        return queue

    def unsubscribe(self, user_id: str, queue: asyncio.Queue) -> None:
        with self._lock:
            remaining = [s for s in self._subscribers.get(user_id, []) if s[1] is not queue]
            if remaining:
                self._subscribers[user_id] = remaining
            else:
                self._subscribers.pop(user_id, None)
        logger.debug("Subscriber removed for %s", user_id[:8])

    def subscriber_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: str, event: str, payload: Any) -> int:
        """Send an event to every subscriber of ``user_id``.

        Args:
            user_id: Recipient
            event: Event name, e.g. "goal-created"
            payload: JSON-serialisable data

        Returns:
            Number of queues the event was handed to
        """
        message = {"event": event, "data": payload}
        with self._lock:
            targets = list(self._subscribers.get(user_id, []))

        delivered = 0
        for loop, queue in targets:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, message)
                delivered += 1
            except RuntimeError:
                logger.warning("Dropping subscriber of %s with a closed loop", user_id[:8])
                self.unsubscribe(user_id, queue)

        logger.debug("Published %s to %d subscriber(s) of %s", event, delivered, user_id[:8])
        return delivered
