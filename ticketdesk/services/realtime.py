"""
In-process real-time channel.

One ``RealtimeHub`` is created by the app factory and stored in
``app.extensions["realtime"]``. Services publish events addressed to a user;
every open subscription of that user (one per browser tab) receives them.
The notifications blueprint exposes subscriptions as a Server-Sent Events
stream.

Delivery is best effort: subscriptions are in memory, so events published
while a user has no open stream are not replayed (the notification rows
themselves are persisted and listed through the REST API).
"""

import logging
import queue
import threading

from flask import current_app

logger = logging.getLogger(__name__)

# Oldest events are dropped once a slow subscriber has this many pending
MAX_PENDING_EVENTS = 100


class RealtimeHub:
    """Fan-out of ``{"event", "payload"}`` messages to per-user subscriber queues."""

    def __init__(self, max_pending=MAX_PENDING_EVENTS):
        self._lock = threading.Lock()
        self._subscribers: dict[int, list[queue.Queue]] = {}
        self._max_pending = max_pending

    def subscribe(self, user_id: int) -> queue.Queue:
        q = queue.Queue(maxsize=self._max_pending)
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(q)
        logger.debug("Realtime subscribe user=%s (open=%d)", user_id, self.subscriber_count(user_id))
        return q

    def unsubscribe(self, user_id: int, q: queue.Queue) -> None:
        with self._lock:
            queues = self._subscribers.get(user_id, [])
            if q in queues:
                queues.remove(q)
            if not queues:
                self._subscribers.pop(user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: int, event: str, payload: dict) -> int:
        """Queue an event for every subscription of ``user_id``. Returns deliveries."""
        message = {"event": event, "payload": payload}
        # Publishers hold the lock so a freed slot cannot be taken by another publisher
        with self._lock:
            queues = list(self._subscribers.get(user_id, []))
            for q in queues:
                try:
                    q.put_nowait(message)
                except queue.Full:
                    # Drop the oldest pending event for this subscriber
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
                    q.put_nowait(message)
        return len(queues)


def get_hub() -> "RealtimeHub | None":
    """The hub of the current app, or None outside an app context / when not installed."""
    try:
        return current_app.extensions.get("realtime")
    except RuntimeError:
        return None


def init_realtime(app) -> RealtimeHub:
    hub = RealtimeHub()
    app.extensions["realtime"] = hub
    return hub
