"""
Push notifications for the UI.

Publishers (reader threads, the log tailer, API handlers) call publish()
from any thread. Subscribers are either plain callbacks or asyncio queues
bound to the loop they were created on; queue deliveries are handed to that
loop with call_soon_threadsafe. A full queue drops the message so a slow
client can never block the tailer.
"""

import asyncio
import logging
import threading
from typing import Any, Callable

logger = logging.getLogger(__name__)

STATUS_CHANGED = "proxy-status-changed"
REQUEST_LOG = "request-log"


class Notifier:
    """Fan-out of status changes and request events to subscribers."""

    def __init__(self, queue_size: int = 1000):
        self._queue_size = queue_size
        self._queues: dict[asyncio.Queue, asyncio.AbstractEventLoop] = {}
        self._listeners: list[Callable[[str, Any], None]] = []
        self._lock = threading.Lock()

    def add_listener(self, callback: Callable[[str, Any], None]):
        """Register callback(kind, payload), invoked on the publishing thread."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[str, Any], None]):
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def subscribe(self) -> asyncio.Queue:
        """Create a queue receiving {"type", "payload"} messages. Call from a running loop."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        with self._lock:
            self._queues[queue] = asyncio.get_running_loop()
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        with self._lock:
            self._queues.pop(queue, None)

    def publish(self, kind: str, payload: Any):
        """Deliver a message to every subscriber."""
        message = {"type": kind, "payload": payload}

        with self._lock:
            listeners = list(self._listeners)
            queues = list(self._queues.items())

        for callback in listeners:
            try:
                callback(kind, payload)
            except Exception as e:
                logger.error(f"Notification listener failed for {kind}: {e}")

        for queue, loop in queues:
            try:
                loop.call_soon_threadsafe(_offer, queue, message)
            except RuntimeError:
                # Loop closed; the subscriber is gone
                self.unsubscribe(queue)


def _offer(queue: asyncio.Queue, message: dict):
    try:
        queue.put_nowait(message)
    except asyncio.QueueFull:
        logger.warning(f"Dropping {message['type']} notification for slow subscriber")
