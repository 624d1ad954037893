"""In-process publish/subscribe channel for live machine updates.

Each subscriber gets its own bounded queue. Publishing never blocks: a
subscriber whose queue is full misses the message and the drop is counted.
Subscribers see only messages published after they join.
"""

import logging
import threading
from dataclasses import dataclass
from queue import Empty, Full, Queue
from typing import Any, Callable, Dict, List, Optional

from .models import Machine

logger = logging.getLogger(__name__)

MACHINE_UPDATE = "machine_update"


def machine_update(machines: List[Machine]) -> Dict[str, Any]:
    """Full snapshot message; clients replace their local view with it."""
    return {
        "type": MACHINE_UPDATE,
        "machines": [m.to_state_dict() for m in machines],
    }


@dataclass
class Subscription:
    """Handle returned by :meth:`LiveChannel.subscribe`."""

    id: int
    queue: "Queue[Dict[str, Any]]"
    dropped: int = 0

    def get(self, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Next message, or None if nothing arrives within ``timeout``."""
        try:
            return self.queue.get(timeout=timeout)
        except Empty:
            return None

    def drain(self) -> List[Dict[str, Any]]:
        messages = []
        while True:
            try:
                messages.append(self.queue.get_nowait())
            except Empty:
                return messages


class LiveChannel:
    """Fan-out of published messages to subscriber queues and sinks."""

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self.messages_published = 0
        self._subscribers: Dict[int, Subscription] = {}
        self._sinks: List[Callable[[Dict[str, Any]], Any]] = []
        self._lock = threading.Lock()
        self._next_id = 0

    def subscribe(self) -> Subscription:
        with self._lock:
            self._next_id += 1
            sub = Subscription(id=self._next_id, queue=Queue(maxsize=self.max_queue))
            self._subscribers[sub.id] = sub
        logger.debug(f"Subscriber {sub.id} joined")
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.pop(subscription.id, None)
        logger.debug(f"Subscriber {subscription.id} left")

    def add_sink(self, sink: Callable[[Dict[str, Any]], Any]) -> None:
        """Forward every published message to ``sink`` (e.g. MQTT)."""
        self._sinks.append(sink)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, message: Dict[str, Any]) -> None:
        with self._lock:
            subscribers = list(self._subscribers.values())
            self.messages_published += 1

        for sub in subscribers:
            try:
                sub.queue.put_nowait(message)
            except Full:
                sub.dropped += 1
                logger.warning(f"Subscriber {sub.id} is not keeping up, dropped message")

        for sink in self._sinks:
            try:
                sink(message)
            except Exception as e:
                logger.error(f"Error forwarding message to sink: {e}")
