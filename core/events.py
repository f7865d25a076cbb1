"""
Event Channel - Observer list owned by the emitting component.

Listeners are called in subscription order. Delivery iterates over a
snapshot of the list, so a listener may subscribe or unsubscribe (itself
or others) while an event is being delivered without affecting the
current delivery.
"""

import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)


class EventChannel:
    """A named, ordered publish/subscribe channel."""

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Callable) -> Callable:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Callable):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def publish(self, *args, **kwargs) -> int:
        """Deliver to every listener; returns how many succeeded."""
        with self._lock:
            snapshot = list(self._listeners)

        delivered = 0
        for listener in snapshot:
            try:
                listener(*args, **kwargs)
                delivered += 1
            except Exception:
                logger.exception("Listener on channel '%s' failed", self.name)
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
