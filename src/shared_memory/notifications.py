"""
Observer registry used for memory and knowledge-base notifications.

Listeners are plain callables. Delivery is synchronous, in subscription
order, after the change has been persisted. A listener that raises is
logged and skipped; the remaining listeners still run.
"""

import logging
from typing import Callable, List

logger = logging.getLogger(__name__)


class ListenerRegistry:
    """
    Ordered set of listener callables.

    Usage:
        registry = ListenerRegistry("memory_updated")
        registry.subscribe(lambda notification: print(notification.type))
        registry.notify(notification)
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Callable[..., None]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def subscribe(self, listener: Callable[..., None]) -> Callable[[], None]:
        """Register a listener. Returns a callable that unsubscribes it."""
        if listener not in self._listeners:
            self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: Callable[..., None]) -> bool:
        """Remove a listener. Returns False if it was not registered."""
        try:
            self._listeners.remove(listener)
        except ValueError:
            return False
        return True

    def notify(self, *args) -> int:
        """
        Call every listener with the given arguments.

        Returns:
            Number of listeners that completed without raising
        """
        delivered = 0
        # Copy so listeners may unsubscribe themselves while being notified
        for listener in list(self._listeners):
            try:
                listener(*args)
                delivered += 1
            except Exception as e:
                logger.error(f"{self.name} listener {listener!r} failed: {e}", exc_info=True)
        return delivered

    def clear(self) -> None:
        self._listeners.clear()
