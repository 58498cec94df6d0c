"""
Event Bus — ordered publish/subscribe channel for streak, reward and
settings events.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Generic, List, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class EventBus(Generic[T]):
    """
    Listeners are called in subscription order. A listener that raises is
    logged and skipped; the remaining listeners still receive the event.
    """

    def __init__(self, name: str = "events") -> None:
        self.name = name
        self.listeners: List[Callable[[T], Any]] = []

    def subscribe(self, fn: Callable[[T], Any]) -> Callable[[], None]:
        """Register fn. Returns a callable that unsubscribes it."""
        self.listeners.append(fn)

        def unsubscribe() -> None:
            self.unsubscribe(fn)

        return unsubscribe

    def unsubscribe(self, fn: Callable[[T], Any]) -> None:
        if fn in self.listeners:
            self.listeners.remove(fn)

    def emit(self, event: T) -> int:
        """Deliver event to every listener. Returns how many failed."""
        failures = 0
        for listener in list(self.listeners):
            try:
                listener(event)
            except Exception:
                failures += 1
                logger.exception("Listener %r on %s bus failed", listener, self.name)
        return failures

    def clear(self) -> None:
        self.listeners.clear()

    def __len__(self) -> int:
        return len(self.listeners)
