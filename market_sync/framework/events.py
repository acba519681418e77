"""Minimal publish/subscribe hub.

Used for two things: observers of a synchronization engine (listing
updates, "still scanning", errors) and external state change notifications
(chain or account switched) fed in by whatever owns the wallet connection.
Every ``subscribe`` returns an unsubscribe callable; owners call it on
teardown instead of relying on ambient global listeners.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, List, TypeVar

LOGGER = logging.getLogger(__name__)

E = TypeVar("E")

Unsubscribe = Callable[[], None]


class EventHub(Generic[E]):
    def __init__(self, name: str = "events") -> None:
        self._name = name
        self._handlers: List[Callable[[E], None]] = []

    def subscribe(self, handler: Callable[[E], None]) -> Unsubscribe:
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return _unsubscribe

    def publish(self, event: E) -> None:
        # Handler failures are logged; remaining handlers still run.
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                LOGGER.exception("%s handler %r failed", self._name, handler)

    def handler_count(self) -> int:
        return len(self._handlers)

    def clear(self) -> None:
        self._handlers.clear()
