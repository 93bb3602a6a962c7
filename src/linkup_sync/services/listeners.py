"""Listener registries with explicit disposal."""
from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Disposer = Callable[[], None]


class ListenerSet(Generic[T]):
    """Ordered set of single-argument callbacks.

    ``add`` returns a disposer that is safe to call more than once. A listener
    that raises is logged and does not prevent the remaining ones from running.
    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: list[Callable[[T], None]] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: Callable[[T], None]) -> Disposer:
        self._listeners.append(listener)

        def dispose() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return dispose

    def clear(self) -> None:
        self._listeners.clear()

    def notify(self, value: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("%s listener failed", self._name)
