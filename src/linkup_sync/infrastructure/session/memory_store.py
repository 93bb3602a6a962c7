from __future__ import annotations

from linkup_sync.application.ports.session_store import ChangeListener, Disposer
from linkup_sync.services.listeners import ListenerSet


class InMemorySessionStore:
    """Process-local SessionStore; listeners fire on every effective change."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})
        self._listeners: ListenerSet[str] = ListenerSet("session store")

    async def get(self, key: str) -> str | None:
        return self._values.get(key)

    async def set(self, key: str, value: str) -> None:
        if self._values.get(key) == value:
            return
        self._values[key] = value
        self._listeners.notify(key)

    async def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._listeners.notify(key)

    def on_change(self, listener: ChangeListener) -> Disposer:
        return self._listeners.add(listener)
