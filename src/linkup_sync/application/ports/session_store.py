from __future__ import annotations

from typing import Callable, Protocol

ChangeListener = Callable[[str], None]
Disposer = Callable[[], None]


class SessionStore(Protocol):
    """Persisted key-value storage for session and profile state.

    ``on_change`` listeners receive the changed key whenever the value changes,
    including changes made by another process sharing the same storage.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    def on_change(self, listener: ChangeListener) -> Disposer: ...
