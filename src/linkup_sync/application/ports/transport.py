from __future__ import annotations

from typing import Any, Callable, Protocol

EventSink = Callable[[str, Any], None]
DropSink = Callable[[str], None]


class Transport(Protocol):
    """One bidirectional push connection.

    ``open`` raises TransportError when the connection cannot be established.
    After a successful ``open`` the transport reports inbound events through
    ``on_event`` and an unexpected loss of the connection through ``on_drop``
    (called at most once). ``close`` never reports a drop.
    """

    async def open(self, credential: str, on_event: EventSink, on_drop: DropSink) -> None: ...

    async def send(self, event: str, payload: Any) -> None: ...

    async def close(self) -> None: ...
