"""Socket.IO implementation of the push transport."""
from __future__ import annotations

import logging
from typing import Any, Callable

import socketio

from linkup_sync.application.exceptions import TransportError
from linkup_sync.application.ports.transport import DropSink, EventSink
from linkup_sync.infrastructure.ws import protocol

logger = logging.getLogger(__name__)

INBOUND_EVENTS: tuple[str, ...] = (
    protocol.RECEIVE_MESSAGE,
    protocol.NOTIFICATION,
    protocol.FOLLOW_NOTIFICATION,
    protocol.USER_STATUS,
)

ClientFactory = Callable[..., Any]


class SocketIOTransport:
    """Implements application.ports.transport.Transport.

    Library-level reconnection is off: one transport instance is one
    connection attempt, ConnectionManager decides when to try again.
    """

    def __init__(
        self,
        url: str,
        *,
        socketio_path: str = "socket.io",
        connect_timeout: float = 10.0,
        client_factory: ClientFactory = socketio.AsyncClient,
    ) -> None:
        self._url = url.rstrip("/")
        self._path = socketio_path.strip("/")
        self._connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._client: Any = None
        self._closing = False
        self._dropped = False

    async def open(self, credential: str, on_event: EventSink, on_drop: DropSink) -> None:
        client = self._client_factory(reconnection=False, logger=False, engineio_logger=False)

        def _drop(reason: str) -> None:
            if self._closing or self._dropped:
                return
            self._dropped = True
            on_drop(reason)

        async def _on_disconnect(*args: Any) -> None:
            reason = str(args[0]) if args else "transport closed"
            logger.debug("Socket.IO disconnect: %s", reason)
            _drop(reason)

        async def _on_connect_error(data: Any) -> None:
            logger.debug("Socket.IO connect error: %s", data)

        client.on("disconnect", _on_disconnect)
        client.on("connect_error", _on_connect_error)
        for name in INBOUND_EVENTS:
            client.on(name, _make_handler(name, on_event))

        try:
            await client.connect(
                self._url,
                transports=["websocket"],
                socketio_path=self._path,
                auth={"token": credential},
                wait_timeout=self._connect_timeout,
            )
        except Exception as exc:
            self._closing = True
            try:
                await client.disconnect()
            except Exception:
                logger.debug("Socket.IO cleanup after failed connect raised", exc_info=True)
            raise TransportError(f"connect to {self._url} failed: {exc}") from exc
        self._client = client

    async def send(self, event: str, payload: Any) -> None:
        if self._client is None:
            raise TransportError("transport is not open")
        try:
            await self._client.emit(event, payload)
        except Exception as exc:
            raise TransportError(f"emit {event} failed: {exc}") from exc

    async def close(self) -> None:
        self._closing = True
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.disconnect()
        except Exception:
            logger.debug("Socket.IO disconnect raised", exc_info=True)


def _make_handler(name: str, on_event: EventSink) -> Callable[..., Any]:
    async def handler(payload: Any = None) -> None:
        on_event(name, payload)

    return handler
