"""Session-scoped push connection with reconnect and ordered event dispatch."""
from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Any, Awaitable, Callable

from linkup_sync.application.exceptions import NotConnectedError, TransportError
from linkup_sync.application.ports.transport import Transport
from linkup_sync.domain.entities.session import Session
from linkup_sync.domain.value_objects.enums import ConnectionState
from linkup_sync.infrastructure.ws.protocol import USER_ONLINE
from linkup_sync.services.listeners import Disposer, ListenerSet

logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], None]
TransportFactory = Callable[[], Transport]
Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    return min(base * (2 ** attempt), maximum)


class ConnectionManager:
    """Owns at most one live connection for the current session.

    Inbound events are queued and handed to subscribers by a single dispatcher
    task, in arrival order and one handler call at a time. Subscriptions live
    on the manager, so they survive reconnects and session switches; only
    ``disconnect`` removes them.
    """

    def __init__(
        self,
        transport_factory: TransportFactory,
        *,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        max_attempts: int | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._transport_factory = transport_factory
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._max_attempts = max_attempts
        self._sleep = sleep

        self._state = ConnectionState.DISCONNECTED
        self._session: Session | None = None
        self._transport: Transport | None = None
        self._generation = 0
        self._lock = asyncio.Lock()

        self._handlers: dict[str, list[EventHandler]] = {}
        self._state_listeners: ListenerSet[ConnectionState] = ListenerSet("connection state")
        self._queue: asyncio.Queue[tuple[int, str, Any]] | None = None
        self._dispatcher: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    @property
    def session(self) -> Session | None:
        return self._session

    async def connect(self, session: Session | None) -> None:
        """Bring the connection in line with ``session``.

        Same session while not disconnected is a no-op; a different session
        replaces the current connection; ``None`` tears it down.
        """
        async with self._lock:
            if session is None:
                await self._teardown()
                return
            if session == self._session and self._state != ConnectionState.DISCONNECTED:
                return
            await self._teardown()

            self._session = session
            self._ensure_dispatcher()
            self._set_state(ConnectionState.CONNECTING)
            try:
                await self._open(session)
            except TransportError as exc:
                logger.warning("Initial connect failed: %s", exc.detail)
                self._begin_reconnect()
                return
            await self._established()

    async def disconnect(self) -> None:
        """Release the connection and drop every subscription."""
        async with self._lock:
            await self._teardown()
            self._handlers.clear()
            dispatcher, self._dispatcher = self._dispatcher, None
            if dispatcher is not None:
                dispatcher.cancel()
                with suppress(asyncio.CancelledError):
                    await dispatcher
            self._queue = None

    def subscribe(self, event: str, handler: EventHandler) -> Disposer:
        handlers = self._handlers.setdefault(event, [])
        handlers.append(handler)

        def dispose() -> None:
            current = self._handlers.get(event)
            if current and handler in current:
                current.remove(handler)

        return dispose

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> Disposer:
        return self._state_listeners.add(listener)

    async def emit(self, event: str, payload: Any) -> None:
        transport = self._transport
        if self._state != ConnectionState.CONNECTED or transport is None:
            raise NotConnectedError(f"cannot emit {event}: connection is {self._state}")
        try:
            await transport.send(event, payload)
        except TransportError as exc:
            self._handle_drop(transport, exc.detail)
            raise NotConnectedError(f"emit {event} failed: {exc.detail}") from exc

    async def drain(self) -> None:
        """Wait until every queued inbound event has been dispatched."""
        if self._queue is not None:
            await self._queue.join()

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.debug("Connection state %s -> %s", self._state, state)
        self._state = state
        self._state_listeners.notify(state)

    async def _open(self, session: Session) -> None:
        generation = self._generation
        transport = self._transport_factory()

        def on_event(event: str, payload: Any) -> None:
            self._enqueue(generation, event, payload)

        def on_drop(reason: str) -> None:
            self._handle_drop(transport, reason)

        try:
            await transport.open(session.credential, on_event, on_drop)
        except asyncio.CancelledError:
            await transport.close()
            raise
        self._transport = transport

    async def _established(self) -> None:
        session, transport = self._session, self._transport
        assert session is not None and transport is not None
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected as user %d", session.user_id)
        try:
            await transport.send(USER_ONLINE, session.user_id)
        except TransportError as exc:
            self._handle_drop(transport, exc.detail)

    def _handle_drop(self, transport: Transport, reason: str) -> None:
        if transport is not self._transport or self._state != ConnectionState.CONNECTED:
            return
        logger.warning("Connection dropped: %s", reason)
        self._transport = None
        self._begin_reconnect(stale=transport)

    def _begin_reconnect(self, stale: Transport | None = None) -> None:
        self._set_state(ConnectionState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(
            self._reconnect_loop(stale), name="linkup-reconnect",
        )

    async def _reconnect_loop(self, stale: Transport | None) -> None:
        if stale is not None:
            with suppress(Exception):
                await stale.close()
        session = self._session
        assert session is not None
        attempt = 0
        while self._max_attempts is None or attempt < self._max_attempts:
            delay = backoff_delay(attempt, self._base_delay, self._max_delay)
            logger.warning("Reconnecting in %.1fs (attempt %d)", delay, attempt + 1)
            await self._sleep(delay)
            try:
                await self._open(session)
            except TransportError as exc:
                logger.warning("Reconnect attempt %d failed: %s", attempt + 1, exc.detail)
                attempt += 1
                continue
            self._reconnect_task = None
            await self._established()
            return
        logger.error("Giving up after %d reconnect attempts", attempt)
        self._reconnect_task = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def _teardown(self) -> None:
        self._generation += 1
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        transport, self._transport = self._transport, None
        if transport is not None:
            await transport.close()
        if self._state != ConnectionState.DISCONNECTED:
            logger.info("Connection torn down")
        self._session = None
        self._set_state(ConnectionState.DISCONNECTED)

    def _ensure_dispatcher(self) -> None:
        if self._dispatcher is not None and not self._dispatcher.done():
            return
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop(self._queue), name="linkup-dispatch")

    def _enqueue(self, generation: int, event: str, payload: Any) -> None:
        if generation != self._generation or self._queue is None:
            logger.debug("Dropping %s from a torn-down connection", event)
            return
        self._queue.put_nowait((generation, event, payload))

    async def _dispatch_loop(self, queue: asyncio.Queue[tuple[int, str, Any]]) -> None:
        while True:
            generation, event, payload = await queue.get()
            try:
                if generation == self._generation:
                    self._deliver(event, payload)
            finally:
                queue.task_done()

    def _deliver(self, event: str, payload: Any) -> None:
        handlers = self._handlers.get(event)
        if not handlers:
            logger.debug("No handler for %s", event)
            return
        for handler in list(handlers):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", event)
