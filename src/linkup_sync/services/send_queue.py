"""Optimistic sends awaiting their server echo."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Callable

from linkup_sync.application.dto.send import SendHandle
from linkup_sync.application.exceptions import (
    EmptyContentError,
    NoConnectionError,
    NoPeerSelectedError,
    NotConnectedError,
)
from linkup_sync.application.ports.clock import Clock, SystemClock
from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.value_objects.enums import DeliveryState
from linkup_sync.infrastructure.ws.protocol import SEND_MESSAGE, SendMessagePayload, dump
from linkup_sync.services.connection_manager import ConnectionManager
from linkup_sync.services.listeners import Disposer, ListenerSet
from linkup_sync.services.message_reconciler import Confirmation, MessageReconciler, UserIdProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    handle: SendHandle
    timer: asyncio.TimerHandle | None = None


class OptimisticSendQueue:
    """Tracks local messages by ``client_temp_id`` until they are confirmed.

    An entry that sees no echo within ``confirm_timeout`` seconds is marked
    failed once. Failed entries stay visible and are never resent; a late
    echo still confirms them.
    """

    def __init__(
        self,
        connection: ConnectionManager,
        reconciler: MessageReconciler,
        current_user_id: UserIdProvider,
        *,
        confirm_timeout: float = 15.0,
        clock: Clock | None = None,
    ) -> None:
        self._connection = connection
        self._reconciler = reconciler
        self._current_user_id = current_user_id
        self._confirm_timeout = confirm_timeout
        self._clock = clock or SystemClock()
        self._entries: dict[str, _Entry] = {}
        self._failed: ListenerSet[SendHandle] = ListenerSet("send failure")
        self._unsubscribe = reconciler.on_confirmed(self._on_confirmed)

    @property
    def unconfirmed(self) -> list[SendHandle]:
        return [entry.handle for entry in self._entries.values()]

    def on_failed(self, listener: Callable[[SendHandle], None]) -> Disposer:
        return self._failed.add(listener)

    async def send(
        self,
        receiver_id: int | None,
        content: str,
        *,
        attachment_ref: str | None = None,
    ) -> SendHandle:
        text = (content or "").strip()
        if not text:
            raise EmptyContentError("message content is blank")
        if receiver_id is None:
            raise NoPeerSelectedError("no receiver selected")
        user_id = self._current_user_id()
        if user_id is None or not self._connection.is_connected:
            raise NoConnectionError("not connected")

        temp_id = uuid.uuid4().hex
        message = Message(
            id=None,
            client_temp_id=temp_id,
            sender_id=user_id,
            receiver_id=receiver_id,
            content=text,
            attachment_ref=attachment_ref,
            created_at=self._clock.now(),
            delivery_state=DeliveryState.PENDING,
        )
        message = self._reconciler.insert_local(message)
        handle = SendHandle(client_temp_id=temp_id, receiver_id=receiver_id, content=text, message=message)
        timer = asyncio.get_running_loop().call_later(self._confirm_timeout, self._expire, temp_id)
        self._entries[temp_id] = _Entry(handle=handle, timer=timer)

        payload = SendMessagePayload(
            sender_id=user_id, receiver_id=receiver_id, content=text, image=attachment_ref,
        )
        try:
            await self._connection.emit(SEND_MESSAGE, dump(payload))
        except NotConnectedError as exc:
            logger.warning("Send %s not transmitted: %s", temp_id, exc.detail)
            self._fail(temp_id)
        return handle

    def close(self) -> None:
        """Stop all confirmation timers and forget unconfirmed entries."""
        for entry in self._entries.values():
            if entry.timer is not None:
                entry.timer.cancel()
        self._entries.clear()

    def dispose(self) -> None:
        self.close()
        self._unsubscribe()

    def _expire(self, temp_id: str) -> None:
        entry = self._entries.get(temp_id)
        if entry is None or entry.handle.state != DeliveryState.PENDING:
            return
        logger.warning("No echo for %s after %.1fs", temp_id, self._confirm_timeout)
        self._fail(temp_id)

    def _fail(self, temp_id: str) -> None:
        entry = self._entries.get(temp_id)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        handle = entry.handle
        if handle.state != DeliveryState.PENDING:
            return
        failed = self._reconciler.mark_failed(handle.receiver_id, temp_id)
        if failed is None:
            return
        handle.fail(failed)
        self._failed.notify(handle)

    def _on_confirmed(self, confirmation: Confirmation) -> None:
        temp_id, message = confirmation
        entry = self._entries.pop(temp_id, None)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
        entry.handle.resolve(message)
