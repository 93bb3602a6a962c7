"""Shared test fixtures."""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable

import pytest

from linkup_sync.application.dto.conversation import ConversationHistory, ConversationSummary
from linkup_sync.application.exceptions import FetchError, TransportError
from linkup_sync.client import SyncClient
from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.entities.session import Session
from linkup_sync.domain.value_objects.enums import DeliveryState, NotificationKind
from linkup_sync.infrastructure.session.memory_store import InMemorySessionStore
from linkup_sync.services.connection_manager import ConnectionManager
from linkup_sync.services.session_context import SessionContext

SELF_ID = 7
BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def session() -> Session:
    return Session(user_id=SELF_ID, credential="token-7")


def at(seconds: float) -> datetime:
    return BASE_TIME + timedelta(seconds=seconds)


def iso(seconds: float) -> str:
    return at(seconds).isoformat().replace("+00:00", "Z")


def make_message(
    message_id: int | None,
    *,
    sender_id: int = 42,
    receiver_id: int = SELF_ID,
    content: str = "hello",
    seconds: float = 0,
    client_temp_id: str | None = None,
) -> Message:
    return Message(
        id=message_id,
        sender_id=sender_id,
        receiver_id=receiver_id,
        content=content,
        created_at=at(seconds),
        client_temp_id=client_temp_id,
        delivery_state=DeliveryState.PENDING if client_temp_id else DeliveryState.CONFIRMED,
    )


def make_notification(notification_id: int | str, seconds: float, kind: NotificationKind = NotificationKind.OTHER) -> Notification:
    return Notification(
        id=notification_id,
        actor_id=None,
        kind=kind,
        message=f"notification {notification_id}",
        created_at=at(seconds),
    )


def message_payload(
    message_id: int,
    *,
    sender_id: int = 42,
    receiver_id: int = SELF_ID,
    content: str = "hello",
    seconds: float = 0,
    username: str = "alice",
) -> dict[str, Any]:
    """``receiveMessage`` payload as the server sends it."""
    return {
        "id": message_id,
        "content": content,
        "image": None,
        "senderId": sender_id,
        "receiverId": receiver_id,
        "sender": {"id": sender_id, "username": username, "avatar": None},
        "createdAt": iso(seconds),
        "updatedAt": iso(seconds),
    }


async def wait_for(predicate: Callable[[], bool], *, turns: int = 200) -> None:
    for _ in range(turns):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


@dataclass
class FakeTransport:
    fail_open: bool = False
    fail_send: bool = False
    credential: str | None = None
    sent: list[tuple[str, Any]] = field(default_factory=list)
    closed: bool = False
    _on_event: Callable[[str, Any], None] | None = None
    _on_drop: Callable[[str], None] | None = None

    async def open(self, credential: str, on_event, on_drop) -> None:
        if self.fail_open:
            raise TransportError("connection refused")
        self.credential = credential
        self._on_event = on_event
        self._on_drop = on_drop

    async def send(self, event: str, payload: Any) -> None:
        if self.closed or self.fail_send:
            raise TransportError("socket closed")
        self.sent.append((event, payload))

    async def close(self) -> None:
        self.closed = True

    def push(self, event: str, payload: Any) -> None:
        assert self._on_event is not None
        self._on_event(event, payload)

    def drop(self, reason: str = "transport error") -> None:
        assert self._on_drop is not None
        self._on_drop(reason)


class FakeTransportFactory:
    def __init__(self, failures: int = 0) -> None:
        self.created: list[FakeTransport] = []
        self.failures = failures

    def __call__(self) -> FakeTransport:
        transport = FakeTransport(fail_open=self.failures > 0)
        if self.failures > 0:
            self.failures -= 1
        self.created.append(transport)
        return transport

    @property
    def latest(self) -> FakeTransport:
        return self.created[-1]

    def sent(self, event: str) -> list[Any]:
        return [payload for t in self.created for name, payload in t.sent if name == event]


class FixedClock:
    def __init__(self, seconds: float = 0) -> None:
        self.seconds = seconds

    def now(self) -> datetime:
        return at(self.seconds)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@dataclass
class FakeApi:
    summaries: list[ConversationSummary] = field(default_factory=list)
    histories: dict[int, ConversationHistory] = field(default_factory=dict)
    notifications: list[Notification] = field(default_factory=list)
    profiles: dict[int, Peer] = field(default_factory=dict)
    gates: dict[int, asyncio.Event] = field(default_factory=dict)
    fail: bool = False
    follows: list[tuple[str, int]] = field(default_factory=list)
    profile_lookups: list[int] = field(default_factory=list)

    def _check(self) -> None:
        if self.fail:
            raise FetchError("backend unavailable", status_code=503)

    async def get_messenger(self) -> list[ConversationSummary]:
        self._check()
        return list(self.summaries)

    async def get_messenger_detail(self, other_user_id: int) -> ConversationHistory:
        gate = self.gates.get(other_user_id)
        if gate is not None:
            await gate.wait()
        self._check()
        return self.histories.get(other_user_id, ConversationHistory(messages=[]))

    async def get_notifications(self) -> list[Notification]:
        self._check()
        return list(self.notifications)

    async def get_profile(self, user_id: int) -> Peer:
        self.profile_lookups.append(user_id)
        self._check()
        if user_id not in self.profiles:
            raise FetchError("not found", status_code=404)
        return self.profiles[user_id]

    async def create_follow(self, following_id: int) -> None:
        self._check()
        self.follows.append(("follow", following_id))

    async def unfollow(self, following_id: int) -> None:
        self._check()
        self.follows.append(("unfollow", following_id))


@dataclass
class ClientHarness:
    client: SyncClient
    factory: FakeTransportFactory
    api: FakeApi
    store: InMemorySessionStore

    @property
    def transport(self) -> FakeTransport:
        return self.factory.latest

    async def push(self, event: str, payload: Any) -> None:
        self.transport.push(event, payload)
        await self.client.connection.drain()


@asynccontextmanager
async def started_client(
    api: FakeApi | None = None,
    *,
    logged_in: bool = True,
    confirm_timeout: float = 5.0,
) -> AsyncIterator[ClientHarness]:
    initial = {"accessToken": "token-7", "currentUserId": str(SELF_ID)} if logged_in else {}
    store = InMemorySessionStore(initial)
    factory = FakeTransportFactory()
    connection = ConnectionManager(factory, sleep=RecordingSleep())
    api = api or FakeApi()
    client = SyncClient(SessionContext(store), connection, api, confirm_timeout=confirm_timeout)
    await client.start()
    try:
        yield ClientHarness(client=client, factory=factory, api=api, store=store)
    finally:
        await client.close()
