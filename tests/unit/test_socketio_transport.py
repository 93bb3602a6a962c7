from __future__ import annotations

import pytest

from linkup_sync.application.exceptions import TransportError
from linkup_sync.infrastructure.ws.socketio_transport import SocketIOTransport


class FakeSocketClient:
    def __init__(self, fail_connect: bool = False, **options) -> None:
        self.options = options
        self.fail_connect = fail_connect
        self.handlers: dict[str, object] = {}
        self.connect_kwargs: dict | None = None
        self.emitted: list[tuple[str, object]] = []
        self.disconnected = False

    def on(self, event, handler) -> None:
        self.handlers[event] = handler

    async def connect(self, url, **kwargs) -> None:
        if self.fail_connect:
            raise ConnectionError("refused")
        self.url = url
        self.connect_kwargs = kwargs

    async def emit(self, event, payload) -> None:
        self.emitted.append((event, payload))

    async def disconnect(self) -> None:
        self.disconnected = True
        await self.handlers["disconnect"]()

    async def fire(self, event, *args) -> None:
        await self.handlers[event](*args)


class Factory:
    def __init__(self, fail_connect: bool = False) -> None:
        self.fail_connect = fail_connect
        self.clients: list[FakeSocketClient] = []

    def __call__(self, **options) -> FakeSocketClient:
        client = FakeSocketClient(self.fail_connect, **options)
        self.clients.append(client)
        return client


async def _open(factory: Factory):
    events, drops = [], []
    transport = SocketIOTransport(
        "https://push.test/", socketio_path="/socket.io/", connect_timeout=3, client_factory=factory,
    )
    await transport.open("token-7", lambda name, payload: events.append((name, payload)), drops.append)
    return transport, events, drops


@pytest.mark.asyncio
async def test_open_connects_with_credential():
    factory = Factory()
    await _open(factory)

    client = factory.clients[0]
    assert client.options["reconnection"] is False
    assert client.url == "https://push.test"
    assert client.connect_kwargs == {
        "transports": ["websocket"],
        "socketio_path": "socket.io",
        "auth": {"token": "token-7"},
        "wait_timeout": 3,
    }


@pytest.mark.asyncio
async def test_inbound_events_are_forwarded():
    factory = Factory()
    _, events, _ = await _open(factory)

    await factory.clients[0].fire("receiveMessage", {"id": 1})
    await factory.clients[0].fire("userStatus", {"userId": 2, "isOnline": True})

    assert events == [("receiveMessage", {"id": 1}), ("userStatus", {"userId": 2, "isOnline": True})]


@pytest.mark.asyncio
async def test_connect_failure_raises_transport_error():
    factory = Factory(fail_connect=True)
    events, drops = [], []
    transport = SocketIOTransport("https://push.test", client_factory=factory)

    with pytest.raises(TransportError):
        await transport.open("token-7", lambda name, payload: events.append(name), drops.append)

    assert factory.clients[0].disconnected
    assert drops == []


@pytest.mark.asyncio
async def test_server_disconnect_reports_drop_once():
    factory = Factory()
    _, _, drops = await _open(factory)

    await factory.clients[0].fire("disconnect", "io server disconnect")
    await factory.clients[0].fire("disconnect")

    assert drops == ["io server disconnect"]


@pytest.mark.asyncio
async def test_close_does_not_report_drop():
    factory = Factory()
    transport, _, drops = await _open(factory)

    await transport.close()

    assert factory.clients[0].disconnected
    assert drops == []
    with pytest.raises(TransportError):
        await transport.send("sendMessage", {})


@pytest.mark.asyncio
async def test_send_emits_on_client():
    factory = Factory()
    transport, _, _ = await _open(factory)

    await transport.send("userOnline", 7)

    assert factory.clients[0].emitted == [("userOnline", 7)]
