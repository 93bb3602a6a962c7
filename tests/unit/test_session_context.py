from __future__ import annotations

import asyncio

import jwt
import pytest

from linkup_sync.domain.entities.session import Session
from linkup_sync.infrastructure.session.memory_store import InMemorySessionStore
from linkup_sync.services.session_context import SessionContext
from tests.conftest import BASE_TIME as NOW, FixedClock, wait_for


def _token(**claims) -> str:
    return jwt.encode(claims, "unit-test-signing-key-0123456789abcdef", algorithm="HS256")


def _context(values: dict[str, str] | None = None) -> tuple[SessionContext, InMemorySessionStore]:
    store = InMemorySessionStore(values)
    return SessionContext(store, clock=FixedClock()), store


@pytest.mark.asyncio
async def test_load_restores_stored_session():
    context, _ = _context({"accessToken": "opaque", "currentUserId": "7", "user": '{"username": "me"}'})

    session = await context.load()

    assert session == Session(user_id=7, credential="opaque")
    assert context.user_id == 7
    assert context.credential() == "opaque"
    assert context.profile == {"username": "me"}


@pytest.mark.asyncio
async def test_load_without_token_is_anonymous():
    context, _ = _context({"currentUserId": "7"})

    assert await context.load() is None
    assert context.credential() is None


@pytest.mark.asyncio
async def test_expired_token_is_ignored():
    token = _token(sub="7", exp=int(NOW.timestamp()) - 60)
    context, _ = _context({"accessToken": token, "currentUserId": "7"})

    assert await context.load() is None


@pytest.mark.asyncio
async def test_user_id_falls_back_to_token_subject():
    token = _token(sub="12", exp=int(NOW.timestamp()) + 3600)
    context, _ = _context({"accessToken": token})

    session = await context.load()

    assert session is not None
    assert session.user_id == 12


@pytest.mark.asyncio
async def test_non_numeric_user_id_is_rejected():
    context, _ = _context({"accessToken": "opaque", "currentUserId": "abc"})

    assert await context.load() is None


@pytest.mark.asyncio
async def test_login_persists_and_notifies_once():
    context, store = _context()
    seen = []
    context.subscribe(seen.append)

    await context.login(Session(user_id=7, credential="t"), {"username": "me"})
    await asyncio.sleep(0)
    await context.load()

    assert seen == [Session(user_id=7, credential="t")]
    assert await store.get("accessToken") == "t"
    assert await store.get("currentUserId") == "7"
    assert await store.get("user") == '{"username": "me"}'
    await context.close()


@pytest.mark.asyncio
async def test_logout_clears_store_and_notifies():
    context, store = _context({"accessToken": "t", "currentUserId": "7"})
    await context.load()
    seen = []
    context.subscribe(seen.append)

    await context.logout()

    assert seen == [None]
    assert await store.get("accessToken") is None
    assert context.current is None
    await context.close()


@pytest.mark.asyncio
async def test_external_store_change_reloads_session():
    context, store = _context({"accessToken": "t", "currentUserId": "7"})
    await context.load()
    seen = []
    context.subscribe(seen.append)

    await store.set("currentUserId", "8")
    await wait_for(lambda: bool(seen))

    assert seen == [Session(user_id=8, credential="t")]
    await context.close()


@pytest.mark.asyncio
async def test_unrelated_store_keys_are_ignored():
    context, store = _context({"accessToken": "t", "currentUserId": "7"})
    await context.load()
    seen = []
    context.subscribe(seen.append)

    await store.set("theme", "dark")
    await asyncio.sleep(0)

    assert seen == []
    await context.close()
