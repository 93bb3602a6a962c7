"""Current identity, restored from and persisted to a SessionStore."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

import jwt

from linkup_sync.application.exceptions import SessionError
from linkup_sync.application.ports.clock import Clock, SystemClock
from linkup_sync.application.ports.session_store import SessionStore
from linkup_sync.domain.entities.session import Session
from linkup_sync.services.listeners import Disposer, ListenerSet

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = "accessToken"
CURRENT_USER_ID_KEY = "currentUserId"
USER_KEY = "user"

_SESSION_KEYS = frozenset({ACCESS_TOKEN_KEY, CURRENT_USER_ID_KEY, USER_KEY})


def _token_claims(token: str) -> dict[str, Any]:
    # Signature is the server's business; the client only reads exp/sub.
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return {}


class SessionContext:
    def __init__(self, store: SessionStore, *, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()
        self._session: Session | None = None
        self._profile: dict[str, Any] | None = None
        self._listeners: ListenerSet[Session | None] = ListenerSet("session")
        self._lock = asyncio.Lock()
        self._reloads: set[asyncio.Task[Session | None]] = set()
        self._unwatch = store.on_change(self._on_store_change)

    @property
    def current(self) -> Session | None:
        return self._session

    @property
    def profile(self) -> dict[str, Any] | None:
        return self._profile

    @property
    def user_id(self) -> int | None:
        return self._session.user_id if self._session else None

    def credential(self) -> str | None:
        return self._session.credential if self._session else None

    def subscribe(self, listener: Callable[[Session | None], None]) -> Disposer:
        return self._listeners.add(listener)

    async def load(self) -> Session | None:
        """Re-read the store; listeners fire only if the session changed."""
        async with self._lock:
            token = await self._store.get(ACCESS_TOKEN_KEY)
            raw_user_id = await self._store.get(CURRENT_USER_ID_KEY)
            raw_profile = await self._store.get(USER_KEY)
            try:
                session = self._build(token, raw_user_id)
            except SessionError as exc:
                logger.warning("Ignoring stored session: %s", exc.detail)
                session = None
            self._apply(session, _parse_profile(raw_profile))
            return session

    async def login(self, session: Session, profile: dict[str, Any] | None = None) -> None:
        async with self._lock:
            await self._store.set(ACCESS_TOKEN_KEY, session.credential)
            await self._store.set(CURRENT_USER_ID_KEY, str(session.user_id))
            if profile is not None:
                await self._store.set(USER_KEY, json.dumps(profile))
            self._apply(session, profile)

    async def logout(self) -> None:
        async with self._lock:
            for key in (ACCESS_TOKEN_KEY, CURRENT_USER_ID_KEY, USER_KEY):
                await self._store.delete(key)
            self._apply(None, None)

    async def close(self) -> None:
        self._unwatch()
        for task in list(self._reloads):
            task.cancel()
        if self._reloads:
            await asyncio.gather(*self._reloads, return_exceptions=True)
        self._listeners.clear()

    def _build(self, token: str | None, raw_user_id: str | None) -> Session | None:
        if not token:
            return None
        claims = _token_claims(token)
        exp = claims.get("exp")
        if isinstance(exp, (int, float)) and exp <= self._clock.now().timestamp():
            logger.info("Stored access token has expired")
            return None
        candidate = raw_user_id or claims.get("sub") or claims.get("UserId")
        if candidate is None:
            raise SessionError("no user id stored or present in the token")
        try:
            user_id = int(candidate)
        except (TypeError, ValueError) as exc:
            raise SessionError(f"user id {candidate!r} is not numeric") from exc
        return Session(user_id=user_id, credential=token)

    def _apply(self, session: Session | None, profile: dict[str, Any] | None) -> None:
        self._profile = profile
        if session == self._session:
            return
        self._session = session
        if session is None:
            logger.info("Session cleared")
        else:
            logger.info("Session active for user %d", session.user_id)
        self._listeners.notify(session)

    def _on_store_change(self, key: str) -> None:
        if key not in _SESSION_KEYS:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self.load())
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)


def _parse_profile(raw: str | None) -> dict[str, Any] | None:
    if not raw:
        return None
    try:
        profile = json.loads(raw)
    except ValueError:
        logger.warning("Stored user profile is not valid JSON")
        return None
    return profile if isinstance(profile, dict) else None
