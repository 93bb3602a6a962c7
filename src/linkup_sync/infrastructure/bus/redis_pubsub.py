"""Session change signals between processes over Redis Pub/Sub."""
from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Callable

import redis.asyncio as aioredis

from linkup_sync.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)

SESSION_CHANGED = "session.changed"


class SessionChangeBus:
    """Announces changed session keys and listens for other processes' announcements.

    Each bus carries a random origin id; announcements that come back with
    our own origin are skipped, local listeners were already told.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        channel: str,
        on_remote_change: Callable[[str], None],
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._on_remote_change = on_remote_change
        self._origin = uuid.uuid4().hex
        self._task: asyncio.Task[None] | None = None

    async def announce(self, key: str) -> None:
        raw = serialize_event(SESSION_CHANGED, {"key": key, "origin": self._origin})
        await self._redis.publish(self._channel, raw)

    async def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._listen(), name="linkup-session-subscriber")
        logger.info("Listening for session changes on channel=%s", self._channel)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _listen(self) -> None:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(self._channel)
        try:
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event_type, data = deserialize_event(message["data"])
                except ValueError:
                    logger.warning("Ignoring malformed message on %s", self._channel)
                    continue
                if event_type != SESSION_CHANGED or data.get("origin") == self._origin:
                    continue
                key = data.get("key")
                if isinstance(key, str):
                    logger.debug("Session key %s changed in another process", key)
                    self._on_remote_change(key)
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()
