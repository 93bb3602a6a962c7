"""SessionStore on a Redis hash, with change signals over Pub/Sub.

Every process sharing the hash sees the others' writes through the channel,
the way browser tabs see each other's storage events.
"""
from __future__ import annotations

import redis.asyncio as aioredis

from linkup_sync.application.ports.session_store import ChangeListener, Disposer
from linkup_sync.infrastructure.bus.redis_pubsub import SessionChangeBus
from linkup_sync.services.listeners import ListenerSet


class RedisSessionStore:
    def __init__(self, redis: aioredis.Redis, key: str, channel: str) -> None:
        self._redis = redis
        self._key = key
        self._listeners: ListenerSet[str] = ListenerSet("session store")
        self._bus = SessionChangeBus(redis, channel, self._listeners.notify)

    async def start(self) -> None:
        await self._bus.start()

    async def stop(self) -> None:
        await self._bus.stop()

    async def get(self, key: str) -> str | None:
        value = await self._redis.hget(self._key, key)
        if isinstance(value, bytes):
            return value.decode()
        return value

    async def set(self, key: str, value: str) -> None:
        await self._redis.hset(self._key, key, value)
        await self._changed(key)

    async def delete(self, key: str) -> None:
        if await self._redis.hdel(self._key, key):
            await self._changed(key)

    def on_change(self, listener: ChangeListener) -> Disposer:
        return self._listeners.add(listener)

    async def _changed(self, key: str) -> None:
        self._listeners.notify(key)
        await self._bus.announce(key)
