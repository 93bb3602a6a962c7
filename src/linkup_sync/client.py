from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import redis.asyncio as aioredis
from pydantic import ValidationError

from linkup_sync.application.dto.send import SendHandle
from linkup_sync.application.exceptions import FetchError, NotConnectedError
from linkup_sync.application.ports.api import SocialApi
from linkup_sync.application.ports.clock import Clock, SystemClock
from linkup_sync.config import Settings, settings as default_settings
from linkup_sync.domain.entities.conversation import Conversation
from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.entities.session import Session
from linkup_sync.infrastructure.http.api_client import SocialApiClient
from linkup_sync.infrastructure.session.memory_store import InMemorySessionStore
from linkup_sync.infrastructure.session.redis_store import RedisSessionStore
from linkup_sync.infrastructure.ws import protocol
from linkup_sync.infrastructure.ws.socketio_transport import SocketIOTransport
from linkup_sync.services.connection_manager import ConnectionManager
from linkup_sync.services.conversation_store import ConversationStore
from linkup_sync.services.listeners import Disposer
from linkup_sync.services.message_reconciler import MessageReconciler
from linkup_sync.services.notification_aggregator import NotificationAggregator
from linkup_sync.services.send_queue import OptimisticSendQueue
from linkup_sync.services.session_context import SessionContext

logger = logging.getLogger(__name__)


class SyncClient:
    """Keeps conversations, messages and notifications in sync for one session."""

    def __init__(
        self,
        session: SessionContext,
        connection: ConnectionManager,
        api: SocialApi,
        *,
        confirm_timeout: float = 15.0,
        clock: Clock | None = None,
    ) -> None:
        self.session = session
        self.connection = connection
        self.api = api
        self._clock = clock or SystemClock()

        self.conversations = ConversationStore()
        self.reconciler = MessageReconciler(self.conversations, lambda: self.session.user_id)
        self.notifications = NotificationAggregator()
        self.send_queue = OptimisticSendQueue(
            connection,
            self.reconciler,
            lambda: self.session.user_id,
            confirm_timeout=confirm_timeout,
            clock=self._clock,
        )

        self._disposers: list[Disposer] = []
        self._connect_tasks: set[asyncio.Task[None]] = set()
        self._user_id: int | None = None

    async def start(self) -> None:
        self._disposers += [
            self.connection.subscribe(protocol.RECEIVE_MESSAGE, self._on_receive_message),
            self.connection.subscribe(protocol.NOTIFICATION, self._on_notification),
            self.connection.subscribe(protocol.FOLLOW_NOTIFICATION, self._on_follow_notification),
            self.connection.subscribe(protocol.USER_STATUS, self._on_user_status),
            self.notifications.on_follow(self._on_followed),
            self.session.subscribe(self._on_session_changed),
        ]
        session = await self.session.load()
        self._user_id = session.user_id if session else None
        await self.connection.connect(session)

    async def close(self) -> None:
        for dispose in self._disposers:
            dispose()
        self._disposers.clear()
        for task in list(self._connect_tasks):
            task.cancel()
        if self._connect_tasks:
            await asyncio.gather(*self._connect_tasks, return_exceptions=True)
        self.send_queue.dispose()
        await self.connection.disconnect()
        await self.session.close()

    async def login(self, session: Session, profile: dict[str, Any] | None = None) -> None:
        await self.session.login(session, profile)

    async def logout(self) -> None:
        await self.session.logout()

    def list_conversations(self) -> list[Conversation]:
        return self.conversations.list_conversations()

    def messages(self, peer_id: int) -> list[Message]:
        return self.reconciler.messages(peer_id)

    @property
    def feed(self) -> list[Notification]:
        return self.notifications.feed

    async def refresh_conversations(self) -> list[Conversation]:
        try:
            summaries = await self.api.get_messenger()
        except FetchError as exc:
            logger.warning("Conversation list fetch failed: %s", exc.detail)
            raise
        self.conversations.load_summaries(summaries)
        return self.conversations.list_conversations()

    async def open_conversation(self, peer_id: int) -> list[Message] | None:
        """Activate a conversation and merge its history.

        Returns the merged sequence, or None when another conversation was
        selected before the history arrived.
        """
        selection = self.conversations.select_conversation(peer_id)
        try:
            history = await self.api.get_messenger_detail(peer_id)
        except FetchError as exc:
            logger.warning("History fetch for peer %d failed: %s", peer_id, exc.detail)
            raise
        if not self.reconciler.apply_snapshot(peer_id, history.messages, selection):
            return None
        if history.peer is not None:
            self.conversations.upsert_peer(
                peer_id,
                display_name=history.peer.display_name,
                avatar_ref=history.peer.avatar_ref,
            )
        elif not history.messages:
            await self._resolve_peer(peer_id)
        return self.reconciler.messages(peer_id)

    async def refresh_notifications(self) -> list[Notification]:
        try:
            incoming = await self.api.get_notifications()
        except FetchError as exc:
            logger.warning("Notification fetch failed: %s", exc.detail)
            raise
        return self.notifications.load(incoming)

    async def send_message(self, content: str, receiver_id: int | None = None) -> SendHandle:
        if receiver_id is None:
            receiver_id = self.conversations.active_peer_id
        return await self.send_queue.send(receiver_id, content)

    async def follow(self, peer_id: int) -> None:
        await self.api.create_follow(peer_id)
        self.conversations.upsert_peer(peer_id, followed=True)
        user_id = self.session.user_id
        if user_id is None:
            return
        payload = protocol.FollowPayload(follower_id=user_id, following_id=peer_id)
        try:
            await self.connection.emit(protocol.FOLLOW, protocol.dump(payload))
        except NotConnectedError as exc:
            logger.warning("Follow of %d saved but not announced: %s", peer_id, exc.detail)

    async def unfollow(self, peer_id: int) -> None:
        await self.api.unfollow(peer_id)
        self.conversations.upsert_peer(peer_id, followed=False)

    async def _resolve_peer(self, peer_id: int) -> None:
        peer = self.conversations.get_peer(peer_id)
        if peer is not None and peer.display_name:
            return
        try:
            profile = await self.api.get_profile(peer_id)
        except FetchError as exc:
            logger.warning("Profile lookup for peer %d failed: %s", peer_id, exc.detail)
            return
        self.conversations.upsert_peer(
            peer_id,
            display_name=profile.display_name,
            avatar_ref=profile.avatar_ref,
            followed=profile.followed,
        )

    def _on_session_changed(self, session: Session | None) -> None:
        user_id = session.user_id if session else None
        if user_id != self._user_id:
            self.send_queue.close()
            self.conversations.clear()
            self.notifications.clear()
        self._user_id = user_id
        task = asyncio.get_running_loop().create_task(self.connection.connect(session))
        self._connect_tasks.add(task)
        task.add_done_callback(self._connect_tasks.discard)

    def _on_receive_message(self, payload: Any) -> None:
        try:
            record = protocol.MessageRecord.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed %s payload", protocol.RECEIVE_MESSAGE)
            return
        if record.sender is not None and record.sender_id != self.session.user_id:
            self.conversations.upsert_peer(
                record.sender_id,
                display_name=record.sender.username,
                avatar_ref=record.sender.avatar,
            )
        self.reconciler.apply_push(record.to_entity())

    def _on_notification(self, payload: Any) -> None:
        try:
            notification = protocol.NotificationPayload.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed %s payload", protocol.NOTIFICATION)
            return
        self.notifications.prepend_live(notification.to_entity(self._clock.now()))

    def _on_follow_notification(self, payload: Any) -> None:
        try:
            event = protocol.FollowNotificationPayload.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed %s payload", protocol.FOLLOW_NOTIFICATION)
            return
        self.notifications.prepend_live(event.to_entity(self._clock.now()))

    def _on_followed(self, notification: Notification) -> None:
        if notification.actor_id is None:
            return
        self.conversations.upsert_peer(
            notification.actor_id,
            display_name=notification.actor_name,
            avatar_ref=notification.actor_avatar,
        )

    def _on_user_status(self, payload: Any) -> None:
        try:
            status = protocol.UserStatusPayload.model_validate(payload)
        except ValidationError:
            logger.warning("Ignoring malformed %s payload", protocol.USER_STATUS)
            return
        self.conversations.set_presence(status.user_id, status.presence)


@asynccontextmanager
async def running_client(config: Settings | None = None) -> AsyncIterator[SyncClient]:
    """Build a SyncClient from settings, start it, and shut it all down on exit."""
    config = config or default_settings
    redis: aioredis.Redis | None = None
    if config.SESSION_BACKEND == "redis":
        redis = aioredis.from_url(config.REDIS_URL, decode_responses=True)
        store: InMemorySessionStore | RedisSessionStore = RedisSessionStore(
            redis, config.SESSION_REDIS_KEY, config.SESSION_REDIS_CHANNEL,
        )
        await store.start()
    else:
        store = InMemorySessionStore()

    session = SessionContext(store)
    api = SocialApiClient(config.API_BASE_URL, session.credential, timeout=config.HTTP_TIMEOUT)
    connection = ConnectionManager(
        lambda: SocketIOTransport(
            config.SOCKET_URL,
            socketio_path=config.SOCKET_PATH,
            connect_timeout=config.SOCKET_CONNECT_TIMEOUT,
        ),
        base_delay=config.RECONNECT_BASE_DELAY,
        max_delay=config.RECONNECT_MAX_DELAY,
        max_attempts=config.RECONNECT_MAX_ATTEMPTS,
    )
    client = SyncClient(session, connection, api, confirm_timeout=config.SEND_CONFIRM_TIMEOUT)

    await client.start()
    logger.info("Sync client started (backend=%s)", config.SESSION_BACKEND)
    try:
        yield client
    finally:
        await client.close()
        await api.close()
        if isinstance(store, RedisSessionStore):
            await store.stop()
        if redis is not None:
            await redis.aclose()
        logger.info("Sync client stopped")
