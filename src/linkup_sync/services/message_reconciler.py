"""Merges history snapshots, push deliveries and local sends per conversation."""
from __future__ import annotations

import bisect
import itertools
import logging
from dataclasses import replace
from typing import Callable, Iterable

from linkup_sync.application.dto.conversation import ConversationPatch, Selection
from linkup_sync.domain.entities.conversation import Conversation
from linkup_sync.domain.entities.message import Message, sort_key
from linkup_sync.domain.value_objects.enums import DeliveryState
from linkup_sync.services.conversation_store import ConversationStore
from linkup_sync.services.listeners import Disposer, ListenerSet

logger = logging.getLogger(__name__)

UserIdProvider = Callable[[], int | None]
Confirmation = tuple[str, Message]


class MessageReconciler:
    """Keeps each conversation's messages deduplicated and ordered.

    Confirmed messages are unique by ``id`` and sorted by ``(created_at, id)``.
    Local messages carry a ``client_temp_id`` until their echo arrives. The
    push protocol does not return that temp id, so an echo is matched to the
    oldest unconfirmed local message with the same receiver and content.
    """

    def __init__(self, store: ConversationStore, current_user_id: UserIdProvider) -> None:
        self._store = store
        self._current_user_id = current_user_id
        self._confirmed: ListenerSet[Confirmation] = ListenerSet("echo confirmation")
        self._local_seq = itertools.count(1)

    def messages(self, peer_id: int) -> list[Message]:
        conversation = self._store.get(peer_id)
        return list(conversation.messages) if conversation else []

    def on_confirmed(self, listener: Callable[[Confirmation], None]) -> Disposer:
        """``listener`` gets ``(client_temp_id, confirmed_message)``."""
        return self._confirmed.add(listener)

    def apply_snapshot(
        self,
        peer_id: int,
        messages: Iterable[Message],
        selection: Selection | None = None,
    ) -> bool:
        """Merge fetched history; returns False if ``selection`` went stale."""
        if selection is not None and not self._store.is_current(selection):
            logger.warning("Discarding stale history snapshot for peer %d", peer_id)
            return False
        conversation = self._store.get_or_create(peer_id)
        user_id = self._current_user_id()
        merged = 0
        for message in messages:
            if self._index_of_id(conversation, message.id) is not None:
                continue
            if user_id is not None and message.sender_id == user_id:
                index = self._match_echo(conversation, message)
                if index is not None:
                    self._confirm(conversation, index, message)
                    merged += 1
                    continue
            self._insert(conversation, message)
            merged += 1
        logger.debug("Merged %d history messages for peer %d", merged, peer_id)
        self._refresh_summary(conversation)
        return True

    def apply_push(self, message: Message) -> Message | None:
        """Apply a pushed message; returns the stored entry, or None for a duplicate."""
        user_id = self._current_user_id()
        peer_id = message.peer_of(user_id) if user_id is not None else message.sender_id
        conversation = self._store.get_or_create(peer_id)

        if self._index_of_id(conversation, message.id) is not None:
            logger.debug("Dropping duplicate message %s", message.id)
            return None

        if user_id is not None and message.sender_id == user_id:
            index = self._match_echo(conversation, message)
            if index is not None:
                return self._confirm(conversation, index, message)

        self._insert(conversation, message)
        if message.sender_id != user_id and self._store.active_peer_id != peer_id:
            self._store.increment_unread(peer_id)
        self._refresh_summary(conversation)
        return message

    def insert_local(self, message: Message) -> Message:
        """Add a not-yet-confirmed local message to its receiver's conversation.

        Returns the stored entry, stamped with its insertion sequence.
        """
        if message.client_temp_id is None:
            raise ValueError("local message needs a client_temp_id")
        conversation = self._store.get_or_create(message.receiver_id)
        if self._index_of_temp(conversation, message.client_temp_id) is not None:
            raise ValueError(f"duplicate client_temp_id {message.client_temp_id}")
        message = replace(message, local_seq=next(self._local_seq))
        bisect.insort(conversation.messages, message, key=sort_key)
        self._refresh_summary(conversation)
        return message

    def mark_failed(self, peer_id: int, client_temp_id: str) -> Message | None:
        """Flag a pending local message as failed; None if it is no longer pending."""
        conversation = self._store.get(peer_id)
        if conversation is None:
            return None
        index = self._index_of_temp(conversation, client_temp_id)
        if index is None:
            return None
        current = conversation.messages[index]
        if current.delivery_state != DeliveryState.PENDING:
            return None
        failed = replace(current, delivery_state=DeliveryState.FAILED)
        conversation.messages[index] = failed
        return failed

    @staticmethod
    def _index_of_id(conversation: Conversation, message_id: int | None) -> int | None:
        if message_id is None:
            return None
        for index, existing in enumerate(conversation.messages):
            if existing.id == message_id:
                return index
        return None

    @staticmethod
    def _index_of_temp(conversation: Conversation, client_temp_id: str) -> int | None:
        for index, existing in enumerate(conversation.messages):
            if existing.client_temp_id == client_temp_id:
                return index
        return None

    @staticmethod
    def _match_echo(conversation: Conversation, echo: Message) -> int | None:
        candidates = [
            index
            for index, existing in enumerate(conversation.messages)
            if existing.is_local
            and existing.receiver_id == echo.receiver_id
            and existing.content == echo.content
        ]
        if not candidates:
            return None
        # Oldest send first; timestamps can tie, the insertion sequence cannot.
        return min(candidates, key=lambda index: conversation.messages[index].local_seq or 0)

    def _insert(self, conversation: Conversation, message: Message) -> bool:
        if self._index_of_id(conversation, message.id) is not None:
            return False
        bisect.insort(conversation.messages, message, key=sort_key)
        return True

    def _confirm(self, conversation: Conversation, index: int, echo: Message) -> Message:
        local = conversation.messages[index]
        confirmed = replace(
            echo,
            client_temp_id=None,
            attachment_ref=echo.attachment_ref or local.attachment_ref,
            delivery_state=DeliveryState.CONFIRMED,
        )
        messages = conversation.messages
        messages[index] = confirmed
        if not _in_order(messages, index):
            del messages[index]
            bisect.insort(messages, confirmed, key=sort_key)
        logger.debug("Confirmed local message %s as %s", local.client_temp_id, confirmed.id)
        self._refresh_summary(conversation)
        assert local.client_temp_id is not None
        self._confirmed.notify((local.client_temp_id, confirmed))
        return confirmed

    def _refresh_summary(self, conversation: Conversation) -> None:
        if not conversation.messages:
            return
        last = conversation.messages[-1]
        known = conversation.last_message_timestamp
        if known is not None and last.created_at < known:
            return
        self._store.upsert_conversation(
            conversation.peer_id,
            ConversationPatch(
                last_message_preview=last.content,
                last_message_timestamp=last.created_at,
            ),
        )


def _in_order(messages: list[Message], index: int) -> bool:
    key = sort_key(messages[index])
    if index > 0 and sort_key(messages[index - 1]) > key:
        return False
    if index + 1 < len(messages) and key > sort_key(messages[index + 1]):
        return False
    return True
