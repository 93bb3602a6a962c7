"""In-memory conversations and peers for the current session."""
from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from linkup_sync.application.dto.conversation import (
    ConversationPatch,
    ConversationSummary,
    Selection,
)
from linkup_sync.domain.entities.conversation import Conversation
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.value_objects.enums import Presence
from linkup_sync.services.listeners import Disposer, ListenerSet

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class ConversationStore:
    """Conversations keyed by peer id, plus the peers they refer to.

    Message sequences inside a conversation are owned by MessageReconciler;
    everything else goes through the methods below.
    """

    def __init__(self) -> None:
        self._conversations: dict[int, Conversation] = {}
        self._peers: dict[int, Peer] = {}
        self._active_peer_id: int | None = None
        self._generation = 0
        self._select_listeners: ListenerSet[Selection] = ListenerSet("conversation selection")

    def list_conversations(self) -> list[Conversation]:
        """Most recent first; conversations without messages go last."""
        return sorted(
            self._conversations.values(),
            key=lambda c: (c.last_message_timestamp is not None, c.last_message_timestamp or _EPOCH),
            reverse=True,
        )

    def get(self, peer_id: int) -> Conversation | None:
        return self._conversations.get(peer_id)

    def get_or_create(self, peer_id: int) -> Conversation:
        conversation = self._conversations.get(peer_id)
        if conversation is None:
            peer = self._peers.get(peer_id)
            conversation = Conversation(
                peer_id=peer_id,
                presence=peer.presence if peer else Presence.OFFLINE,
            )
            self._conversations[peer_id] = conversation
            logger.debug("Created conversation with peer %d", peer_id)
        return conversation

    def upsert_conversation(self, peer_id: int, patch: ConversationPatch) -> Conversation:
        conversation = self.get_or_create(peer_id)
        if patch.last_message_preview is not None:
            conversation.last_message_preview = patch.last_message_preview
        if patch.last_message_timestamp is not None:
            conversation.last_message_timestamp = patch.last_message_timestamp
        if patch.unread_count is not None:
            conversation.unread_count = patch.unread_count
        if patch.presence is not None:
            conversation.presence = patch.presence
        return conversation

    def load_summaries(self, summaries: list[ConversationSummary]) -> None:
        """Layer a REST conversation list over the current state."""
        for summary in summaries:
            peer_id = summary.peer.id
            self.upsert_peer(
                peer_id,
                display_name=summary.peer.display_name,
                avatar_ref=summary.peer.avatar_ref,
                presence=summary.peer.presence,
            )
            current = self._conversations.get(peer_id)
            newer = current is None or current.last_message_timestamp is None or (
                summary.last_message_time is not None
                and summary.last_message_time >= current.last_message_timestamp
            )
            self.upsert_conversation(
                peer_id,
                ConversationPatch(
                    last_message_preview=summary.last_message if newer else None,
                    last_message_timestamp=summary.last_message_time if newer else None,
                    unread_count=0 if peer_id == self._active_peer_id else summary.unread_count,
                    presence=summary.peer.presence,
                ),
            )

    def increment_unread(self, peer_id: int) -> None:
        self.get_or_create(peer_id).unread_count += 1

    @property
    def active_peer_id(self) -> int | None:
        return self._active_peer_id

    def select_conversation(self, peer_id: int) -> Selection:
        """Make ``peer_id`` the active conversation.

        Any selection handed out earlier becomes stale, so a history snapshot
        fetched for it is discarded instead of merged.
        """
        self._generation += 1
        self._active_peer_id = peer_id
        conversation = self.get_or_create(peer_id)
        conversation.unread_count = 0
        selection = Selection(peer_id=peer_id, generation=self._generation)
        self._select_listeners.notify(selection)
        return selection

    def is_current(self, selection: Selection) -> bool:
        return (
            selection.generation == self._generation
            and selection.peer_id == self._active_peer_id
        )

    def on_select(self, listener: Callable[[Selection], None]) -> Disposer:
        return self._select_listeners.add(listener)

    def get_peer(self, peer_id: int) -> Peer | None:
        return self._peers.get(peer_id)

    def upsert_peer(
        self,
        peer_id: int,
        *,
        display_name: str | None = None,
        avatar_ref: str | None = None,
        presence: Presence | None = None,
        followed: bool | None = None,
    ) -> Peer:
        peer = self._peers.get(peer_id) or Peer(id=peer_id)
        peer = replace(
            peer,
            display_name=display_name if display_name is not None else peer.display_name,
            avatar_ref=avatar_ref if avatar_ref is not None else peer.avatar_ref,
            presence=presence if presence is not None else peer.presence,
            followed=followed if followed is not None else peer.followed,
        )
        self._peers[peer_id] = peer
        return peer

    def set_presence(self, peer_id: int, presence: Presence) -> None:
        """Update presence without creating a conversation."""
        self.upsert_peer(peer_id, presence=presence)
        conversation = self._conversations.get(peer_id)
        if conversation is not None:
            conversation.presence = presence

    def clear(self) -> None:
        """Evict everything, e.g. on logout."""
        self._conversations.clear()
        self._peers.clear()
        self._active_peer_id = None
        self._generation += 1
