from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.value_objects.enums import Presence


@dataclass(frozen=True, slots=True)
class ConversationPatch:
    """Field-wise update; ``None`` fields leave the stored value untouched."""

    last_message_preview: str | None = None
    last_message_timestamp: datetime | None = None
    unread_count: int | None = None
    presence: Presence | None = None


@dataclass(frozen=True, slots=True)
class Selection:
    """Ticket for one activation of a conversation."""

    peer_id: int
    generation: int


@dataclass(frozen=True, slots=True)
class ConversationSummary:
    """One row of the REST conversation list."""

    peer: Peer
    last_message: str | None
    last_message_time: datetime | None
    unread_count: int
    is_online: bool


@dataclass(frozen=True, slots=True)
class ConversationHistory:
    """History snapshot for one peer, with the peer's profile when a message carried it."""

    messages: list[Message]
    peer: Peer | None = None
