from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.value_objects.enums import Presence


@dataclass(slots=True)
class Conversation:
    peer_id: int
    messages: list[Message] = field(default_factory=list)
    last_message_preview: str | None = None
    last_message_timestamp: datetime | None = None
    unread_count: int = 0
    presence: Presence = Presence.OFFLINE
