from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from linkup_sync.domain.value_objects.enums import DeliveryState


@dataclass(frozen=True, slots=True)
class Message:
    id: int | None
    sender_id: int
    receiver_id: int
    content: str
    created_at: datetime
    client_temp_id: str | None = None
    attachment_ref: str | None = None
    delivery_state: DeliveryState = DeliveryState.CONFIRMED
    local_seq: int | None = None

    @property
    def is_local(self) -> bool:
        """True while the message still waits for its server echo."""
        return self.client_temp_id is not None

    def peer_of(self, user_id: int) -> int:
        return self.receiver_id if self.sender_id == user_id else self.sender_id


def sort_key(message: Message) -> tuple:
    # Confirmed messages order by (created_at, id); local ones sort after
    # confirmed messages sharing the same timestamp, in insertion order.
    if message.id is not None:
        return (message.created_at, 0, message.id)
    return (message.created_at, 1, message.local_seq if message.local_seq is not None else 0)
