from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.value_objects.enums import DeliveryState


@dataclass(slots=True)
class SendHandle:
    """Caller-side view of one optimistic send."""

    client_temp_id: str
    receiver_id: int
    content: str
    state: DeliveryState = DeliveryState.PENDING
    message: Message | None = None
    _confirmed: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def confirmed(self) -> bool:
        return self.state == DeliveryState.CONFIRMED

    @property
    def failed(self) -> bool:
        return self.state == DeliveryState.FAILED

    def resolve(self, message: Message) -> None:
        self.state = DeliveryState.CONFIRMED
        self.message = message
        self._confirmed.set()

    def fail(self, message: Message) -> None:
        self.state = DeliveryState.FAILED
        self.message = message

    async def wait_confirmed(self, timeout: float | None = None) -> Message:
        """Wait for the server echo; raises TimeoutError after ``timeout``."""
        await asyncio.wait_for(self._confirmed.wait(), timeout)
        assert self.message is not None
        return self.message
