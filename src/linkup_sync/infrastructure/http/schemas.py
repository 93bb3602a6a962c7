"""REST response models."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, Field, field_validator

from linkup_sync.application.dto.conversation import ConversationSummary
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.value_objects.enums import Presence
from linkup_sync.infrastructure.ws.protocol import UserRef, WireModel, as_utc


class Envelope(WireModel):
    is_success: bool = False
    message: str | None = None
    data: Any = None


class MessengerItem(WireModel):
    user: UserRef
    last_message: str | None = None
    last_message_time: datetime | None = None
    unread_count: int = 0
    is_online: bool = False

    @field_validator("last_message_time")
    @classmethod
    def normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else value

    def to_summary(self) -> ConversationSummary:
        if self.user.id is None:
            raise ValueError("conversation row without user id")
        peer = Peer(
            id=self.user.id,
            display_name=self.user.username,
            avatar_ref=self.user.avatar,
            presence=Presence.ONLINE if self.is_online else Presence.OFFLINE,
        )
        return ConversationSummary(
            peer=peer,
            last_message=self.last_message,
            last_message_time=self.last_message_time,
            unread_count=self.unread_count,
            is_online=self.is_online,
        )


class ProfileRecord(WireModel):
    """Profile lookup; the endpoint returns the fields at the top level."""

    is_success: bool = False
    user_id: int | None = Field(default=None, validation_alias=AliasChoices("UserId", "userId", "id"))
    username: str | None = None
    avatar: str | None = None
    follow_status: str | None = None
