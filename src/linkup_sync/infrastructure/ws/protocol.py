"""Push event payload models, names as used on the wire."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from linkup_sync.domain.entities.message import Message
from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.value_objects.enums import NotificationKind, Presence

# Inbound
RECEIVE_MESSAGE = "receiveMessage"
NOTIFICATION = "notification"
FOLLOW_NOTIFICATION = "followNotification"
USER_STATUS = "userStatus"

# Outbound
SEND_MESSAGE = "sendMessage"
FOLLOW = "follow"
USER_ONLINE = "userOnline"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class UserRef(WireModel):
    id: int | None = Field(default=None, validation_alias=AliasChoices("id", "UserId", "userId"))
    username: str | None = None
    avatar: str | None = None

    def to_peer(self, fallback_id: int) -> Peer:
        return Peer(
            id=self.id if self.id is not None else fallback_id,
            display_name=self.username,
            avatar_ref=self.avatar,
        )


class MessageRecord(WireModel):
    """A stored message, as pushed by ``receiveMessage`` or listed by the history endpoint."""

    id: int
    content: str = ""
    image: str | None = None
    sender_id: int
    receiver_id: int
    sender: UserRef | None = None
    created_at: datetime
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at")
    @classmethod
    def normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else value

    def to_entity(self) -> Message:
        return Message(
            id=self.id,
            sender_id=self.sender_id,
            receiver_id=self.receiver_id,
            content=self.content,
            attachment_ref=self.image,
            created_at=self.created_at,
        )


class SendMessagePayload(WireModel):
    sender_id: int
    receiver_id: int
    content: str
    image: str | None = None


class NotificationPayload(WireModel):
    """Notification as returned by the REST feed or pushed live.

    The server is loose about this shape; only ``message`` is required and a
    missing ``id`` gets a local one so the feed can still deduplicate.
    """

    id: int | str = Field(default_factory=lambda: f"local-{uuid.uuid4().hex}")
    message: str = ""
    type: str | None = None
    actor_id: int | None = Field(
        default=None,
        validation_alias=AliasChoices("actorId", "senderId", "userId", "UserId"),
    )
    user: UserRef | None = Field(default=None, validation_alias=AliasChoices("User", "user"))
    created_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "receivingDate"),
    )

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else value

    def to_entity(self, received_at: datetime) -> Notification:
        actor_id = self.actor_id
        if actor_id is None and self.user is not None:
            actor_id = self.user.id
        return Notification(
            id=self.id,
            actor_id=actor_id,
            kind=NotificationKind.FOLLOW if self.type == "follow" else NotificationKind.OTHER,
            message=self.message,
            created_at=self.created_at or received_at,
            actor_name=self.user.username if self.user else None,
            actor_avatar=self.user.avatar if self.user else None,
        )


class FollowNotificationPayload(WireModel):
    follower_id: int
    follower: UserRef | None = None

    def to_peer(self) -> Peer:
        if self.follower is None:
            return Peer(id=self.follower_id)
        return self.follower.to_peer(self.follower_id)

    def to_entity(self, received_at: datetime) -> Notification:
        name = self.follower.username if self.follower else None
        return Notification(
            id=f"follow-{self.follower_id}-{int(received_at.timestamp() * 1000)}",
            actor_id=self.follower_id,
            kind=NotificationKind.FOLLOW,
            message=f"{name or 'Someone'} started following you",
            created_at=received_at,
            actor_name=name,
            actor_avatar=self.follower.avatar if self.follower else None,
        )


class FollowPayload(WireModel):
    follower_id: int
    following_id: int


class UserStatusPayload(WireModel):
    user_id: int
    is_online: bool

    @property
    def presence(self) -> Presence:
        return Presence.ONLINE if self.is_online else Presence.OFFLINE


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialize an outbound payload with wire (camelCase) names."""
    return model.model_dump(by_alias=True, mode="json")
