from __future__ import annotations

from enum import StrEnum


class Presence(StrEnum):
    ONLINE = "online"
    OFFLINE = "offline"


class DeliveryState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class NotificationKind(StrEnum):
    FOLLOW = "follow"
    OTHER = "other"


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
