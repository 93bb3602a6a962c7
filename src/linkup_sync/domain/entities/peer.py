from __future__ import annotations

from dataclasses import dataclass

from linkup_sync.domain.value_objects.enums import Presence


@dataclass(frozen=True, slots=True)
class Peer:
    id: int
    display_name: str | None = None
    avatar_ref: str | None = None
    presence: Presence = Presence.OFFLINE
    followed: bool = False
