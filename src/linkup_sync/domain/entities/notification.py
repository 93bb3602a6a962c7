from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from linkup_sync.domain.value_objects.enums import NotificationKind


@dataclass(frozen=True, slots=True)
class Notification:
    id: int | str
    actor_id: int | None
    kind: NotificationKind
    message: str
    created_at: datetime
    actor_name: str | None = None
    actor_avatar: str | None = None
