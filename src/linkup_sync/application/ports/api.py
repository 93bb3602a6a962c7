from __future__ import annotations

from typing import Protocol

from linkup_sync.application.dto.conversation import ConversationHistory, ConversationSummary
from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.entities.peer import Peer


class SocialApi(Protocol):
    """Authenticated REST capability. Every method raises FetchError on failure."""

    async def get_messenger(self) -> list[ConversationSummary]: ...

    async def get_messenger_detail(self, other_user_id: int) -> ConversationHistory: ...

    async def get_notifications(self) -> list[Notification]: ...

    async def get_profile(self, user_id: int) -> Peer: ...

    async def create_follow(self, following_id: int) -> None: ...

    async def unfollow(self, following_id: int) -> None: ...
