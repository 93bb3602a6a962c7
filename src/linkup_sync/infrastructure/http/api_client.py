"""REST client for the social backend."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from linkup_sync.application.dto.conversation import ConversationHistory, ConversationSummary
from linkup_sync.application.exceptions import FetchError
from linkup_sync.application.ports.clock import Clock, SystemClock
from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.infrastructure.http.schemas import Envelope, MessengerItem, ProfileRecord
from linkup_sync.infrastructure.ws.protocol import MessageRecord, NotificationPayload

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], str | None]


class SocialApiClient:
    """Implements application.ports.api.SocialApi over httpx.

    The bearer token is read from ``token_provider`` on every request so a
    session change is picked up without rebuilding the client.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: TokenProvider,
        *,
        timeout: float = 30.0,
        clock: Clock | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider
        self._clock = clock or SystemClock()
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> SocialApiClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        token = self._token_provider()
        if not token:
            raise FetchError("No access token available")
        return {"Authorization": f"Bearer {token}"}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        headers = self._headers()
        try:
            response = await self._client.request(
                method, path, headers=headers, params=params, json=json,
            )
        except httpx.HTTPError as exc:
            raise FetchError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            raise FetchError(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise FetchError(f"{method} {path} returned invalid JSON") from exc
        if not isinstance(body, dict):
            raise FetchError(f"{method} {path} returned unexpected body")
        return body

    async def _data(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            envelope = Envelope.model_validate(await self._request(method, path, **kwargs))
        except ValidationError as exc:
            raise FetchError(f"{method} {path} returned malformed envelope") from exc
        if not envelope.is_success:
            raise FetchError(envelope.message or f"{method} {path} was not successful")
        return envelope.data

    async def get_messenger(self) -> list[ConversationSummary]:
        data = await self._data("GET", "/api/texting/getMessenger")
        try:
            return [MessengerItem.model_validate(row).to_summary() for row in data or []]
        except (ValidationError, ValueError, TypeError) as exc:
            raise FetchError("getMessenger returned malformed rows") from exc

    async def get_messenger_detail(self, other_user_id: int) -> ConversationHistory:
        data = await self._data(
            "GET", "/api/texting/getMessengerDetail", params={"otherUserId": other_user_id},
        )
        try:
            records = [MessageRecord.model_validate(row) for row in data or []]
        except (ValidationError, TypeError) as exc:
            raise FetchError("getMessengerDetail returned malformed rows") from exc
        peer = next(
            (
                r.sender.to_peer(other_user_id)
                for r in records
                if r.sender is not None and r.sender_id == other_user_id
            ),
            None,
        )
        return ConversationHistory(messages=[r.to_entity() for r in records], peer=peer)

    async def get_notifications(self) -> list[Notification]:
        data = await self._data("GET", "/api/noti/getNotification")
        now: datetime = self._clock.now()
        try:
            return [NotificationPayload.model_validate(row).to_entity(now) for row in data or []]
        except (ValidationError, TypeError) as exc:
            raise FetchError("getNotification returned malformed rows") from exc

    async def get_profile(self, user_id: int) -> Peer:
        body = await self._request("GET", "/api/auth/profile", params={"userId": user_id})
        try:
            profile = ProfileRecord.model_validate(body)
        except ValidationError as exc:
            raise FetchError("profile returned malformed body") from exc
        if not profile.is_success:
            raise FetchError(f"profile lookup for user {user_id} was not successful")
        return Peer(
            id=profile.user_id if profile.user_id is not None else user_id,
            display_name=profile.username,
            avatar_ref=profile.avatar,
            followed=bool(profile.follow_status),
        )

    async def create_follow(self, following_id: int) -> None:
        await self._data("POST", "/api/follow/createFollow", json={"followingId": following_id})
        logger.debug("Followed user %d", following_id)

    async def unfollow(self, following_id: int) -> None:
        await self._data("PUT", "/api/follow/unfollow", json={"followingId": following_id})
        logger.debug("Unfollowed user %d", following_id)
