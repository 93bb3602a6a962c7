"""Entrypoint: python -m linkup_sync"""
from __future__ import annotations

import asyncio
import logging
import os

from linkup_sync.client import SyncClient, running_client
from linkup_sync.config import settings
from linkup_sync.domain.entities.session import Session
from linkup_sync.infrastructure.ws import protocol

logger = logging.getLogger("linkup_sync")


async def _seed_session(client: SyncClient) -> None:
    token = os.environ.get("LINKUP_ACCESS_TOKEN")
    user_id = os.environ.get("LINKUP_USER_ID")
    if token and user_id:
        await client.login(Session(user_id=int(user_id), credential=token))


async def run() -> None:
    async with running_client(settings) as client:
        await _seed_session(client)
        if client.session.current is None:
            logger.error("No session; set LINKUP_ACCESS_TOKEN and LINKUP_USER_ID")
            return

        client.connection.on_state_change(lambda state: logger.info("Connection %s", state))
        client.connection.subscribe(
            protocol.RECEIVE_MESSAGE,
            lambda _payload: logger.info(
                "Conversations: %s",
                ", ".join(f"{c.peer_id}({c.unread_count})" for c in client.list_conversations()),
            ),
        )
        client.send_queue.on_failed(
            lambda handle: logger.warning("Message to %d unconfirmed", handle.receiver_id),
        )

        await client.refresh_conversations()
        feed = await client.refresh_notifications()
        logger.info(
            "Loaded %d conversations, %d notifications",
            len(client.list_conversations()), len(feed),
        )
        try:
            while True:
                await asyncio.sleep(3600)
        except asyncio.CancelledError:
            pass


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
