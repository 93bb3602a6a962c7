"""Notification feed merged from REST history and live pushes."""
from __future__ import annotations

import logging
from typing import Callable, Iterable

from linkup_sync.domain.entities.notification import Notification
from linkup_sync.domain.value_objects.enums import NotificationKind
from linkup_sync.services.listeners import Disposer, ListenerSet

logger = logging.getLogger(__name__)


class NotificationAggregator:
    def __init__(self) -> None:
        self._feed: list[Notification] = []
        self._follow_listeners: ListenerSet[Notification] = ListenerSet("follow notification")

    @property
    def feed(self) -> list[Notification]:
        return list(self._feed)

    @staticmethod
    def merge(existing: Iterable[Notification], incoming: Iterable[Notification]) -> list[Notification]:
        """Union by id, newest first."""
        merged = list(existing)
        seen = {n.id for n in merged}
        for notification in incoming:
            if notification.id in seen:
                continue
            seen.add(notification.id)
            merged.append(notification)
        merged.sort(key=lambda n: n.created_at, reverse=True)
        return merged

    def load(self, incoming: Iterable[Notification]) -> list[Notification]:
        self._feed = self.merge(self._feed, incoming)
        return self.feed

    def prepend_live(self, notification: Notification) -> bool:
        """Put a pushed notification at the head; False if its id is already present."""
        if any(existing.id == notification.id for existing in self._feed):
            logger.debug("Dropping duplicate notification %s", notification.id)
            return False
        self._feed.insert(0, notification)
        if notification.kind == NotificationKind.FOLLOW:
            self._follow_listeners.notify(notification)
        return True

    def on_follow(self, listener: Callable[[Notification], None]) -> Disposer:
        return self._follow_listeners.add(listener)

    def clear(self) -> None:
        self._feed.clear()
