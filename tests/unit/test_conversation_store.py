from __future__ import annotations

from linkup_sync.application.dto.conversation import ConversationPatch, ConversationSummary
from linkup_sync.domain.entities.peer import Peer
from linkup_sync.domain.value_objects.enums import Presence
from linkup_sync.services.conversation_store import ConversationStore
from tests.conftest import at


def _summary(peer_id: int, seconds: float | None, unread: int = 0, online: bool = False) -> ConversationSummary:
    return ConversationSummary(
        peer=Peer(
            id=peer_id,
            display_name=f"user{peer_id}",
            presence=Presence.ONLINE if online else Presence.OFFLINE,
        ),
        last_message=f"last from {peer_id}",
        last_message_time=at(seconds) if seconds is not None else None,
        unread_count=unread,
        is_online=online,
    )


def test_list_is_most_recent_first_with_empty_last():
    store = ConversationStore()
    store.load_summaries([_summary(1, 10), _summary(2, None), _summary(3, 30)])

    assert [c.peer_id for c in store.list_conversations()] == [3, 1, 2]


def test_summaries_fill_peers_and_unread():
    store = ConversationStore()
    store.load_summaries([_summary(1, 10, unread=4, online=True)])

    conversation = store.get(1)
    assert conversation.unread_count == 4
    assert conversation.presence == Presence.ONLINE
    assert conversation.last_message_preview == "last from 1"
    assert store.get_peer(1).display_name == "user1"


def test_active_conversation_keeps_zero_unread_on_reload():
    store = ConversationStore()
    store.select_conversation(1)

    store.load_summaries([_summary(1, 10, unread=3)])

    assert store.get(1).unread_count == 0


def test_older_summary_does_not_overwrite_newer_preview():
    store = ConversationStore()
    store.upsert_conversation(1, ConversationPatch(last_message_preview="fresh", last_message_timestamp=at(50)))

    store.load_summaries([_summary(1, 10)])

    assert store.get(1).last_message_preview == "fresh"
    assert store.get(1).last_message_timestamp == at(50)


def test_select_resets_unread_and_invalidates_previous_selection():
    store = ConversationStore()
    store.increment_unread(1)
    selections = []
    store.on_select(selections.append)

    first = store.select_conversation(1)
    second = store.select_conversation(2)

    assert store.get(1).unread_count == 0
    assert store.active_peer_id == 2
    assert not store.is_current(first)
    assert store.is_current(second)
    assert selections == [first, second]


def test_reselecting_same_peer_issues_new_ticket():
    store = ConversationStore()
    first = store.select_conversation(1)
    second = store.select_conversation(1)

    assert not store.is_current(first)
    assert store.is_current(second)


def test_upsert_peer_is_field_wise():
    store = ConversationStore()
    store.upsert_peer(5, display_name="eve", avatar_ref="a.png")

    peer = store.upsert_peer(5, followed=True)

    assert peer == Peer(id=5, display_name="eve", avatar_ref="a.png", followed=True)


def test_presence_update_does_not_create_conversation():
    store = ConversationStore()
    store.set_presence(9, Presence.ONLINE)

    assert store.get(9) is None
    assert store.get_peer(9).presence == Presence.ONLINE
    assert store.get_or_create(9).presence == Presence.ONLINE


def test_clear_evicts_everything():
    store = ConversationStore()
    selection = store.select_conversation(1)
    store.upsert_peer(1, display_name="x")

    store.clear()

    assert store.list_conversations() == []
    assert store.get_peer(1) is None
    assert store.active_peer_id is None
    assert not store.is_current(selection)
