"""
Tests for the ReadTracker.
"""

from unittest.mock import MagicMock

import pytest

from messaging.models import Message, DeliveryState
from messaging.store import MessageStore
from messaging.tracker import ReadTracker
from tests.factories import message_payload, USER_ID, PEER_ID, CHAT_ID


@pytest.fixture
def tracker():
    store = MessageStore(CHAT_ID, USER_ID)
    store.replace([
        Message.from_payload(message_payload(message_id, sender_id, seconds=seconds, is_read=is_read))
        for message_id, sender_id, seconds, is_read in [
            ("m4", PEER_ID, 40, False),
            ("m3", PEER_ID, 30, False),
            ("m2", USER_ID, 20, False),
            ("m1", PEER_ID, 10, True),
        ]
    ])
    tracker = ReadTracker(store)
    tracker.refresh()
    return tracker


class TestReadTracker:
    """Test suite for unread derivation and the local read transition."""

    def test_first_unread_skips_own_messages(self, tracker):
        # m2 is own and unread by the peer; it never counts as unread here
        assert tracker.first_unread_index == 2
        assert tracker.has_unread
        assert tracker.unread_count() == 2

    def test_all_read(self):
        store = MessageStore(CHAT_ID, USER_ID)
        store.replace([Message.from_payload(message_payload("m1", is_read=True))])
        tracker = ReadTracker(store)

        assert tracker.refresh() is None
        assert not tracker.has_unread
        assert tracker.unread_count() == 0

    def test_refresh_follows_store_changes(self, tracker):
        tracker.store.prepend([Message.from_payload(message_payload("m0", seconds=0))])

        assert tracker.first_unread_index == 2  # stale until refreshed
        assert tracker.refresh() == 0

    def test_mark_all_read_emits_receipt(self, tracker):
        emit = MagicMock(return_value=True)

        assert tracker.mark_all_read(emit=emit) is True

        emit.assert_called_once_with()
        assert tracker.first_unread_index is None
        assert tracker.store.get("m3").delivery_state is DeliveryState.READ
        assert tracker.store.get("m2").delivery_state is DeliveryState.DELIVERED

    def test_mark_all_read_with_nothing_unread(self, tracker):
        tracker.mark_all_read()
        emit = MagicMock(return_value=True)

        assert tracker.mark_all_read(emit=emit) is False
        emit.assert_called_once_with()

    def test_failed_emit_keeps_local_read(self, tracker, caplog):
        tracker.mark_all_read(emit=MagicMock(return_value=False))

        assert not tracker.has_unread
        assert "Read receipt could not be sent" in caplog.text
