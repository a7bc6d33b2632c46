"""
Tests for the message and peer models.
"""

import pytest
from datetime import datetime, timezone

from messaging.errors import InvalidPayloadError
from messaging.models import (
    Message, Peer, DeliveryState, TemporaryIdMinter, parse_timestamp
)
from tests.factories import message_payload, peer_payload, BASE_TIME, USER_ID, PEER_ID, CHAT_ID


class TestParseTimestamp:
    """Test suite for server timestamp parsing."""

    def test_iso_with_z_suffix(self):
        assert parse_timestamp("2026-03-03T12:00:00Z") == BASE_TIME

    def test_iso_with_milliseconds(self):
        parsed = parse_timestamp("2026-03-03T12:00:00.250Z")
        assert parsed.microsecond == 250000
        assert parsed.tzinfo is not None

    def test_epoch_milliseconds(self):
        assert parse_timestamp(BASE_TIME.timestamp() * 1000) == BASE_TIME

    def test_naive_datetime_is_treated_as_utc(self):
        assert parse_timestamp(datetime(2026, 3, 3, 12, 0, 0)) == BASE_TIME

    def test_none(self):
        assert parse_timestamp(None) is None

    def test_garbage_raises(self):
        with pytest.raises(InvalidPayloadError):
            parse_timestamp("yesterday-ish")


class TestMessage:
    """Test suite for the Message model."""

    def test_from_payload(self):
        message = Message.from_payload(message_payload("m1", PEER_ID, seconds=60, body="hi"))

        assert message.id == "m1"
        assert message.body == "hi"
        assert message.conversation_id == CHAT_ID
        assert message.sender_id == PEER_ID
        assert message.recipient_id == USER_ID
        assert message.created_at == parse_timestamp("2026-03-03T12:01:00Z")
        assert message.delivery_state is DeliveryState.DELIVERED
        assert not message.recipient_read
        assert not message.is_local

    def test_from_payload_read_recipient(self):
        message = Message.from_payload(message_payload("m1", is_read=True))
        assert message.delivery_state is DeliveryState.READ
        assert message.recipient_read

    def test_from_payload_recipient_id_falls_back_to_recipients(self):
        payload = message_payload("m1")
        del payload["recipientId"]
        assert Message.from_payload(payload).recipient_id == USER_ID

    @pytest.mark.parametrize("missing", ["id", "senderId", "createdAt"])
    def test_from_payload_missing_fields(self, missing):
        payload = message_payload("m1")
        del payload[missing]
        with pytest.raises(InvalidPayloadError):
            Message.from_payload(payload)

    def test_from_payload_not_a_dict(self):
        with pytest.raises(InvalidPayloadError):
            Message.from_payload(["m1"])

    def test_to_payload_uses_server_keys(self):
        original = message_payload("m1", USER_ID, seconds=5, is_read=True)
        payload = Message.from_payload(original).to_payload()

        assert payload["id"] == "m1"
        assert payload["chatId"] == CHAT_ID
        assert payload["createdAt"] == original["createdAt"]
        assert payload["recipients"] == [{"isRead": True, "recipientId": PEER_ID}]
        assert payload["isLocal"] is False

    def test_advance_never_regresses(self):
        message = Message.from_payload(message_payload("m1", is_read=True))

        assert message.advance(DeliveryState.DELIVERED) is False
        assert message.delivery_state is DeliveryState.READ

    def test_advance_moves_forward(self):
        message = Message("t1", "hi", CHAT_ID, USER_ID, BASE_TIME, delivery_state=DeliveryState.LOCAL)

        assert message.advance(DeliveryState.DELIVERED) is True
        assert message.advance(DeliveryState.READ) is True
        assert message.delivery_state is DeliveryState.READ


class TestPeer:
    """Test suite for the Peer model."""

    def test_from_payload(self):
        peer = Peer.from_payload(peer_payload(is_online=True))

        assert peer.id == PEER_ID
        assert peer.display_name == "Peer"
        assert peer.is_online is True
        assert peer.is_archived is False
        assert peer.chat_created is not None

    def test_from_payload_without_id(self):
        with pytest.raises(InvalidPayloadError):
            Peer.from_payload({"displayName": "nobody"})

    def test_going_offline_stamps_last_online(self):
        peer = Peer.from_payload(peer_payload(is_online=True))
        now = datetime(2026, 3, 3, 13, 0, tzinfo=timezone.utc)

        peer.set_online(False, now=now)

        assert peer.is_online is False
        assert peer.last_online == now

    def test_coming_online_keeps_last_online(self):
        peer = Peer.from_payload(peer_payload(is_online=False))
        peer.set_online(True)
        assert peer.is_online is True
        assert peer.last_online is None


class TestTemporaryIdMinter:
    """Test suite for temporary id minting."""

    def test_ids_are_time_based(self, clock):
        minter = TemporaryIdMinter(clock)
        assert minter.mint() == str(int(clock()))

    def test_same_millisecond_still_increases(self, clock):
        minter = TemporaryIdMinter(clock)

        first = minter.mint()
        second = minter.mint()

        assert int(second) == int(first) + 1

    def test_clock_going_backwards_still_increases(self, clock):
        minter = TemporaryIdMinter(clock)
        first = minter.mint()
        clock.advance(-5000)
        assert int(minter.mint()) > int(first)
