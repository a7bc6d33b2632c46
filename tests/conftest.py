"""
Fixtures shared by the activity and messaging test suites.
"""

import pytest

from tests.factories import FakeClock, peer_payload, message_payload, USER_ID, PEER_ID


@pytest.fixture
def clock():
    """A FakeClock starting at BASE_TIME."""
    return FakeClock()


@pytest.fixture
def init_payload():
    """
    An init event: newest first, the last two peer messages unread.
    Chronologically: m1 (peer, read), m2 (me), m3 (peer), m4 (peer).
    """
    return {
        "recipientUser": peer_payload(),
        "messages": [
            message_payload("m4", PEER_ID, seconds=300),
            message_payload("m3", PEER_ID, seconds=200),
            message_payload("m2", USER_ID, seconds=100, is_read=True),
            message_payload("m1", PEER_ID, seconds=0, is_read=True),
        ],
    }


@pytest.fixture
def read_init_payload():
    """An init event where everything has been read."""
    return {
        "recipientUser": peer_payload(),
        "messages": [
            message_payload("m2", USER_ID, seconds=100, is_read=False),
            message_payload("m1", PEER_ID, seconds=0, is_read=True),
        ],
    }
