"""
Test configuration and fixtures specific to activity layer tests.
"""

import pytest
from unittest.mock import MagicMock

from activity.client import SocketIOClient
from activity.session import ConversationSession
from tests.factories import USER_ID


@pytest.fixture
def mock_socketio():
    """
    Fixture that provides a mock socketio.Client.
    """
    mock_client = MagicMock()
    mock_client.handlers = {"/": {}}
    return mock_client


@pytest.fixture
def transport(mock_socketio):
    """
    A real SocketIOClient over a mocked connection, already marked connected.
    """
    client = SocketIOClient(url="http://chat.test", auth_token="", client=mock_socketio)
    client._set_connected(True)
    return client


@pytest.fixture
def session(transport, clock):
    """
    A ConversationSession with recording callbacks.
    """
    return ConversationSession(
        transport,
        USER_ID,
        on_notice=MagicMock(),
        on_error=MagicMock(),
        on_change=MagicMock(),
        clock=clock,
        page_size=4,
    )


@pytest.fixture
def joined(session, transport, mock_socketio, init_payload):
    """
    A session joined to chat-1 with the init snapshot applied.
    """
    session.join("chat-1")
    transport.dispatch("conversation-chat-1-init", init_payload)
    mock_socketio.emit.reset_mock()
    session.on_change.reset_mock()
    return session

