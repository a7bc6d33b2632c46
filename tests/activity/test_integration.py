"""
Integration tests for the activity layer.

These drive a full conversation through the real SocketIOClient, session,
listener and messaging layers, with only the socketio.Client replaced.
"""

import pytest
from unittest.mock import MagicMock, patch

from activity.client import SocketIOClient
from activity.session import ConversationSession
from messaging.models import DeliveryState
from messaging.scroll import MutationKind, ScrollAction
from tests.factories import message_payload, peer_payload, emitted, USER_ID, PEER_ID


class FakeServer:
    """Captures the handlers the client registers so tests can fire events at them."""

    def __init__(self):
        self.socket = MagicMock()
        self.socket.handlers = {"/": {}}
        self.socket.on.side_effect = self._on
        self.socket.event.side_effect = self._event

    def _on(self, event, handler):
        self.socket.handlers["/"][event] = handler

    def _event(self, handler):
        self.socket.handlers["/"][handler.__name__] = handler
        return handler

    def send(self, event, data=None):
        handler = self.socket.handlers["/"].get(event)
        if handler is None:
            return False
        if data is None:
            handler()
        else:
            handler(data)
        return True


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def connected(server, clock):
    """
    A connected client and session, built the way main.run builds them.
    """
    with patch('activity.client.socketio.Client', return_value=server.socket):
        client = SocketIOClient(url="http://chat.test", auth_token="secret")
    changes = []
    session = ConversationSession(client, USER_ID, clock=clock, page_size=4,
                                  on_change=lambda kind, decision: changes.append((kind, decision)),
                                  on_notice=MagicMock(), on_error=MagicMock())
    assert client.connect()
    return client, session, changes


class TestConversationFlow:
    """End-to-end conversation scenarios."""

    def test_full_conversation(self, server, connected, clock):
        client, session, changes = connected

        # Join and receive the snapshot
        session.join("chat-1")
        assert emitted(server.socket, "joined-chat") == [{"chatId": "chat-1"}]
        assert server.send("conversation-chat-1-init", {
            "recipientUser": peer_payload(),
            "messages": [message_payload(f"m{i}", PEER_ID, seconds=i * 10, is_read=True)
                         for i in reversed(range(1, 5))],
        })
        assert changes[-1][0] is MutationKind.INIT
        assert changes[-1][1].action is ScrollAction.SCROLL_TO_BOTTOM

        # Send a message and get it delivered
        clock.advance(60000)
        message = session.send_message("hi there")
        temp_id = message.id
        server.send("conversation-chat-1-delivered", {"tempId": temp_id, "actualId": "M99"})

        store = session.conversation.store
        assert [m.id for m in store][-1] == "M99"
        assert store.get("M99").delivery_state is DeliveryState.DELIVERED

        # The server echoes the same message; nothing is duplicated
        server.send("conversation-chat-1-new-message",
                    {"message": message_payload("M99", USER_ID, seconds=60, body="hi there")})
        assert len(store) == 5

        # Peer reads it
        server.send("conversation-chat-1-read-all", {})
        assert store.get("M99").delivery_state is DeliveryState.READ

        # Peer replies while we sit at the bottom
        server.send("conversation-chat-1-new-message",
                    {"message": message_payload("m6", PEER_ID, seconds=70)})
        assert changes[-1][1].action is ScrollAction.SCROLL_TO_BOTTOM
        assert changes[-1][1].element_id == "m6"
        assert emitted(server.socket, "read-messages") == [{"chatId": "chat-1"}]

    def test_echo_before_delivered(self, server, connected, clock):
        client, session, changes = connected
        session.join("chat-1")
        server.send("conversation-chat-1-init", {"recipientUser": peer_payload(), "messages": []})

        message = session.send_message("quick")
        server.send("conversation-chat-1-new-message",
                    {"message": message_payload("M7", USER_ID, body="quick")})
        server.send("conversation-chat-1-delivered", {"tempId": message.id, "actualId": "M7"})

        store = session.conversation.store
        assert [m.id for m in store] == ["M7"]
        assert store.get("M7").delivery_state is DeliveryState.DELIVERED

    def test_paging_back_to_the_start(self, server, connected, clock):
        client, session, changes = connected
        session.join("chat-1")
        server.send("conversation-chat-1-init", {
            "recipientUser": peer_payload(),
            "messages": [message_payload(f"m{i}", seconds=i * 10, is_read=True) for i in reversed(range(4, 8))],
        })

        # Scrolled to the top twice in quick succession: one request
        session.report_viewport(500, 0, 2000)
        session.report_viewport(500, 0, 2000)
        assert emitted(server.socket, "load-more") == [{"chatId": "chat-1", "lastMessageId": "m4"}]

        server.send("conversation-chat-1-messages-loader", {
            "messages": [message_payload(f"m{i}", seconds=i * 10, is_read=True) for i in reversed(range(0, 4))],
            "endOfMessages": True,
            "lastMessageId": "m4",
        })
        assert changes[-1][1].action is ScrollAction.SCROLL_TO_ANCHOR
        assert changes[-1][1].element_id == "m4"
        assert [m.id for m in session.conversation.store] == [f"m{i}" for i in range(8)]

        # Start of history reached: no more requests, however long we wait
        clock.advance(5000)
        session.report_viewport(500, 0, 2000)
        assert len(emitted(server.socket, "load-more")) == 1

    def test_switching_drops_late_events(self, server, connected):
        client, session, changes = connected
        session.join("chat-1")
        session.join("chat-2")

        delivered = server.send("conversation-chat-1-init",
                                {"recipientUser": peer_payload(), "messages": []})

        assert delivered is False
        assert session.conversation.conversation_id == "chat-2"
        assert session.conversation.peer is None

    def test_reconnect_rejoins(self, server, connected):
        client, session, changes = connected
        session.join("chat-1")

        server.send("disconnect")
        server.send("connect")

        assert emitted(server.socket, "joined-chat") == [{"chatId": "chat-1"}] * 2

    def test_disconnected_send_is_refused(self, server, connected):
        client, session, changes = connected
        session.join("chat-1")
        server.send("conversation-chat-1-init", {"recipientUser": peer_payload(), "messages": []})
        server.send("disconnect")

        assert session.send_message("hello") is None
        assert emitted(server.socket, "send-message") == []
        assert len(session.conversation.store) == 0
