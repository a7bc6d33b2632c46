"""
Conversation Session
Join/leave lifecycle for one conversation over the SocketIOClient, and the
outbound actions that go with it.
"""

import logging
import threading
from typing import Dict, Any, Callable, Optional

from config import TOPIC_PREFIX, PAGE_SIZE
from activity.client import SocketIOClient
from activity.listener import ConversationEventHandler
from messaging.conversation import Conversation
from messaging.errors import ConnectionLostError, ConversationError
from messaging.models import Message
from messaging.scroll import MutationKind, ScrollDecision

logger = logging.getLogger(__name__)

# Inbound topic kinds, scoped per conversation as "{prefix}-{id}-{kind}"
TOPIC_KINDS = [
    "init",
    "new-message",
    "delivered",
    "read-all",
    "messages-loader",
    "recipient-status-change",
    "error",
]

# Outbound event names (not scoped)
EVENT_JOINED = "joined-chat"
EVENT_LEFT = "left-chat"
EVENT_SEND = "send-message"
EVENT_READ = "read-messages"
EVENT_LOAD_MORE = "load-more"
EVENT_ARCHIVE = "archive-chat"
EVENT_DELETE = "delete-chat"

CONNECTION_LOST_NOTICE = "Connection lost..."
EMPTY_MESSAGE_NOTICE = "Can't send empty message"


def topic_name(conversation_id: str, kind: str, prefix: str = TOPIC_PREFIX) -> str:
    return f"{prefix}-{conversation_id}-{kind}"


class ConversationSession:
    """
    Owns which conversation is joined and the Conversation state behind it.

    Only one conversation is active at a time. Joining another one tears the
    current one down completely (unsubscribe, emit leave) before subscribing
    to the new topics.
    """

    def __init__(self, client: SocketIOClient, user_id: str,
                 on_notice: Optional[Callable[[str], None]] = None,
                 on_error: Optional[Callable[[ConversationError], None]] = None,
                 on_change: Optional[Callable[[MutationKind, ScrollDecision], None]] = None,
                 clock: Optional[Callable[[], float]] = None,
                 topic_prefix: str = TOPIC_PREFIX,
                 page_size: int = PAGE_SIZE):
        """
        Args:
            client: Transport used for subscriptions and emits
            user_id: The local user's id
            on_notice: Shows a transient, user-visible notice
            on_error: Receives the terminal ConversationError before the session leaves
            on_change: Called after every applied change with its kind and scroll decision
            clock: Returns the current time in epoch milliseconds
            topic_prefix: Prefix of the conversation-scoped topic names
            page_size: Messages per server page
        """
        self.client = client
        self.user_id = str(user_id)
        self.on_notice = on_notice
        self.on_error = on_error
        self.on_change = on_change
        self.topic_prefix = topic_prefix
        self.page_size = page_size
        self._clock = clock
        self.conversation: Optional[Conversation] = None
        self.joined = False
        # Guards all conversation state: python-socketio delivers events on its own thread
        self.lock = threading.Lock()
        self._join_emitted = False
        self._handler = ConversationEventHandler(self)

        self.client.add_connectivity_listener(self._on_connectivity_change)

    @property
    def conversation_id(self) -> Optional[str]:
        return self.conversation.conversation_id if self.conversation else None

    # --- Lifecycle ---

    def join(self, conversation_id: str) -> bool:
        """
        Join a conversation, leaving the current one first if it differs.

        Returns:
            True if a new conversation was set up, False if already joined to it
        """
        conversation_id = str(conversation_id)
        with self.lock:
            return self._join(conversation_id)

    def _join(self, conversation_id: str) -> bool:
        if self.joined and self.conversation_id == conversation_id:
            logger.debug(f"[{conversation_id}] Already joined")
            return False

        self._leave()

        self.conversation = Conversation(conversation_id, self.user_id,
                                         page_size=self.page_size, clock=self._clock)
        self.conversation.scroll.mark_read = self._mark_read_from_view
        for kind in TOPIC_KINDS:
            self.client.subscribe(topic_name(conversation_id, kind, self.topic_prefix),
                                  self._handler.handler_for(kind, conversation_id))
        self.joined = True
        logger.info(f"[{conversation_id}] Subscribed to {len(TOPIC_KINDS)} conversation topics")

        if self.client.connected:
            self._emit_join()
        else:
            logger.info(f"[{conversation_id}] Transport not ready, join deferred until connected")
        return True

    def leave(self) -> bool:
        """
        Tear down the current conversation. A no-op when nothing is joined.

        Returns:
            True if a conversation was left
        """
        with self.lock:
            return self._leave()

    def _leave(self) -> bool:
        if not self.joined or self.conversation is None:
            return False

        conversation_id = self.conversation.conversation_id
        for kind in TOPIC_KINDS:
            self.client.unsubscribe(topic_name(conversation_id, kind, self.topic_prefix))
        if self.client.connected:
            self.client.emit(EVENT_LEFT, {"chatId": conversation_id})

        self.conversation = None
        self.joined = False
        self._join_emitted = False
        logger.info(f"[{conversation_id}] Left conversation")
        return True

    def _emit_join(self) -> None:
        if self.client.emit(EVENT_JOINED, {"chatId": self.conversation_id}):
            self._join_emitted = True
            logger.info(f"[{self.conversation_id}] Join emitted")

    def _on_connectivity_change(self, connected: bool) -> None:
        with self.lock:
            self._connectivity_changed(connected)

    def _connectivity_changed(self, connected: bool) -> None:
        if not self.joined:
            return
        if connected:
            # The server forgets room membership across reconnects; it answers with a fresh init
            if not self._join_emitted:
                self._emit_join()
        else:
            self._join_emitted = False
            logger.warning(f"[{self.conversation_id}] Transport disconnected")

    # --- Outbound actions ---

    def _require_connection(self) -> Conversation:
        """
        Raises:
            ConnectionLostError: If the transport is down or the conversation is not initialized
        """
        if not self.client.connected or self.conversation is None or self.conversation.peer is None:
            raise ConnectionLostError(CONNECTION_LOST_NOTICE)
        return self.conversation

    def _notify(self, notice: str) -> None:
        if self.on_notice is not None:
            self.on_notice(notice)
        else:
            logger.warning(f"Notice: {notice}")

    def send_message(self, body: str) -> Optional[Message]:
        """
        Optimistically add a message and send it.

        Returns:
            The optimistic message, or None if nothing was sent
        """
        with self.lock:
            return self._send_message(body)

    def _send_message(self, body: str) -> Optional[Message]:
        try:
            conversation = self._require_connection()
        except ConnectionLostError as e:
            self._notify(str(e))
            return None

        try:
            message = conversation.add_local_message(body)
        except ValueError:
            self._notify(EMPTY_MESSAGE_NOTICE)
            return None

        self.client.emit(EVENT_SEND, {
            "chatId": conversation.conversation_id,
            "recipientId": conversation.peer.id,
            "message": message.body,
            "tempId": message.id,
        })
        self._changed(MutationKind.APPEND)
        return message

    def mark_all_read(self) -> bool:
        """
        Mark every peer message read locally and send the read receipt.

        Returns:
            False if the action was dropped because the connection is down
        """
        with self.lock:
            return self._mark_all_read()

    def _mark_all_read(self) -> bool:
        try:
            conversation = self._require_connection()
        except ConnectionLostError as e:
            self._notify(str(e))
            return False
        conversation.tracker.mark_all_read(emit=self._emit_read)
        return True

    def _emit_read(self) -> bool:
        return self.client.emit(EVENT_READ, {"chatId": self.conversation_id})

    def _mark_read_from_view(self) -> bool:
        # Called by the scroll coordinator once the unread messages are on screen
        if self.conversation is None:
            return False
        if not self.client.connected:
            self._notify(CONNECTION_LOST_NOTICE)
            return False
        return self.conversation.tracker.mark_all_read(emit=self._emit_read)

    def request_older(self) -> bool:
        """
        Ask for the page of messages before the oldest one loaded.

        Returns:
            True if a request was emitted
        """
        with self.lock:
            return self._request_older()

    def _request_older(self) -> bool:
        try:
            conversation = self._require_connection()
        except ConnectionLostError as e:
            self._notify(str(e))
            return False

        oldest_id = conversation.store.oldest_id
        if not conversation.pagination.request_older(oldest_id):
            return False
        return self._emit_load_more(conversation, oldest_id)

    def _emit_load_more(self, conversation: Conversation, oldest_id: str) -> bool:
        sent = self.client.emit(EVENT_LOAD_MORE, {
            "chatId": conversation.conversation_id,
            "lastMessageId": oldest_id,
        })
        if not sent:
            # Nothing is in flight if the emit never left
            conversation.pagination.cursor.in_flight = False
            conversation.pagination.cursor.requested_at = None
        return sent

    def consider_pagination(self) -> bool:
        """
        Request older history if the view is parked at the top and the guard allows it.

        Quietly does nothing while disconnected; this runs on every viewport
        sample and after every change, not on a user action.
        """
        with self.lock:
            return self._consider_pagination()

    def _consider_pagination(self) -> bool:
        conversation = self.conversation
        if conversation is None or not conversation.initialized or not self.client.connected:
            return False
        oldest_id = conversation.store.oldest_id
        if conversation.pagination.consider(conversation.scroll.state.at_top, oldest_id):
            return self._emit_load_more(conversation, oldest_id)
        return False

    def report_viewport(self, client_height: float, scroll_top: float, scroll_height: float) -> ScrollDecision:
        """
        Feed a raw scroll sample from the view.

        Returns:
            What the view should do now
        """
        with self.lock:
            if self.conversation is None:
                return ScrollDecision()
            self.conversation.scroll.update_viewport(client_height, scroll_top, scroll_height)
            self._consider_pagination()
            return self.conversation.decide_scroll(MutationKind.VIEWPORT)

    def archive_chat(self) -> bool:
        return self._emit_and_leave(EVENT_ARCHIVE)

    def delete_chat(self) -> bool:
        return self._emit_and_leave(EVENT_DELETE)

    def _emit_and_leave(self, event: str) -> bool:
        with self.lock:
            return self._emit_and_leave_locked(event)

    def _emit_and_leave_locked(self, event: str) -> bool:
        try:
            conversation = self._require_connection()
        except ConnectionLostError:
            self._notify("Connection lost. Please retry once the connection is re-established.")
            return False
        sent = self.client.emit(event, {"chatId": conversation.conversation_id})
        self._leave()
        return sent

    # --- Inbound, called by ConversationEventHandler with self.lock held ---

    def handle_init(self, recipient_user: Dict[str, Any], messages: list) -> None:
        kind = self.conversation.initialize(recipient_user, messages)
        self._changed(kind)

    def handle_new_message(self, message: Dict[str, Any], temp_id: Optional[str] = None) -> None:
        kind, needs_receipt = self.conversation.apply_new_message(message, temp_id=temp_id)
        if needs_receipt:
            # Decision: read immediately and optimistically, whatever the peer's presence
            self.conversation.tracker.mark_all_read(emit=self._emit_read)
        self._changed(kind)

    def handle_delivered(self, temp_id: str, actual_id: str) -> None:
        self._changed(self.conversation.apply_delivered(temp_id, actual_id))

    def handle_read_all(self) -> None:
        self._changed(self.conversation.apply_read_all())

    def handle_messages_loader(self, messages: list, end_of_messages: bool,
                               last_message_id: Optional[str]) -> None:
        kind, anchor_id = self.conversation.apply_page(messages, end_of_messages, last_message_id)
        self._changed(kind, anchor_id)

    def handle_presence(self, is_online: bool) -> None:
        self._changed(self.conversation.apply_presence(is_online))

    def handle_error(self, status: Optional[int], message: str) -> None:
        error = ConversationError(status, message)
        logger.error(f"[{self.conversation_id}] Server reported error: {error}")
        self._leave()
        if self.on_error is not None:
            self.on_error(error)

    def _changed(self, kind: MutationKind, anchor_id: Optional[str] = None) -> Optional[ScrollDecision]:
        if kind is MutationKind.NONE or self.conversation is None:
            return None
        decision = self.conversation.decide_scroll(kind, anchor_id)
        self._consider_pagination()
        if self.on_change is not None:
            self.on_change(kind, decision)
        return decision
