"""
Conversation Event Listener

Receives conversation-scoped events from the SocketIOClient and routes them to
the session's state transitions.
"""

import logging
from typing import Dict, Any, Callable, TYPE_CHECKING

from messaging.errors import InvalidPayloadError

if TYPE_CHECKING:
    from activity.session import ConversationSession

logger = logging.getLogger(__name__)


class ConversationEventHandler:
    """
    Handles incoming conversation events and applies them to the active conversation.

    This class is responsible for:
    1. Validating the shape of each payload
    2. Dropping events that arrive after teardown or belong to another conversation
    3. Calling the matching session transition

    Every handler returns True if the event was applied and False otherwise.
    Handlers never raise: a bad payload is logged and dropped.
    """

    def __init__(self, session: "ConversationSession"):
        """
        Initialize the event handler.

        Args:
            session: The session whose conversation the events are applied to
        """
        self.session = session
        self._handlers: Dict[str, Callable[[Dict[str, Any]], None]] = {
            "init": self._handle_init,
            "new-message": self._handle_new_message,
            "delivered": self._handle_delivered,
            "read-all": self._handle_read_all,
            "messages-loader": self._handle_messages_loader,
            "recipient-status-change": self._handle_recipient_status_change,
            "error": self._handle_error,
        }

    def handler_for(self, kind: str, conversation_id: str) -> Callable[[Any], bool]:
        """
        Build the callable subscribed to the topic of the given kind.

        Args:
            kind: Topic kind, e.g. "delivered"
            conversation_id: Conversation whose topic the handler is subscribed to

        Raises:
            KeyError: If kind is not a known topic kind
        """
        apply = self._handlers[kind]
        conversation_id = str(conversation_id)

        def handle(data: Any) -> bool:
            return self.handle_event(kind, data, apply, conversation_id)
        return handle

    def handle_event(self, kind: str, data: Any,
                     apply: Callable[[Dict[str, Any]], None],
                     conversation_id: str) -> bool:
        """
        Validate an event and apply it.

        Args:
            kind: Topic kind, e.g. "delivered"
            data: Raw event payload
            apply: The transition for this kind
            conversation_id: Conversation the handler was subscribed for

        Returns:
            True if the event was applied, False otherwise
        """
        # Same lock as the session's local actions; events run on the client's thread
        with self.session.lock:
            return self._handle_locked(kind, data, apply, conversation_id)

    def _handle_locked(self, kind: str, data: Any,
                       apply: Callable[[Dict[str, Any]], None],
                       conversation_id: str) -> bool:
        conversation = self.session.conversation
        if conversation is None:
            logger.debug(f"Ignoring {kind} event, no active conversation")
            return False
        if not conversation.owns(conversation_id):
            logger.warning(f"[{conversation.conversation_id}] Ignoring {kind} event subscribed for conversation '{conversation_id}'")
            return False

        if data is None:
            data = {}
        if not isinstance(data, dict):
            logger.error(f"[{conversation.conversation_id}] Invalid {kind} payload: {data!r}")
            return False

        chat_id = data.get("chatId")
        if chat_id is not None and not conversation.owns(chat_id):
            logger.warning(f"[{conversation.conversation_id}] Ignoring {kind} event for conversation '{chat_id}'")
            return False

        try:
            apply(data)
            return True
        except InvalidPayloadError as e:
            logger.error(f"[{conversation.conversation_id}] Dropping {kind} event: {e}")
            return False
        except Exception as e:
            logger.error(f"[{conversation.conversation_id}] Error handling {kind} event: {e}", exc_info=True)
            return False

    def _handle_init(self, data: Dict[str, Any]) -> None:
        recipient_user = data.get("recipientUser")
        messages = data.get("messages")
        if recipient_user is None or not isinstance(messages, list):
            raise InvalidPayloadError("init event needs 'recipientUser' and a 'messages' list")
        self.session.handle_init(recipient_user, messages)

    def _handle_new_message(self, data: Dict[str, Any]) -> None:
        message = data.get("message")
        if not isinstance(message, dict):
            raise InvalidPayloadError("new-message event needs a 'message' object")
        temp_id = data.get("tempId") or message.get("tempId")
        self.session.handle_new_message(message, temp_id=temp_id)

    def _handle_delivered(self, data: Dict[str, Any]) -> None:
        self.session.handle_delivered(data.get("tempId"), data.get("actualId"))

    def _handle_read_all(self, data: Dict[str, Any]) -> None:
        self.session.handle_read_all()

    def _handle_messages_loader(self, data: Dict[str, Any]) -> None:
        messages = data.get("messages")
        if not isinstance(messages, list):
            raise InvalidPayloadError("messages-loader event needs a 'messages' list")
        self.session.handle_messages_loader(
            messages,
            bool(data.get("endOfMessages", False)),
            data.get("lastMessageId"),
        )

    def _handle_recipient_status_change(self, data: Dict[str, Any]) -> None:
        if "isOnline" not in data:
            raise InvalidPayloadError("recipient-status-change event needs 'isOnline'")
        self.session.handle_presence(bool(data["isOnline"]))

    def _handle_error(self, data: Dict[str, Any]) -> None:
        # Older servers misspell the key as errorMessasge
        message = data.get("errorMessage") or data.get("errorMessasge") or data.get("message") or "Unknown error"
        self.session.handle_error(data.get("status"), message)
