"""
Conversation
State for one joined conversation and the transitions that inbound events and
local actions apply to it. Independent of the transport: the session calls
these methods and performs any emits they call for.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Any, Callable, List, Optional, Tuple

from config import PAGE_SIZE, PAGINATION_COOLDOWN_MS, PAGINATION_REQUEST_TIMEOUT_MS
from messaging.errors import InvalidPayloadError
from messaging.grouping import build_render_rows
from messaging.models import Message, Peer, DeliveryState, TemporaryIdMinter
from messaging.pagination import PaginationController
from messaging.scroll import ScrollCoordinator, ScrollDecision, MutationKind
from messaging.store import MessageStore, REMOTE_INSERTED
from messaging.tracker import ReadTracker

logger = logging.getLogger(__name__)


class Conversation:
    """
    Owns the store, tracker, pagination cursor and scroll state of one
    conversation. A new instance is created on every join, so nothing leaks
    from one conversation into the next.
    """

    def __init__(self, conversation_id: str, user_id: str,
                 page_size: int = PAGE_SIZE,
                 cooldown_ms: int = PAGINATION_COOLDOWN_MS,
                 request_timeout_ms: int = PAGINATION_REQUEST_TIMEOUT_MS,
                 clock: Optional[Callable[[], float]] = None):
        """
        Args:
            conversation_id: Id of the conversation
            user_id: The local user's id
            page_size: Messages per server page
            cooldown_ms: Minimum time between two page requests
            request_timeout_ms: After this long an unanswered page request is abandoned
            clock: Returns the current time in epoch milliseconds
        """
        self.conversation_id = str(conversation_id)
        self.user_id = str(user_id)
        self._clock = clock or (lambda: time.time() * 1000)
        self.peer: Optional[Peer] = None
        self.initialized = False

        self.store = MessageStore(self.conversation_id, self.user_id)
        self.tracker = ReadTracker(self.store)
        self.pagination = PaginationController(page_size=page_size,
                                               cooldown_ms=cooldown_ms,
                                               request_timeout_ms=request_timeout_ms,
                                               clock=self._clock,
                                               conversation_id=self.conversation_id)
        self.scroll = ScrollCoordinator(self.tracker)
        self._minter = TemporaryIdMinter(self._clock)

    def owns(self, conversation_id: Any) -> bool:
        """Guard against events that belong to another (usually abandoned) conversation."""
        return conversation_id is not None and str(conversation_id) == self.conversation_id

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock() / 1000, tz=timezone.utc)

    # --- Inbound transitions ---

    def initialize(self, recipient_user: Dict[str, Any], message_payloads: List[Dict[str, Any]]) -> MutationKind:
        """
        Apply the init snapshot: peer profile plus the newest page of messages.

        Raises:
            InvalidPayloadError: If the peer or any message cannot be parsed
        """
        peer = Peer.from_payload(recipient_user)
        messages = [Message.from_payload(payload) for payload in message_payloads or []]

        self.peer = peer
        self.store.replace(messages)
        self.pagination.reset(len(messages))
        self.tracker.refresh()
        if not self.tracker.has_unread:
            self.scroll.pin_to_bottom()
        self.initialized = True
        logger.info(f"[{self.conversation_id}] Initialized with peer '{peer.id}' ({len(messages)} messages, first unread: {self.tracker.first_unread_index})")
        return MutationKind.INIT

    def apply_new_message(self, payload: Dict[str, Any], temp_id: Optional[str] = None) -> Tuple[MutationKind, bool]:
        """
        Apply a new-message event.

        Returns:
            The mutation kind and whether a read receipt should be sent now

        Raises:
            InvalidPayloadError: If the message cannot be parsed
        """
        message = Message.from_payload(payload)
        if message.conversation_id and not self.owns(message.conversation_id):
            logger.warning(f"[{self.conversation_id}] Dropping message '{message.id}' for conversation '{message.conversation_id}'")
            return MutationKind.NONE, False

        outcome = self.store.apply_remote(message, temp_id=temp_id)
        self.tracker.refresh()

        if outcome == REMOTE_INSERTED:
            return MutationKind.APPEND, self._is_addressed_to_me(message)
        return MutationKind.UPDATE, False

    def apply_delivered(self, temp_id: str, actual_id: str) -> MutationKind:
        if not temp_id or not actual_id:
            raise InvalidPayloadError(f"Delivered event needs tempId and actualId, got {temp_id!r}/{actual_id!r}")
        if self.store.reconcile_delivery(str(temp_id), str(actual_id)):
            self.tracker.refresh()
            return MutationKind.UPDATE
        return MutationKind.NONE

    def apply_read_all(self) -> MutationKind:
        changed = self.store.mark_own_read()
        return MutationKind.UPDATE if changed else MutationKind.NONE

    def apply_page(self, message_payloads: List[Dict[str, Any]], end_of_messages: bool,
                   last_message_id: Optional[str] = None) -> Tuple[MutationKind, Optional[str]]:
        """
        Merge an older page at the head of the store.

        Messages that fail to parse or belong to another conversation are
        dropped individually so a single bad entry cannot leave the cursor in
        flight.

        A page that arrives with no request in flight is a late answer to an
        abandoned request and is dropped.

        Returns:
            PREPEND and the id of the element to re-anchor on, or NONE if dropped
        """
        if not self.pagination.awaiting_page:
            logger.warning(f"[{self.conversation_id}] Dropping page that arrived with no request in flight")
            return MutationKind.NONE, None

        previous_top = self.store.oldest_id
        messages = []
        for payload in message_payloads or []:
            try:
                message = Message.from_payload(payload)
            except InvalidPayloadError as e:
                logger.warning(f"[{self.conversation_id}] Skipping invalid message in page: {e}")
                continue
            if message.conversation_id and not self.owns(message.conversation_id):
                logger.warning(f"[{self.conversation_id}] Skipping message '{message.id}' from conversation '{message.conversation_id}' in page")
                continue
            messages.append(message)

        self.store.prepend(messages)
        self.pagination.complete(end_of_messages)
        self.tracker.refresh()

        anchor_id = previous_top
        if last_message_id is not None:
            if str(last_message_id) in self.store:
                anchor_id = str(last_message_id)
            else:
                logger.warning(f"[{self.conversation_id}] Anchor '{last_message_id}' is not in the store, keeping '{previous_top}'")
        return MutationKind.PREPEND, anchor_id

    def apply_presence(self, is_online: bool) -> MutationKind:
        if self.peer is None:
            logger.warning(f"[{self.conversation_id}] Presence change before init, ignoring")
            return MutationKind.NONE
        self.peer.set_online(bool(is_online), now=self._now())
        logger.info(f"[{self.conversation_id}] Peer '{self.peer.id}' is now {'online' if self.peer.is_online else 'offline'}")
        return MutationKind.UPDATE

    # --- Local transitions ---

    def add_local_message(self, body: str) -> Message:
        """
        Optimistically append a message authored by the local user.

        Raises:
            ValueError: If the body is empty or the conversation has no peer yet
        """
        if not body or not body.strip():
            raise ValueError("Can't send empty message")
        if self.peer is None:
            raise ValueError("Conversation is not initialized")

        now = self._now()
        newest = self.store.newest
        if newest is not None and newest.created_at > now:
            # Device clock is behind the server; a send always lands at the bottom
            now = newest.created_at
        message = Message(
            id=self._minter.mint(),
            body=body,
            conversation_id=self.conversation_id,
            sender_id=self.user_id,
            created_at=now,
            updated_at=now,
            recipient_id=self.peer.id,
            delivery_state=DeliveryState.LOCAL,
        )
        self.store.append_local(message)
        self.tracker.refresh()
        return message

    # --- Derived ---

    def decide_scroll(self, mutation_kind: MutationKind, anchor_id: Optional[str] = None) -> ScrollDecision:
        return self.scroll.decide(mutation_kind, anchor_id)

    def render_rows(self) -> List[Dict[str, Any]]:
        return build_render_rows(self.store.messages, self.user_id, self.tracker.first_unread_index)

    def _is_addressed_to_me(self, message: Message) -> bool:
        if message.recipient_id is not None:
            return message.recipient_id == self.user_id
        return message.sender_id != self.user_id
