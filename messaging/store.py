"""
Message Store
Canonical ordered message sequence for one conversation, and the reconciler
that applies inbound events and local optimistic writes to it.
"""

import logging
from typing import Dict, List, Optional, Iterable, Iterator

from messaging.models import Message, DeliveryState

logger = logging.getLogger(__name__)

# Outcomes of apply_remote
REMOTE_INSERTED = "inserted"
REMOTE_UPDATED = "updated"
REMOTE_RECONCILED = "reconciled"


class MessageStore:
    """
    Holds the messages of a single conversation ordered by created_at, with
    equal timestamps kept in arrival order. Message ids are unique: any step
    that would introduce a duplicate id updates the existing entry instead.

    The store never talks to the transport. Every mutating method is a state
    transition that the Conversation calls in response to an event or a local
    action.
    """

    def __init__(self, conversation_id: str, user_id: str):
        """
        Initialize an empty store.

        Args:
            conversation_id: Conversation this store belongs to
            user_id: The local user's id, used to tell own messages from the peer's
        """
        self.conversation_id = conversation_id
        self.user_id = user_id
        self._messages: List[Message] = []
        self._message_map: Dict[str, int] = {}

    # --- Accessors ---

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(list(self._messages))

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._message_map

    @property
    def messages(self) -> List[Message]:
        """A shallow copy of the ordered sequence."""
        return list(self._messages)

    @property
    def oldest_id(self) -> Optional[str]:
        return self._messages[0].id if self._messages else None

    @property
    def newest(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None

    def get(self, message_id: str) -> Optional[Message]:
        idx = self._message_map.get(message_id)
        if idx is None:
            return None
        return self._messages[idx]

    def index_of(self, message_id: str) -> Optional[int]:
        return self._message_map.get(message_id)

    def is_own(self, message: Message) -> bool:
        return message.sender_id == self.user_id

    # --- Transitions ---

    def replace(self, batch: Iterable[Message]) -> int:
        """
        Replace the whole sequence with a newest-first batch (the init snapshot).

        Returns:
            Number of messages now in the store
        """
        self._messages = self._normalize(batch, skip_known=False)
        self._rebuild_message_map()
        logger.info(f"[{self.conversation_id}] Store initialized with {len(self._messages)} messages")
        return len(self._messages)

    def append_local(self, message: Message) -> None:
        """Insert an optimistic, locally-authored message."""
        if message.id in self._message_map:
            logger.warning(f"[{self.conversation_id}] Local message id '{message.id}' already in store, not appending")
            return
        self._insert_chronological(message)
        logger.debug(f"[{self.conversation_id}] Local message '{message.id}' appended. Total messages: {len(self._messages)}")

    def apply_remote(self, message: Message, temp_id: Optional[str] = None) -> str:
        """
        Apply a new-message event.

        A message whose id is already present updates that entry in place. An
        echo of one of our own sends is matched to its optimistic entry, first
        by temp_id if the server sent one, then by the oldest LOCAL entry with
        the same body, and reconciled the same way a delivered event would be.
        Anything else is inserted at its chronological position.

        Args:
            message: The parsed inbound message
            temp_id: Temporary id the server echoed back, if any

        Returns:
            One of REMOTE_INSERTED, REMOTE_UPDATED, REMOTE_RECONCILED
        """
        existing = self.get(message.id)
        if existing is not None:
            self._merge_into(existing, message)
            logger.debug(f"[{self.conversation_id}] Message '{message.id}' already known, updated in place")
            return REMOTE_UPDATED

        if self.is_own(message):
            pending = self._find_pending_echo(message, temp_id)
            if pending is not None:
                self.reconcile_delivery(pending.id, message.id, confirmed=message)
                return REMOTE_RECONCILED

        self._insert_chronological(message)
        logger.info(f"[{self.conversation_id}] New message '{message.id}' added. Total messages: {len(self._messages)}")
        return REMOTE_INSERTED

    def reconcile_delivery(self, temp_id: str, permanent_id: str,
                           confirmed: Optional[Message] = None) -> bool:
        """
        Swap a temporary id for the server-assigned one and mark it delivered.

        Args:
            temp_id: The id minted when the message was sent
            permanent_id: The id the server assigned
            confirmed: The server's copy of the message, if it came with the event

        Returns:
            True if a LOCAL message was reconciled, False if there was nothing to do
        """
        idx = self._message_map.get(temp_id)
        if idx is None:
            logger.warning(f"[{self.conversation_id}] No message with temporary id '{temp_id}' to reconcile as '{permanent_id}'")
            return False

        pending = self._messages[idx]
        if not pending.is_local:
            logger.warning(f"[{self.conversation_id}] Message '{temp_id}' is not pending (state: {pending.delivery_state.name}), ignoring reconciliation")
            return False

        existing_idx = self._message_map.get(permanent_id)
        if existing_idx is not None and existing_idx != idx:
            # The server copy got here first; keep it and drop the optimistic entry
            target = self._messages[existing_idx]
            target.advance(DeliveryState.DELIVERED)
            if confirmed is not None:
                self._merge_into(target, confirmed)
            del self._messages[idx]
            self._rebuild_message_map()
            logger.info(f"[{self.conversation_id}] Pending message '{temp_id}' merged into existing '{permanent_id}'")
            return True

        pending.id = permanent_id
        pending.advance(DeliveryState.DELIVERED)
        if confirmed is not None:
            self._merge_into(pending, confirmed)
        del self._message_map[temp_id]
        self._message_map[permanent_id] = idx
        logger.info(f"[{self.conversation_id}] Pending message '{temp_id}' confirmed as delivered. Permanent id: {permanent_id}")
        return True

    def mark_own_read(self) -> int:
        """
        Peer read everything: every own DELIVERED message becomes READ.

        Returns:
            Number of messages that changed state
        """
        changed = 0
        for message in self._messages:
            if self.is_own(message) and message.delivery_state is DeliveryState.DELIVERED:
                message.delivery_state = DeliveryState.READ
                changed += 1
        logger.debug(f"[{self.conversation_id}] Marked {changed} own messages as read by peer")
        return changed

    def mark_peer_read(self) -> int:
        """
        Local user read everything: every unread peer message becomes READ.

        Returns:
            Number of messages that changed state
        """
        changed = 0
        for message in self._messages:
            if not self.is_own(message) and message.advance(DeliveryState.READ):
                changed += 1
        logger.debug(f"[{self.conversation_id}] Marked {changed} peer messages as read")
        return changed

    def prepend(self, batch: Iterable[Message]) -> List[Message]:
        """
        Prepend an older page (newest-first) without touching existing entries.

        Returns:
            The messages actually added, oldest first
        """
        older = self._normalize(batch, skip_known=True)
        if not older:
            return []
        if self._messages and older[-1].created_at > self._messages[0].created_at:
            logger.warning(f"[{self.conversation_id}] Prepended page ends after the current oldest message '{self._messages[0].id}'")
        self._messages = older + self._messages
        self._rebuild_message_map()
        logger.info(f"[{self.conversation_id}] Prepended {len(older)} older messages. Total messages: {len(self._messages)}")
        return older

    # --- Internals ---

    def _normalize(self, batch: Iterable[Message], skip_known: bool) -> List[Message]:
        """Turn a newest-first batch into chronological order, keeping the first copy of each id."""
        seen = set()
        newest_first: List[Message] = []
        for message in batch:
            if message.id in seen or (skip_known and message.id in self._message_map):
                logger.debug(f"[{self.conversation_id}] Skipping duplicate message id '{message.id}' in batch")
                continue
            seen.add(message.id)
            newest_first.append(message)
        result = list(reversed(newest_first))
        # Stable, so equal timestamps stay in arrival order
        result.sort(key=lambda message: message.created_at)
        return result

    def _insert_chronological(self, message: Message) -> None:
        # Scan from the end: nearly everything lands there
        position = len(self._messages)
        while position > 0 and self._messages[position - 1].created_at > message.created_at:
            position -= 1
        self._messages.insert(position, message)
        if position == len(self._messages) - 1:
            self._message_map[message.id] = position
        else:
            self._rebuild_message_map()

    def _find_pending_echo(self, message: Message, temp_id: Optional[str]) -> Optional[Message]:
        if temp_id:
            candidate = self.get(temp_id)
            if candidate is not None and candidate.is_local:
                return candidate
        for candidate in self._messages:
            if candidate.is_local and self.is_own(candidate) and candidate.body == message.body:
                return candidate
        return None

    @staticmethod
    def _merge_into(target: Message, source: Message) -> None:
        target.advance(source.delivery_state)
        if source.updated_at and (target.updated_at is None or source.updated_at > target.updated_at):
            target.updated_at = source.updated_at

    def _rebuild_message_map(self) -> None:
        self._message_map = {message.id: idx for idx, message in enumerate(self._messages)}
