"""
Read/Delivery Tracker
Derives unread state from the MessageStore and performs the local read transition.
"""

import logging
from typing import Callable, Optional

from messaging.models import DeliveryState
from messaging.store import MessageStore

logger = logging.getLogger(__name__)


class ReadTracker:
    """
    Tracks where the unread peer messages start.

    first_unread_index is never cached across mutations; call refresh() after
    every store change (the Conversation does this for every transition).
    """

    def __init__(self, store: MessageStore):
        self.store = store
        self.first_unread_index: Optional[int] = None

    def refresh(self) -> Optional[int]:
        """
        Recompute the earliest index of a peer-authored message that is not READ.

        Returns:
            The index, or None if everything from the peer has been read
        """
        self.first_unread_index = None
        for idx, message in enumerate(self.store):
            if not self.store.is_own(message) and message.delivery_state is not DeliveryState.READ:
                self.first_unread_index = idx
                break
        return self.first_unread_index

    @property
    def has_unread(self) -> bool:
        return self.first_unread_index is not None

    def unread_count(self) -> int:
        """Number of peer messages not yet read by the local user."""
        return sum(
            1 for message in self.store
            if not self.store.is_own(message) and message.delivery_state is not DeliveryState.READ
        )

    def mark_all_read(self, emit: Optional[Callable[[], bool]] = None) -> bool:
        """
        Optimistically mark every peer message as read and send the read receipt.

        Args:
            emit: Callable that sends the outbound read receipt

        Returns:
            True if there was anything unread
        """
        changed = self.store.mark_peer_read()
        self.refresh()
        if emit is not None:
            if not emit():
                logger.warning(f"[{self.store.conversation_id}] Read receipt could not be sent")
        return changed > 0
