"""
Pagination Controller
Backward (older history) pagination keyed by the oldest known message id.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from config import PAGE_SIZE, PAGINATION_COOLDOWN_MS, PAGINATION_REQUEST_TIMEOUT_MS

logger = logging.getLogger(__name__)


@dataclass
class PaginationCursor:
    """Cursor state. Owned exclusively by the PaginationController."""
    last_known_oldest_id: Optional[str] = None
    end_of_history: bool = False
    last_request_at: Optional[float] = None  # epoch ms of the last completed page
    in_flight: bool = False
    requested_at: Optional[float] = None  # epoch ms of the pending request


class PaginationController:
    """
    Decides when an older page may be requested and records the responses.

    A request is refused while one is in flight, once the start of the
    conversation has been reached, or until cooldown_ms has passed since the
    previous page arrived. A request that got no answer within
    request_timeout_ms stops blocking new ones.
    """

    def __init__(self, page_size: int = PAGE_SIZE,
                 cooldown_ms: int = PAGINATION_COOLDOWN_MS,
                 request_timeout_ms: int = PAGINATION_REQUEST_TIMEOUT_MS,
                 clock: Optional[Callable[[], float]] = None,
                 conversation_id: str = ''):
        self.page_size = page_size
        self.cooldown_ms = cooldown_ms
        self.request_timeout_ms = request_timeout_ms
        self.conversation_id = conversation_id
        self._clock = clock or (lambda: time.time() * 1000)
        self.cursor = PaginationCursor()

    @property
    def end_of_history(self) -> bool:
        return self.cursor.end_of_history

    @property
    def in_flight(self) -> bool:
        return self.cursor.in_flight and not self._request_expired()

    @property
    def awaiting_page(self) -> bool:
        """A request was sent and no page has answered it, even if it has since expired."""
        return self.cursor.in_flight

    def reset(self, batch_size: int) -> None:
        """Start over after an init snapshot of batch_size messages."""
        self.cursor = PaginationCursor(end_of_history=batch_size < self.page_size)
        logger.debug(f"[{self.conversation_id}] Pagination reset (batch: {batch_size}, end of history: {self.cursor.end_of_history})")

    def cooldown_remaining(self) -> float:
        """Milliseconds until the cooldown allows another request (0 if it already does)."""
        if self.cursor.last_request_at is None:
            return 0.0
        elapsed = self._clock() - self.cursor.last_request_at
        return max(0.0, self.cooldown_ms - elapsed)

    def can_request(self) -> bool:
        if self.cursor.end_of_history:
            return False
        if self.in_flight:
            return False
        return self.cooldown_remaining() <= 0

    def request_older(self, oldest_id: Optional[str]) -> bool:
        """
        Mark a backward page request as in flight if the guard allows it.

        Args:
            oldest_id: Id of the oldest message currently in the store

        Returns:
            True if the caller should emit the request now
        """
        if not oldest_id:
            logger.debug(f"[{self.conversation_id}] No messages loaded, nothing to paginate from")
            return False
        if not self.can_request():
            return False
        if self.cursor.in_flight:
            logger.warning(f"[{self.conversation_id}] Previous page request for '{self.cursor.last_known_oldest_id}' timed out, requesting again")
        self.cursor.in_flight = True
        self.cursor.requested_at = self._clock()
        self.cursor.last_known_oldest_id = oldest_id
        logger.info(f"[{self.conversation_id}] Requesting messages older than '{oldest_id}'")
        return True

    def consider(self, at_top: bool, oldest_id: Optional[str]) -> bool:
        """
        Trigger policy: request a page whenever the view sits at the top.

        Safe to call on every viewport sample and after every store mutation;
        it is a no-op until the guard clears.
        """
        if not at_top:
            return False
        return self.request_older(oldest_id)

    def complete(self, end_of_messages: bool) -> bool:
        """
        Record the arrival of a page.

        Returns:
            False if no request was in flight; the cursor is left untouched
        """
        if not self.cursor.in_flight:
            logger.warning(f"[{self.conversation_id}] Received a page with no request in flight")
            return False
        self.cursor.in_flight = False
        self.cursor.requested_at = None
        self.cursor.last_request_at = self._clock()
        self.cursor.end_of_history = bool(end_of_messages)
        return True

    def _request_expired(self) -> bool:
        if not self.cursor.in_flight or self.cursor.requested_at is None:
            return False
        return self._clock() - self.cursor.requested_at >= self.request_timeout_ms
