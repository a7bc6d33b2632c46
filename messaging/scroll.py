"""
Scroll/Anchor Coordinator
Turns store changes and raw viewport samples into a single scroll instruction
for the view.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

from messaging.tracker import ReadTracker

logger = logging.getLogger(__name__)


class MutationKind(Enum):
    """What last changed, as seen by the scroll decision."""
    INIT = "init"
    APPEND = "append"          # Local send or remote new message
    UPDATE = "update"          # Delivery/read state changes, presence
    PREPEND = "prepend"        # Older page merged at the head
    VIEWPORT = "viewport"      # The view reported a new scroll position
    NONE = "none"              # Event was ignored


class ScrollAction(Enum):
    NO_OP = "no_op"
    SCROLL_TO_UNREAD_MARKER = "scroll_to_unread_marker"
    SCROLL_TO_BOTTOM = "scroll_to_bottom"
    SCROLL_TO_ANCHOR = "scroll_to_anchor"


@dataclass
class ScrollState:
    """
    Viewport state reported by the view plus the derived unread position.

    has_overflow defaults to True: until the view measures itself the list is
    treated as scrollable.
    """
    at_bottom: bool = False
    at_top: bool = False
    has_overflow: bool = True
    first_unread_index: Optional[int] = None
    show_jump_to_bottom: bool = False


@dataclass
class ScrollDecision:
    action: ScrollAction = ScrollAction.NO_OP
    element_id: Optional[str] = None
    mark_read: bool = False


def decide_scroll_action(state: ScrollState,
                         mutation_kind: MutationKind,
                         anchor_id: Optional[str] = None) -> ScrollDecision:
    """
    Decide what the viewport should do.

    A prepend always re-anchors on the element that was topmost before the
    page was merged, so the visible content does not jump. Otherwise:

    | has_overflow | unread | at_bottom | result                     |
    |--------------|--------|-----------|----------------------------|
    | False        | any    | any       | mark read if unread, no-op |
    | True         | yes    | False     | scroll to unread marker    |
    | True         | yes    | True      | mark read, scroll to bottom|
    | True         | no     | True      | scroll to bottom           |
    | True         | no     | False     | no-op                      |

    Args:
        state: Current scroll state
        mutation_kind: What caused this decision
        anchor_id: Element to keep in place after a prepend

    Returns:
        The ScrollDecision for the view
    """
    if mutation_kind is MutationKind.PREPEND and anchor_id:
        return ScrollDecision(ScrollAction.SCROLL_TO_ANCHOR, element_id=anchor_id)

    has_unread = state.first_unread_index is not None

    if not state.has_overflow:
        return ScrollDecision(ScrollAction.NO_OP, mark_read=has_unread)
    if has_unread and not state.at_bottom:
        return ScrollDecision(ScrollAction.SCROLL_TO_UNREAD_MARKER)
    if state.at_bottom:
        return ScrollDecision(ScrollAction.SCROLL_TO_BOTTOM, mark_read=has_unread)
    return ScrollDecision(ScrollAction.NO_OP)


class ScrollCoordinator:
    """
    Holds the viewport state for one conversation and applies decide_scroll_action.

    The coordinator never mutates messages itself. When a decision asks for a
    read it calls mark_read, which the Conversation wires to the tracker plus
    the outbound read receipt.
    """

    def __init__(self, tracker: ReadTracker, mark_read: Optional[Callable[[], bool]] = None):
        self.tracker = tracker
        self.mark_read = mark_read
        self.state = ScrollState()
        self.last_decision = ScrollDecision()

    def update_viewport(self, client_height: float, scroll_top: float, scroll_height: float) -> ScrollState:
        """
        Ingest a raw scroll sample from the view.

        Args:
            client_height: Visible height of the list container
            scroll_top: Distance scrolled from the top
            scroll_height: Total height of the list content
        """
        visible_end = client_height + scroll_top
        # Sub-pixel positions are common; one pixel of slack counts as the bottom
        self.state.at_bottom = abs(scroll_height - visible_end) <= 1
        self.state.at_top = scroll_top <= 0
        self.state.has_overflow = scroll_height > client_height
        self.state.show_jump_to_bottom = scroll_height - visible_end > client_height / 2
        return self.state

    def pin_to_bottom(self) -> None:
        self.state.at_bottom = True

    def decide(self, mutation_kind: MutationKind, anchor_id: Optional[str] = None) -> ScrollDecision:
        """
        Compute the decision for the latest change and perform any read it implies.
        """
        self.state.first_unread_index = self.tracker.first_unread_index
        decision = decide_scroll_action(self.state, mutation_kind, anchor_id)
        if decision.action is ScrollAction.SCROLL_TO_BOTTOM:
            newest = self.tracker.store.newest
            decision.element_id = newest.id if newest else None
        if decision.mark_read and self.mark_read is not None:
            self.mark_read()
            self.state.first_unread_index = self.tracker.first_unread_index
        self.last_decision = decision
        logger.debug(f"[{self.tracker.store.conversation_id}] Scroll decision for {mutation_kind.value}: {decision.action.value}")
        return decision
