"""
Render-time grouping.

Pure functions over an ordered message sequence. Nothing here is stored on
the messages; re-running any predicate on an unchanged sequence gives the same
answer.
"""

from datetime import datetime, date
from typing import Dict, Any, List, Optional, Sequence

from config import GAP_THRESHOLD_SECONDS
from messaging.models import Message, DeliveryState


def _to_local(value: datetime) -> datetime:
    return value.astimezone() if value.tzinfo is not None else value


def local_date(value: datetime) -> date:
    """Calendar day of a timestamp in the local timezone."""
    return _to_local(value).date()


def is_same_day(first: datetime, second: datetime) -> bool:
    return local_date(first) == local_date(second)


def show_day_marker(messages: Sequence[Message], index: int) -> bool:
    """A day banner goes above the first message and above every day change."""
    if index == 0:
        return True
    return not is_same_day(messages[index].created_at, messages[index - 1].created_at)


def is_run_tail(messages: Sequence[Message], index: int) -> bool:
    """Whether the message closes a visual run of bubbles from the same sender."""
    if index == len(messages) - 1:
        return True
    current, following = messages[index], messages[index + 1]
    if not is_same_day(current.created_at, following.created_at):
        return True
    return current.sender_id != following.sender_id


def show_timestamp(messages: Sequence[Message], index: int,
                   gap_seconds: int = GAP_THRESHOLD_SECONDS) -> bool:
    """
    Whether the time goes under this message.

    True for the tail of a run, or when the next message comes more than
    gap_seconds later.
    """
    if is_run_tail(messages, index):
        return True
    delta = messages[index + 1].created_at - messages[index].created_at
    return int(delta.total_seconds()) > gap_seconds


def status_label(message: Message, user_id: str) -> Optional[str]:
    """Delivery label shown under own messages."""
    if message.sender_id != user_id:
        return None
    if message.delivery_state is DeliveryState.LOCAL:
        return "Sending"
    if message.delivery_state is DeliveryState.READ:
        return "Read"
    return "Delivered"


def format_day_banner(value: datetime) -> str:
    """e.g. 'Tue, 03 March 2026'"""
    return _to_local(value).strftime("%a, %d %B %Y")


def format_message_time(value: datetime) -> str:
    return _to_local(value).strftime("%H:%M")


def format_last_message_time(value: datetime, now: Optional[datetime] = None) -> str:
    """Time of day if the message is from today, the date otherwise."""
    now = now or datetime.now(value.tzinfo)
    if is_same_day(value, now):
        return format_message_time(value)
    return _to_local(value).strftime("%Y-%m-%d")


def build_render_rows(messages: Sequence[Message], user_id: str,
                      first_unread_index: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Flatten the sequence into the rows the view draws.

    Args:
        messages: Ordered messages from the store
        user_id: The local user's id
        first_unread_index: Where the unread banner goes, if anywhere

    Returns:
        One dict per message with its banners and grouping flags
    """
    rows = []
    for index, message in enumerate(messages):
        timestamp_shown = show_timestamp(messages, index)
        rows.append({
            "id": message.id,
            "body": message.body,
            "is_own": message.sender_id == user_id,
            "day_banner": format_day_banner(message.created_at) if show_day_marker(messages, index) else None,
            "unread_banner": first_unread_index == index,
            "is_run_tail": is_run_tail(messages, index),
            "time": format_message_time(message.created_at) if timestamp_shown else None,
            "status": status_label(message, user_id) if timestamp_shown else None,
        })
    return rows
