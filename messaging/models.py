"""
Messaging Models
Message, peer and delivery state types for a single two-participant conversation.
"""

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, Optional, Union

from messaging.errors import InvalidPayloadError

logger = logging.getLogger(__name__)

TimestampType = Union[str, int, float, datetime, None]


class DeliveryState(Enum):
    """
    Lifecycle of a message. Only ever moves forward: LOCAL -> DELIVERED -> READ.
    """
    LOCAL = 0      # Optimistic, not yet acknowledged by the server
    DELIVERED = 1  # Acknowledged, recipient has not confirmed reading it
    READ = 2       # Recipient confirmed

    def advance_to(self, target: "DeliveryState") -> "DeliveryState":
        """Returns the later of the two states."""
        return target if target.value > self.value else self


def parse_timestamp(value: TimestampType) -> Optional[datetime]:
    """
    Parse a server timestamp into an aware datetime.

    Args:
        value: ISO-8601 string (a trailing 'Z' is accepted), epoch milliseconds,
            or an existing datetime

    Returns:
        The parsed datetime, or None if value is None
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise InvalidPayloadError(f"Unparseable timestamp: {value!r}")
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise InvalidPayloadError(f"Unsupported timestamp type: {type(value).__name__}")


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Inverse of parse_timestamp for the wire format."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class Message:
    """A single chat message as held by the MessageStore."""
    id: str
    body: str
    conversation_id: str
    sender_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    recipient_id: Optional[str] = None
    delivery_state: DeliveryState = DeliveryState.DELIVERED

    @property
    def is_local(self) -> bool:
        return self.delivery_state is DeliveryState.LOCAL

    @property
    def recipient_read(self) -> bool:
        return self.delivery_state is DeliveryState.READ

    def advance(self, target: DeliveryState) -> bool:
        """
        Move the delivery state forward. Never regresses.

        Returns:
            True if the state changed
        """
        new_state = self.delivery_state.advance_to(target)
        if new_state is self.delivery_state:
            return False
        self.delivery_state = new_state
        return True

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Message":
        """
        Build a Message from a server payload.

        Args:
            payload: Message dictionary as sent by the server (camelCase keys)

        Returns:
            The parsed Message

        Raises:
            InvalidPayloadError: If the payload is missing required fields
        """
        if not isinstance(payload, dict):
            raise InvalidPayloadError(f"Message payload must be a dict, got {type(payload).__name__}")

        missing = [key for key in ('id', 'senderId', 'createdAt') if payload.get(key) in (None, '')]
        if missing:
            raise InvalidPayloadError(f"Message payload missing fields: {', '.join(missing)}")

        recipients = payload.get('recipients') or []
        first_recipient = recipients[0] if recipients and isinstance(recipients[0], dict) else {}
        is_read = bool(first_recipient.get('isRead', False))
        recipient_id = payload.get('recipientId') or first_recipient.get('recipientId')

        created_at = parse_timestamp(payload['createdAt'])
        return cls(
            id=str(payload['id']),
            body=payload.get('body') or '',
            conversation_id=str(payload.get('chatId') or ''),
            sender_id=str(payload['senderId']),
            created_at=created_at,
            updated_at=parse_timestamp(payload.get('updatedAt')) or created_at,
            recipient_id=str(recipient_id) if recipient_id is not None else None,
            delivery_state=DeliveryState.READ if is_read else DeliveryState.DELIVERED,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Serialize back to the server's message shape."""
        return {
            'id': self.id,
            'body': self.body,
            'chatId': self.conversation_id,
            'senderId': self.sender_id,
            'recipientId': self.recipient_id,
            'createdAt': format_timestamp(self.created_at),
            'updatedAt': format_timestamp(self.updated_at),
            'isLocal': self.is_local,
            'recipients': [{
                'isRead': self.recipient_read,
                'recipientId': self.recipient_id,
            }],
        }


@dataclass
class Peer:
    """The other participant of the conversation."""
    id: str
    display_name: str = ''
    chat_id: Optional[str] = None
    is_archived: bool = False
    is_online: bool = False
    last_online: Optional[datetime] = None
    chat_created: Optional[datetime] = None
    profile: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Peer":
        """
        Build a Peer from the init event's recipientUser.

        Raises:
            InvalidPayloadError: If the payload has no id
        """
        if not isinstance(payload, dict) or not payload.get('id'):
            raise InvalidPayloadError(f"Recipient payload missing id: {payload!r}")
        return cls(
            id=str(payload['id']),
            display_name=payload.get('displayName') or payload.get('username') or '',
            chat_id=payload.get('chatId'),
            is_archived=bool(payload.get('isArchived', False)),
            is_online=bool(payload.get('isOnline', False)),
            last_online=parse_timestamp(payload.get('lastOnline')),
            chat_created=parse_timestamp(payload.get('chatCreated')),
            profile=dict(payload),
        )

    def set_online(self, is_online: bool, now: Optional[datetime] = None) -> None:
        """Apply a presence change. Going offline stamps last_online."""
        if self.is_online and not is_online:
            self.last_online = now or datetime.now(timezone.utc)
        self.is_online = is_online


class TemporaryIdMinter:
    """
    Mints time-based temporary message ids.

    Ids are epoch milliseconds as strings and strictly increase within one
    minter, even when two are minted in the same millisecond.
    """

    def __init__(self, clock=None):
        self._clock = clock or (lambda: time.time() * 1000)
        self._last = 0

    def mint(self) -> str:
        candidate = int(self._clock())
        if candidate <= self._last:
            candidate = self._last + 1
        self._last = candidate
        return str(candidate)
