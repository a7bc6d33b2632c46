"""
Error types shared by the transport, session and messaging layers.
"""

from typing import Optional


class ChatSyncError(Exception):
    """Base class for all conversation sync errors."""


class ConnectionLostError(ChatSyncError):
    """Raised when a local action needs the transport but it is not connected."""

    def __init__(self, message: str = "Connection lost..."):
        super().__init__(message)


class InvalidPayloadError(ChatSyncError):
    """Raised when an inbound event payload is missing required fields."""


class ConversationError(ChatSyncError):
    """
    A server-reported error for a conversation. Terminal for the session.

    Args:
        status: Status code reported by the server
        message: Human readable error message
    """

    def __init__(self, status: Optional[int], message: str):
        super().__init__(f"{status} - {message}")
        self.status = status
        self.message = message
