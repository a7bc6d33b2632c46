"""
Activity Module
Connects a conversation to the chat server via a Socket.IO client.
"""

from activity.client import SocketIOClient
from activity.listener import ConversationEventHandler
from activity.session import ConversationSession
