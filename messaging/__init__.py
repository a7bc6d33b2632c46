"""
Messaging Module
Message state, reconciliation and view synchronization for one conversation.
"""

from messaging.models import Message, Peer, DeliveryState
from messaging.store import MessageStore
from messaging.conversation import Conversation
from messaging.scroll import MutationKind, ScrollAction, ScrollDecision
