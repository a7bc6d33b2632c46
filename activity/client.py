"""
Socket.IO Client
Manages the connection to the chat server and topic subscriptions on it.
"""

import logging
import socketio
from typing import Dict, Any, List, Optional, Callable

from config import (
    CHAT_SERVER_URL,
    CHAT_AUTH_TOKEN,
    SOCKET_RECONNECTION_ATTEMPTS,
    SOCKET_RECONNECTION_DELAY,
    SOCKET_TIMEOUT
)

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

EventHandler = Callable[[Dict[str, Any]], Any]
ConnectivityListener = Callable[[bool], None]


class SocketIOClient:
    """
    Thin adapter over a single Socket.IO client connection.

    This class is responsible for:
    - Establishing and closing the connection to the chat server
    - Subscribing and unsubscribing handlers by topic name
    - Emitting events
    - Reporting connectivity changes to interested listeners
    """

    def __init__(self, url: Optional[str] = None, auth_token: Optional[str] = None,
                 client: Optional[socketio.Client] = None):
        """
        Initialize the Socket.IO client adapter.

        Args:
            url: Chat server URL (defaults to CHAT_SERVER_URL)
            auth_token: Optional token sent in the connection auth payload
            client: Pre-built socketio.Client, mainly for tests
        """
        self.url = url or CHAT_SERVER_URL
        self.auth_token = auth_token if auth_token is not None else CHAT_AUTH_TOKEN
        self.client = client or socketio.Client(
            reconnection=True,
            reconnection_attempts=SOCKET_RECONNECTION_ATTEMPTS,
            reconnection_delay=SOCKET_RECONNECTION_DELAY / 1000,
            request_timeout=SOCKET_TIMEOUT / 1000
        )
        self._connected = False
        self._subscriptions: Dict[str, EventHandler] = {}
        self._connectivity_listeners: List[ConnectivityListener] = []

        self._register_event_handlers()

        logger.info(f"SocketIOClient initialized for {self.url}")

    @property
    def connected(self) -> bool:
        return self._connected

    def _register_event_handlers(self) -> None:
        """
        Register the connection lifecycle handlers on the Socket.IO client.
        """
        @self.client.event
        def connect():
            logger.info(f"Connected to chat server at {self.url}")
            self._set_connected(True)

        @self.client.event
        def disconnect(*args):
            logger.info(f"Disconnected from chat server at {self.url}")
            self._set_connected(False)

        @self.client.event
        def connect_error(data):
            logger.error(f"Connection error with chat server at {self.url}: {data}")
            self._set_connected(False)

    def _set_connected(self, connected: bool) -> None:
        changed = connected != self._connected
        self._connected = connected
        if not changed:
            return
        for listener in list(self._connectivity_listeners):
            try:
                listener(connected)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}", exc_info=True)

    def add_connectivity_listener(self, listener: ConnectivityListener) -> None:
        if listener not in self._connectivity_listeners:
            self._connectivity_listeners.append(listener)

    def remove_connectivity_listener(self, listener: ConnectivityListener) -> None:
        if listener in self._connectivity_listeners:
            self._connectivity_listeners.remove(listener)

    def connect(self) -> bool:
        """
        Establish the connection to the chat server.

        Returns:
            True if the connection was established, False otherwise
        """
        try:
            auth = {}
            if self.auth_token:
                auth["token"] = self.auth_token

            self.client.connect(
                self.url,
                auth=auth,
                namespaces=["/"],
                wait_timeout=10
            )
            self._set_connected(True)
            return True
        except Exception as e:
            logger.error(f"Failed to connect to chat server at {self.url}: {str(e)}")
            self._set_connected(False)
            return False

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """
        Route events named topic to handler, replacing any previous handler.

        Args:
            topic: Full event name, e.g. "conversation-42-init"
            handler: Called with the event payload
        """
        first_time = topic not in self._subscriptions
        self._subscriptions[topic] = handler
        if first_time:
            self.client.on(topic, self._make_dispatcher(topic))
        logger.debug(f"Subscribed to {topic}")

    def unsubscribe(self, topic: str) -> None:
        """
        Stop routing events named topic. Safe to call for unknown topics.
        """
        if self._subscriptions.pop(topic, None) is None:
            return
        namespace_handlers = getattr(self.client, 'handlers', {}).get('/', {})
        namespace_handlers.pop(topic, None)
        logger.debug(f"Unsubscribed from {topic}")

    def unsubscribe_all(self, prefix: str = "") -> int:
        """
        Unsubscribe every topic starting with prefix.

        Returns:
            Number of topics removed
        """
        topics = [topic for topic in self._subscriptions if topic.startswith(prefix)]
        for topic in topics:
            self.unsubscribe(topic)
        return len(topics)

    def is_subscribed(self, topic: str) -> bool:
        return topic in self._subscriptions

    @property
    def topics(self) -> List[str]:
        return list(self._subscriptions)

    def _make_dispatcher(self, topic: str) -> Callable[..., None]:
        def dispatch(data=None):
            self.dispatch(topic, data)
        return dispatch

    def dispatch(self, topic: str, data: Any = None) -> bool:
        """
        Deliver an event to its current subscriber.

        Events for topics that were unsubscribed are dropped.

        Returns:
            True if a handler ran without raising
        """
        handler = self._subscriptions.get(topic)
        if handler is None:
            logger.debug(f"Dropping event on unsubscribed topic {topic}")
            return False
        try:
            handler(data if data is not None else {})
            return True
        except Exception as e:
            logger.error(f"Error handling event {topic}: {e}", exc_info=True)
            return False

    def emit(self, event: str, data: Dict[str, Any]) -> bool:
        """
        Emit an event to the chat server.

        Args:
            event: Event name, e.g. "send-message"
            data: Event payload

        Returns:
            True if the event was handed to the connection, False otherwise
        """
        if not self._connected:
            logger.error(f"Cannot emit {event} - not connected")
            return False

        try:
            self.client.emit(event, data)
            logger.debug(f"Emitted {event}: {data}")
            return True
        except Exception as e:
            logger.error(f"Failed to emit {event}: {str(e)}")
            return False

    def close(self) -> None:
        """
        Close the connection and forget every subscription.
        """
        self.unsubscribe_all()
        try:
            self.client.disconnect()
            logger.info(f"Disconnected from chat server at {self.url}")
        except Exception as e:
            logger.error(f"Error disconnecting from chat server at {self.url}: {str(e)}")
        self._set_connected(False)
