"""
Configuration settings for the conversation sync engine
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Chat Server Connection Settings
CHAT_SERVER_URL = os.getenv('CHAT_SERVER_URL', 'http://localhost:5000')
CHAT_AUTH_TOKEN = os.getenv('CHAT_AUTH_TOKEN', '')

# Socket.IO Client Settings
SOCKET_RECONNECTION_ATTEMPTS = int(os.getenv('SOCKET_RECONNECTION_ATTEMPTS', 5))
SOCKET_RECONNECTION_DELAY = int(os.getenv('SOCKET_RECONNECTION_DELAY', 1000))
SOCKET_TIMEOUT = int(os.getenv('SOCKET_TIMEOUT', 5000))

# Conversation topics are named "{TOPIC_PREFIX}-{conversation_id}-{kind}"
TOPIC_PREFIX = os.getenv('TOPIC_PREFIX', 'conversation')

# History Settings
# The server sends at most PAGE_SIZE messages per init/load-more batch
PAGE_SIZE = int(os.getenv('PAGE_SIZE', 50))
PAGINATION_COOLDOWN_MS = int(os.getenv('PAGINATION_COOLDOWN_MS', 1000))
PAGINATION_REQUEST_TIMEOUT_MS = int(os.getenv('PAGINATION_REQUEST_TIMEOUT_MS', 10000))

# Rendering Settings
GAP_THRESHOLD_SECONDS = int(os.getenv('GAP_THRESHOLD_SECONDS', 90))

# Logging Settings
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
