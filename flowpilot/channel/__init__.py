"""
Cross-context message channel.
"""

from .messages import AGENT_EVENT_TYPES, Message, MessageType, Response
from .router import DEFAULT_SEND_TIMEOUT, MessageChannel, MessageHandler

__all__ = [
    "AGENT_EVENT_TYPES",
    "DEFAULT_SEND_TIMEOUT",
    "Message",
    "MessageChannel",
    "MessageHandler",
    "MessageType",
    "Response",
]
