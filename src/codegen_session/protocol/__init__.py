"""Session protocol layer.

Defines the message/event protocol that works identically across the
duplex (WebSocket) and streaming (SSE) transports.

Key concepts:
- Messages: Client → Backend requests keyed by a caller-assigned requestId
- Events: Backend → Client updates echoing that requestId
- AIResponse: the single event shape subscribers see, whatever the transport
"""

from .events import TERMINAL_EVENT_TYPES, AIResponse, EventType, FileInfo, SessionEvent
from .messages import DEFAULT_MODEL, MessageType, SessionMessage

__all__ = [
    "AIResponse",
    "DEFAULT_MODEL",
    "EventType",
    "FileInfo",
    "MessageType",
    "SessionEvent",
    "SessionMessage",
    "TERMINAL_EVENT_TYPES",
]
