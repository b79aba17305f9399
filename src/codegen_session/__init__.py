"""Codegen Session - realtime session client for AI code generation.

Drives long-running, interruptible generation requests over:
- WebSocket: full duplex, supports cancel/pause/resume/modify mid-flight
- SSE: one streaming POST per request, used when WebSocket is unavailable

Application code talks to SessionClient, which picks the transport and
reports which operations are legal through get_capabilities().
"""

from .config import SessionConfig
from .dispatcher import EventDispatcher
from .errors import (
    CapabilityError,
    DuplicateRequestError,
    ReconnectExhaustedError,
    SessionError,
    SessionUnavailableError,
    StreamError,
    TokenFetchError,
)
from .protocol import AIResponse, EventType, FileInfo, MessageType, SessionEvent, SessionMessage
from .registry import ActiveRequest, RequestRegistry, RequestStatus
from .session import SessionClient, create_session
from .transport import (
    Capabilities,
    DuplexChannelClient,
    SessionTransport,
    StreamingChannelClient,
    TransportKind,
    TransportState,
)

__version__ = "0.1.0"

__all__ = [
    # Session facade (recommended)
    "SessionClient",
    "create_session",
    "SessionConfig",
    # Transports
    "SessionTransport",
    "DuplexChannelClient",
    "StreamingChannelClient",
    "Capabilities",
    "TransportKind",
    "TransportState",
    # Protocol
    "SessionMessage",
    "MessageType",
    "SessionEvent",
    "EventType",
    "AIResponse",
    "FileInfo",
    # Request state
    "RequestRegistry",
    "ActiveRequest",
    "RequestStatus",
    "EventDispatcher",
    # Errors
    "SessionError",
    "CapabilityError",
    "SessionUnavailableError",
    "DuplicateRequestError",
    "TokenFetchError",
    "ReconnectExhaustedError",
    "StreamError",
]
