"""Transport layer.

Two client transports carry the same session protocol:
- WebSocket (DuplexChannelClient) - full duplex, supports mid-flight control
- SSE (StreamingChannelClient) - one POST per generation, always available

Both satisfy the SessionTransport protocol so the session facade can hold
either one without knowing which.
"""

from .base import (
    Capabilities,
    ErrorCallback,
    EventCallback,
    SessionTransport,
    TransportKind,
    TransportState,
)
from .sse import StreamingChannelClient
from .websocket import DuplexChannelClient

__all__ = [
    # Base abstractions
    "Capabilities",
    "ErrorCallback",
    "EventCallback",
    "SessionTransport",
    "TransportKind",
    "TransportState",
    # Implementations
    "DuplexChannelClient",
    "StreamingChannelClient",
]
