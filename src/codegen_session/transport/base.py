"""Client-side transport abstraction for the session facade.

Enables the session to run over the duplex WebSocket channel or the
one-way SSE channel without changing calling code.

Architecture:
- SessionTransport is the PROTOCOL (interface) both channel clients satisfy
- Capabilities describes which operations a transport can carry
- The SessionClient holds a SessionTransport and never branches on which
  concrete client it is, except to pick the capability set
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Protocol, runtime_checkable

from ..protocol.events import SessionEvent
from ..protocol.messages import SessionMessage
from ..registry import RequestRegistry

EventCallback = Callable[[SessionEvent], None]
ErrorCallback = Callable[[BaseException], None]


class TransportKind(str, Enum):
    """Which transport a session is using."""

    WEBSOCKET = "websocket"
    SSE = "sse"
    DISCONNECTED = "disconnected"


class TransportState(str, Enum):
    """Connection state machine."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


@dataclass(frozen=True)
class Capabilities:
    """Operations legal on the active transport."""

    cancel: bool = False
    modify: bool = False
    pause: bool = False
    resume: bool = False
    multi_request: bool = False
    permissions: bool = False
    internal_actions: bool = False

    @classmethod
    def full(cls) -> Capabilities:
        """Everything - the duplex channel."""
        return cls(
            cancel=True,
            modify=True,
            pause=True,
            resume=True,
            multi_request=True,
            permissions=True,
            internal_actions=True,
        )

    @classmethod
    def streaming(cls) -> Capabilities:
        """Permissions and internal actions only - the one-way channel."""
        return cls(permissions=True, internal_actions=True)

    @classmethod
    def none(cls) -> Capabilities:
        return cls()

    def supports(self, capability: str) -> bool:
        return bool(getattr(self, capability))

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)


@runtime_checkable
class SessionTransport(Protocol):
    """Protocol for session transports.

    All transports must implement:
    - connect/disconnect: Lifecycle management
    - send: Transmit (or queue) a session message
    - on_event/on_error: Subscribe to normalized events and connection errors
    - kind/capabilities: What this transport is and what it can carry
    """

    @property
    def kind(self) -> TransportKind:
        """Which transport this is."""
        ...

    @property
    def capabilities(self) -> Capabilities:
        """Operations this transport supports."""
        ...

    @property
    def registry(self) -> RequestRegistry:
        """Request state shared with the session facade."""
        ...

    @property
    def is_connected(self) -> bool:
        """Check if the transport is ready to send."""
        ...

    async def connect(self) -> None:
        """Establish the transport.

        Raises:
            ConnectionError: If the transport cannot be established
        """
        ...

    async def disconnect(self) -> None:
        """Tear down the transport and cancel any pending retries."""
        ...

    async def send(self, message: SessionMessage) -> None:
        """Send a message.

        Raises:
            CapabilityError: If this transport cannot carry the message type
            DuplicateRequestError: If a generate reuses an active request id
        """
        ...

    def on_event(self, handler: EventCallback) -> Callable[[], None]:
        """Receive every inbound event after registry processing."""
        ...

    def on_error(self, handler: ErrorCallback) -> None:
        """Receive connection-level errors."""
        ...
