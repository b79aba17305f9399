"""Session facade - the single entry point for application code.

Negotiates a transport (WebSocket first, SSE as fallback), exposes one
transport-agnostic API, and reports which operations are currently legal.

Usage:
    async with create_session(SessionConfig(base_url="https://app.example")) as session:
        session.on("*", lambda response: print(response.type, response.message))
        await session.generate_code("r1", "Add a login form")
        if session.get_capabilities().cancel:
            await session.cancel_request("r1")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .config import SessionConfig
from .dispatcher import EventDispatcher, EventHandler
from .errors import CapabilityError, ReconnectExhaustedError, SessionUnavailableError
from .protocol.events import AIResponse, EventType, SessionEvent
from .protocol.messages import SessionMessage
from .registry import ActiveRequest, RequestRegistry
from .transport.base import Capabilities, ErrorCallback, SessionTransport, TransportKind
from .transport.sse import StreamingChannelClient
from .transport.websocket import DuplexChannelClient

logger = logging.getLogger(__name__)

ConnectionHandler = Callable[[TransportKind], None]


class SessionClient:
    """Transport-agnostic session client.

    The two transports are injected so the embedding application owns their
    lifecycle (and tests can substitute them). ``create_session`` wires up
    the real ones around a shared request registry.
    """

    def __init__(
        self,
        duplex: SessionTransport,
        streaming: SessionTransport,
        config: SessionConfig | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self._duplex = duplex
        self._streaming = streaming
        self._active: SessionTransport | None = None
        self._capabilities = Capabilities.none()
        self._candidate: SessionTransport | None = None
        self._connect_lock = asyncio.Lock()

        self._dispatcher: EventDispatcher[AIResponse] = EventDispatcher()
        self._connection_handlers: list[ConnectionHandler] = []
        self._error_handlers: list[ErrorCallback] = []

        for transport in (duplex, streaming):
            transport.on_event(self._forwarder(transport))
            transport.on_error(self._error_relay(transport))

    # =========================================================================
    # Connection management
    # =========================================================================

    async def connect(self) -> TransportKind:
        """Negotiate a transport.

        Tries the WebSocket channel within ``handshake_timeout``, then falls
        back to SSE. If both fail the session stays disconnected and error
        handlers are notified. Concurrent callers wait for the negotiation
        already in progress.

        Returns:
            The active transport kind
        """
        async with self._connect_lock:
            if self._active is not None:
                return self.connection_type
            return await self._negotiate()

    async def _negotiate(self) -> TransportKind:
        self._candidate = self._duplex
        try:
            try:
                await asyncio.wait_for(self._duplex.connect(), timeout=self.config.handshake_timeout)
            except Exception as ws_error:
                logger.warning(f"WebSocket failed, trying SSE fallback: {ws_error!r}")
                await self._duplex.disconnect()
            else:
                self._activate(self._duplex)
                return self.connection_type

            self._abandon_requests(self._duplex)
            self._candidate = self._streaming
            try:
                await self._streaming.connect()
            except Exception as sse_error:
                logger.error(f"Both WebSocket and SSE failed: {sse_error}")
                self._activate(None)
                self._notify_error(ConnectionError("All connection methods failed"))
                return self.connection_type

            self._activate(self._streaming)
            logger.info("Connected via SSE (basic features)")
            return self.connection_type
        finally:
            self._candidate = None

    async def disconnect(self) -> None:
        """Tear down both transports."""
        await self._duplex.disconnect()
        await self._streaming.disconnect()
        self._active = None
        self._capabilities = Capabilities.none()

    def _activate(self, transport: SessionTransport | None) -> None:
        self._active = transport
        self._capabilities = transport.capabilities if transport else Capabilities.none()
        if transport is None:
            return
        logger.info(f"Session using {transport.kind.value} transport")
        for handler in list(self._connection_handlers):
            handler(transport.kind)

    def _abandon_requests(self, transport: SessionTransport) -> None:
        """Forget requests left behind on a transport that is no longer usable.

        Their events can never arrive.
        """
        for request in transport.registry.active():
            transport.registry.discard(request.id)
            logger.warning(
                f"Abandoning request {request.id} from lost {transport.kind.value} transport"
            )

    async def __aenter__(self) -> SessionClient:
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.disconnect()

    # =========================================================================
    # Operations
    # =========================================================================

    async def generate_code(
        self,
        request_id: str,
        message: str,
        project_id: str | None = None,
        active_file: str | None = None,
        selected_code: str | None = None,
        model: str | None = None,
        mode: str | None = None,
        approved_actions: list[str] | None = None,
        rejected_actions: list[str] | None = None,
    ) -> None:
        """Start a generation request on the active transport.

        Connects first if the session is disconnected. On SSE this returns
        when the response stream ends; on WebSocket it returns once the
        request is sent (or queued).

        Raises:
            SessionUnavailableError: If no transport could be established
            CapabilityError: If another request is in flight and the
                transport cannot multiplex
        """
        if self._active is None:
            await self.connect()
        transport = self._require_transport()

        if not self._capabilities.multi_request and len(transport.registry) > 0:
            raise CapabilityError(
                "multi_request", "Concurrent requests not supported with current connection"
            )

        await transport.send(
            SessionMessage.generate(
                request_id,
                message,
                project_id=project_id,
                active_file=active_file,
                selected_code=selected_code,
                model=model or self.config.default_model,
                mode=mode or self.config.default_mode,  # type: ignore[arg-type]
                approved_actions=approved_actions,
                rejected_actions=rejected_actions,
            )
        )

    async def cancel_request(self, request_id: str) -> None:
        """Ask the backend to cancel. Completion arrives as an event."""
        self._require("cancel")
        await self._require_transport().send(SessionMessage.cancel(request_id))

    async def modify_request(self, request_id: str, modification: str) -> None:
        self._require("modify")
        await self._require_transport().send(SessionMessage.modify(request_id, modification))

    async def pause_request(self, request_id: str) -> None:
        self._require("pause")
        await self._require_transport().send(SessionMessage.pause(request_id))

    async def resume_request(self, request_id: str) -> None:
        self._require("resume")
        await self._require_transport().send(SessionMessage.resume(request_id))

    async def answer_question(self, request_id: str, answer: str) -> None:
        """Reply to a backend question. Needs the same channel as modify."""
        self._require("modify")
        await self._require_transport().send(SessionMessage.answer(request_id, answer))

    async def approve_permissions(self, request_id: str, permissions: list[str]) -> None:
        self._require("permissions")
        await self._require_transport().send(SessionMessage.approve(request_id, permissions))

    async def reject_permissions(self, request_id: str, permissions: list[str]) -> None:
        self._require("permissions")
        await self._require_transport().send(SessionMessage.reject(request_id, permissions))

    async def ping(self, request_id: str = "ping") -> None:
        """Protocol-level ping; the backend answers with a pong event."""
        await self._require_transport().send(SessionMessage.ping(request_id))

    def _require(self, capability: str) -> None:
        if not self._capabilities.supports(capability):
            raise CapabilityError(capability)

    def _require_transport(self) -> SessionTransport:
        if self._active is None:
            raise SessionUnavailableError()
        return self._active

    # =========================================================================
    # Events
    # =========================================================================

    def on(self, event_type: EventType | str, handler: EventHandler[AIResponse]) -> Callable[[], None]:
        """Subscribe to one event type, or "*" for all. Returns an unsubscribe function."""
        return self._dispatcher.on(event_type, handler)

    def off(self, event_type: EventType | str, handler: EventHandler[AIResponse]) -> None:
        self._dispatcher.off(event_type, handler)

    def on_connection(self, handler: ConnectionHandler) -> None:
        self._connection_handlers.append(handler)

    def on_error(self, handler: ErrorCallback) -> None:
        self._error_handlers.append(handler)

    def _forwarder(self, transport: SessionTransport) -> Callable[[SessionEvent], None]:
        def forward(event: SessionEvent) -> None:
            # Replies to messages flushed during the handshake arrive before activation.
            if transport is not self._active and transport is not self._candidate:
                return
            self._dispatcher.dispatch(AIResponse.from_event(event))

        return forward

    def _error_relay(self, transport: SessionTransport) -> ErrorCallback:
        def relay(error: BaseException) -> None:
            # Failures during negotiation are handled by connect().
            if transport is not self._active:
                return
            if isinstance(error, ReconnectExhaustedError):
                logger.warning("WebSocket reconnects exhausted, session is now disconnected")
                self._activate(None)
                self._abandon_requests(transport)
            self._notify_error(error)

        return relay

    def _notify_error(self, error: BaseException) -> None:
        for handler in list(self._error_handlers):
            handler(error)

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def connection_type(self) -> TransportKind:
        return self._active.kind if self._active is not None else TransportKind.DISCONNECTED

    @property
    def is_connected(self) -> bool:
        return self._active is not None

    def get_capabilities(self) -> Capabilities:
        """The capability set of the active transport (immutable)."""
        return self._capabilities

    def get_active_requests(self) -> list[ActiveRequest]:
        if self._active is None:
            return []
        return self._active.registry.active()

    def get_request(self, request_id: str) -> ActiveRequest | None:
        if self._active is None:
            return None
        return self._active.registry.get(request_id)


def create_session(config: SessionConfig | None = None) -> SessionClient:
    """Create a session with real WebSocket and SSE transports.

    Args:
        config: Session configuration (default: read from environment)

    Returns:
        SessionClient whose transports share one request registry
    """
    config = config or SessionConfig.from_env()
    registry = RequestRegistry()
    return SessionClient(
        DuplexChannelClient(config, registry=registry),
        StreamingChannelClient(config, registry=registry),
        config=config,
    )
