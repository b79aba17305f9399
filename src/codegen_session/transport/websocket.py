"""Duplex session channel over WebSocket.

Owns one authenticated WebSocket connection and translates between raw
frames and typed session messages/events.

Connection flow:
1. Fetch a short-lived session token (GET token_path with ambient cookies)
2. Open <ws|wss>://<host><ws_path>?token=<token>
3. Flush messages queued while disconnected, in order, exactly once
4. Notify connection handlers

Wire format:
- Outbound: one JSON SessionMessage per text frame
- Inbound: one JSON SessionEvent per text frame

If the connection drops without a call to disconnect(), reconnection is
retried with exponential backoff up to max_reconnect_attempts.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import websockets
from websockets.exceptions import ConnectionClosed

from ..config import SessionConfig
from ..dispatcher import EventDispatcher, EventHandler
from ..errors import DuplicateRequestError, ReconnectExhaustedError, TokenFetchError
from ..protocol.events import EventType, SessionEvent
from ..protocol.messages import MessageType, SessionMessage
from ..registry import ActiveRequest, RequestRegistry
from .base import Capabilities, ErrorCallback, EventCallback, TransportKind, TransportState

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]
ConnectionCallback = Callable[[], None]


class DuplexChannelClient:
    """Client for the persistent WebSocket session channel.

    Usage:
        client = DuplexChannelClient(SessionConfig(base_url="https://app.example"))
        client.on("progress", lambda event: print(event.data))
        await client.connect()
        await client.generate_code("r1", "Add a login form")

    Messages sent while the channel is down are queued and replayed on the
    next successful open. ``connector`` defaults to ``websockets.connect``
    and can be replaced for testing.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        registry: RequestRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        connector: Connector | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.registry = registry if registry is not None else RequestRegistry()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._connector: Connector = connector or websockets.connect

        self._ws: Any = None
        self._state = TransportState.DISCONNECTED
        self._manual_disconnect = False
        self._reconnect_attempts = 0

        self._reader_task: asyncio.Task[None] | None = None
        self._connect_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()

        self._pending: list[SessionMessage] = []

        self._dispatcher: EventDispatcher[SessionEvent] = EventDispatcher()
        self._connection_handlers: list[ConnectionCallback] = []
        self._disconnect_handlers: list[ConnectionCallback] = []
        self._error_handlers: list[ErrorCallback] = []

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def kind(self) -> TransportKind:
        return TransportKind.WEBSOCKET

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities.full()

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the WebSocket is open."""
        return self._state == TransportState.CONNECTED and self._ws is not None

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def pending_messages(self) -> list[SessionMessage]:
        """Messages waiting for the connection to open."""
        return list(self._pending)

    def get_active_requests(self) -> list[ActiveRequest]:
        return self.registry.active()

    def get_request(self, request_id: str) -> ActiveRequest | None:
        return self.registry.get(request_id)

    # =========================================================================
    # Connection management
    # =========================================================================

    async def connect(self) -> None:
        """Open the channel (no-op if already open or opening).

        Raises:
            ConnectionError: If the token fetch or WebSocket handshake fails
        """
        if self._state in (TransportState.CONNECTED, TransportState.CONNECTING):
            return

        self._manual_disconnect = False
        self._cancel_reconnect()
        await self._open()

    async def disconnect(self) -> None:
        """Close the channel and cancel any scheduled reconnect."""
        self._manual_disconnect = True
        was_connected = self.is_connected

        await self._cancel_task(self._reconnect_task)
        self._reconnect_task = None
        await self._cancel_task(self._connect_task)
        self._connect_task = None

        ws, self._ws = self._ws, None
        await self._cancel_task(self._reader_task)
        self._reader_task = None
        if ws is not None:
            with contextlib.suppress(Exception):
                await ws.close()

        self._state = TransportState.DISCONNECTED

        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

        if was_connected:
            logger.info("WebSocket disconnected")
            for handler in list(self._disconnect_handlers):
                handler()

    async def _open(self) -> None:
        self._state = TransportState.CONNECTING
        try:
            token = await self._fetch_token()
            logger.info(f"Connecting to WebSocket: {self.config.base_url}{self.config.ws_path}")
            ws = await self._connector(
                self.config.ws_url(token),
                ping_interval=self.config.ping_interval,
                ping_timeout=self.config.ping_timeout,
            )
        except asyncio.CancelledError:
            self._state = TransportState.DISCONNECTED
            raise
        except Exception as e:
            self._state = TransportState.DISCONNECTED
            logger.error(f"Failed to connect WebSocket: {e}")
            self._notify_error(e)
            if isinstance(e, ConnectionError):
                raise
            raise ConnectionError(f"Failed to connect: {e}") from e

        if self._manual_disconnect:
            # disconnect() won the race while the handshake was in flight
            with contextlib.suppress(Exception):
                await ws.close()
            self._state = TransportState.DISCONNECTED
            return

        self._ws = ws
        self._state = TransportState.CONNECTED
        self._reconnect_attempts = 0
        self._reader_task = asyncio.create_task(self._read_loop(ws))
        logger.info("WebSocket connected")

        await self._flush_pending()

        for handler in list(self._connection_handlers):
            handler()

    async def _fetch_token(self) -> str:
        """Get a session token using the ambient authentication cookies."""
        client = self._get_http_client()
        try:
            response = await client.get(self.config.token_path)
            response.raise_for_status()
            token = response.json().get("token")
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            raise TokenFetchError(f"Failed to get WebSocket authentication token: {e}") from e

        if not token or not isinstance(token, str):
            raise TokenFetchError("Token endpoint returned no token")
        return token

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                cookies=self.config.cookies,
                timeout=httpx.Timeout(self.config.timeout),
            )
            self._owns_http_client = True
        return self._http_client

    # =========================================================================
    # Reconnection
    # =========================================================================

    def _schedule_reconnect(self) -> None:
        if self._manual_disconnect:
            return

        max_attempts = self.config.max_reconnect_attempts
        if self._reconnect_attempts >= max_attempts:
            logger.warning(f"Giving up after {self._reconnect_attempts} reconnect attempts")
            self._notify_error(ReconnectExhaustedError(self._reconnect_attempts))
            return

        self._reconnect_attempts += 1
        delay = self.config.reconnect_delay_for(self._reconnect_attempts)
        logger.warning(
            f"Scheduling reconnect attempt {self._reconnect_attempts}/{max_attempts} in {delay:.2f}s"
        )
        self._state = TransportState.RECONNECTING
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._reconnect_task = None
        if self._manual_disconnect:
            return
        try:
            await self._open()
        except ConnectionError as e:
            logger.warning(f"Reconnect attempt {self._reconnect_attempts} failed: {e}")
            self._schedule_reconnect()

    def _cancel_reconnect(self) -> None:
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    @staticmethod
    async def _cancel_task(task: asyncio.Task[None] | None) -> None:
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    # =========================================================================
    # Sending
    # =========================================================================

    async def send(self, message: SessionMessage) -> None:
        """Transmit a message, or queue it until the channel opens.

        Queuing triggers a connection attempt. Connection failures are
        reported to error handlers, never raised here.

        Raises:
            DuplicateRequestError: If a generate reuses an in-flight request id
        """
        if message.type == MessageType.GENERATE and self._is_duplicate(message.request_id):
            raise DuplicateRequestError(message.request_id)

        if self.is_connected:
            async with self._send_lock:
                if await self._transmit(message):
                    return
        else:
            logger.info(f"Queueing {message.type.value} for {message.request_id} until connected")

        self._pending.append(message)
        self._ensure_connecting()

    async def _transmit(self, message: SessionMessage) -> bool:
        """Write one frame. Caller holds the send lock.

        Returns:
            False if the socket was unavailable and the message was not sent
        """
        ws = self._ws
        if ws is None or self._state != TransportState.CONNECTED:
            return False

        tracked = message.type == MessageType.GENERATE
        if tracked:
            # Track first so events racing the write are not dropped.
            self.registry.track(message)

        try:
            await ws.send(message.to_wire())
        except ConnectionClosed as e:
            logger.warning(f"Connection closed while sending {message.type.value}: {e}")
            if tracked:
                self.registry.discard(message.request_id)
            return False

        logger.debug(f"Sent {message.type.value} for {message.request_id}")
        if not tracked:
            self.registry.note_outbound(message)
        return True

    async def _flush_pending(self) -> None:
        async with self._send_lock:
            batch, self._pending = self._pending, []
            if batch:
                logger.info(f"Processing {len(batch)} pending messages")
            for index, message in enumerate(batch):
                if not await self._transmit(message):
                    # Put the unsent tail back ahead of anything queued since.
                    self._pending[:0] = batch[index:]
                    break

    def _is_duplicate(self, request_id: str) -> bool:
        if request_id in self.registry:
            return True
        return any(
            m.type == MessageType.GENERATE and m.request_id == request_id for m in self._pending
        )

    def _ensure_connecting(self) -> None:
        # A scheduled reconnect flushes the queue when it opens.
        if self._state in (TransportState.CONNECTING, TransportState.RECONNECTING):
            return
        if self._connect_task is not None and not self._connect_task.done():
            return
        self._connect_task = asyncio.create_task(self._connect_for_queue())

    async def _connect_for_queue(self) -> None:
        try:
            await self.connect()
        except ConnectionError as e:
            logger.error(f"Failed to connect for queued message: {e}")
            self._connect_task = None
            self._schedule_reconnect()

    # =========================================================================
    # Receiving
    # =========================================================================

    async def _read_loop(self, ws: Any) -> None:
        """Background task reading frames until the socket closes."""
        try:
            async for raw in ws:
                self._handle_frame(raw)
        except ConnectionClosed as e:
            logger.info(f"WebSocket closed: {e}")
        except Exception as e:
            logger.error(f"WebSocket receive error: {e}")
            self._notify_error(e)

        self._handle_close(ws)

    def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = SessionEvent.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Dropping malformed frame: {e}")
            return

        logger.debug(f"Received {event.type} for {event.request_id}")
        try:
            self.registry.apply(event)
            self._dispatcher.dispatch(event)
        except Exception:
            logger.exception(f"Event handler failed for {event.type}")

    def _handle_close(self, ws: Any) -> None:
        if self._ws is not ws:
            return

        self._ws = None
        self._reader_task = None
        self._state = TransportState.DISCONNECTED
        logger.info("WebSocket disconnected")

        for handler in list(self._disconnect_handlers):
            handler()

        self._schedule_reconnect()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def on(self, event_type: EventType | str, handler: EventHandler[SessionEvent]) -> Callable[[], None]:
        """Subscribe to one event type, or "*" for all. Returns an unsubscribe function."""
        return self._dispatcher.on(event_type, handler)

    def off(self, event_type: EventType | str, handler: EventHandler[SessionEvent]) -> None:
        self._dispatcher.off(event_type, handler)

    def on_event(self, handler: EventCallback) -> Callable[[], None]:
        return self._dispatcher.on("*", handler)

    def on_connection(self, handler: ConnectionCallback) -> None:
        self._connection_handlers.append(handler)

    def on_disconnect(self, handler: ConnectionCallback) -> None:
        self._disconnect_handlers.append(handler)

    def on_error(self, handler: ErrorCallback) -> None:
        self._error_handlers.append(handler)

    def _notify_error(self, error: BaseException) -> None:
        for handler in list(self._error_handlers):
            handler(error)

    # =========================================================================
    # Convenience senders
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
        await self.send(
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

    async def modify_request(self, request_id: str, modification: str) -> None:
        await self.send(SessionMessage.modify(request_id, modification))

    async def cancel_request(self, request_id: str) -> None:
        await self.send(SessionMessage.cancel(request_id))

    async def pause_request(self, request_id: str) -> None:
        await self.send(SessionMessage.pause(request_id))

    async def resume_request(self, request_id: str) -> None:
        await self.send(SessionMessage.resume(request_id))

    async def answer_question(self, request_id: str, answer: str) -> None:
        await self.send(SessionMessage.answer(request_id, answer))

    async def approve_permissions(self, request_id: str, permissions: list[str]) -> None:
        await self.send(SessionMessage.approve(request_id, permissions))

    async def reject_permissions(self, request_id: str, permissions: list[str]) -> None:
        await self.send(SessionMessage.reject(request_id, permissions))

    async def ping(self, request_id: str = "ping") -> None:
        await self.send(SessionMessage.ping(request_id))
