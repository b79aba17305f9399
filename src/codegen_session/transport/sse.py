"""One-way session channel over HTTP streaming (SSE).

Each generate opens one POST to the streaming endpoint and reads the
response as ``data: <json>`` records until a ``data: [DONE]`` record.
The endpoint does not echo request ids, so every record is tagged with
the id the caller supplied.

Nothing can be sent to the backend once the POST is out, so flow-control
messages are rejected. Permission decisions are kept locally and ride
along with the next generate as approvedActions/rejectedActions.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable

import httpx

from ..config import SessionConfig
from ..dispatcher import EventDispatcher
from ..errors import CapabilityError, DuplicateRequestError, StreamError
from ..protocol.events import SessionEvent
from ..protocol.messages import MessageType, SessionMessage
from ..registry import RequestRegistry
from .base import Capabilities, ErrorCallback, EventCallback, TransportKind, TransportState

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"

# Control message type -> capability that would be needed to carry it
_CONTROL_CAPABILITY = {
    MessageType.MODIFY: "modify",
    MessageType.ANSWER: "modify",
    MessageType.CANCEL: "cancel",
    MessageType.PAUSE: "pause",
    MessageType.RESUME: "resume",
    MessageType.PING: "ping",
}


class StreamingChannelClient:
    """Client for the per-request SSE streaming endpoint.

    Usage:
        client = StreamingChannelClient(SessionConfig(base_url="https://app.example"))
        client.on_event(print)
        await client.connect()
        await client.send(SessionMessage.generate("r1", "Add a login form"))

    ``send`` for a generate returns once the stream has ended.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        registry: RequestRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.registry = registry if registry is not None else RequestRegistry()
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._state = TransportState.DISCONNECTED

        self._approved_actions: list[str] = []
        self._rejected_actions: list[str] = []

        self._dispatcher: EventDispatcher[SessionEvent] = EventDispatcher()
        self._error_handlers: list[ErrorCallback] = []

    @property
    def kind(self) -> TransportKind:
        return TransportKind.SSE

    @property
    def capabilities(self) -> Capabilities:
        return Capabilities.streaming()

    @property
    def state(self) -> TransportState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == TransportState.CONNECTED

    @property
    def approved_actions(self) -> list[str]:
        """Approvals waiting to be attached to the next generate."""
        return list(self._approved_actions)

    @property
    def rejected_actions(self) -> list[str]:
        """Rejections waiting to be attached to the next generate."""
        return list(self._rejected_actions)

    async def connect(self) -> None:
        """Prepare the HTTP client. There is no persistent connection."""
        if self._http_client is None:
            try:
                self._http_client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    cookies=self.config.cookies,
                    timeout=httpx.Timeout(self.config.timeout, read=None),
                )
            except Exception as e:
                raise ConnectionError(f"Failed to create HTTP client: {e}") from e
            self._owns_http_client = True
        self._state = TransportState.CONNECTED
        logger.info("Streaming transport ready")

    async def disconnect(self) -> None:
        if self._owns_http_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        self._state = TransportState.DISCONNECTED

    async def send(self, message: SessionMessage) -> None:
        """Start a generation stream or record a permission decision.

        Raises:
            CapabilityError: For messages that need a control channel
            DuplicateRequestError: If a generate reuses an in-flight request id
        """
        if message.is_control:
            raise CapabilityError(
                _CONTROL_CAPABILITY[message.type],
                f"{message.type.value.capitalize()} not supported by the streaming transport",
            )

        if message.type == MessageType.APPROVE:
            self._approved_actions.extend(message.permissions or [])
            self.registry.note_outbound(message)
            return
        if message.type == MessageType.REJECT:
            self._rejected_actions.extend(message.permissions or [])
            self.registry.note_outbound(message)
            return

        if message.request_id in self.registry:
            raise DuplicateRequestError(message.request_id)
        await self._stream(message)

    async def _stream(self, message: SessionMessage) -> None:
        if self._http_client is None:
            await self.connect()
        assert self._http_client is not None

        body = message.to_stream_body()
        body["approvedActions"] = _merge(body["approvedActions"], self._approved_actions)
        body["rejectedActions"] = _merge(body["rejectedActions"], self._rejected_actions)
        self._approved_actions = []
        self._rejected_actions = []

        request_id = message.request_id
        self.registry.track(message)
        logger.info(f"Opening stream for {request_id}")

        try:
            async with self._http_client.stream(
                "POST",
                self.config.stream_path,
                json=body,
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code >= 400:
                    raise StreamError(
                        request_id, f"Streaming request failed: {response.status_code}"
                    )
                async for line in response.aiter_lines():
                    if self._handle_line(line, request_id):
                        break
        except (httpx.HTTPError, StreamError) as e:
            logger.error(f"Stream for {request_id} failed: {e}")
            self.registry.discard(request_id)
            error = e if isinstance(e, StreamError) else StreamError(request_id, str(e))
            self._notify_error(error)
            return
        finally:
            # However the stream ends (including cancellation), the request ends with it.
            if self.registry.discard(request_id) is not None:
                logger.debug(f"Stream for {request_id} closed without a terminal event")

        logger.info(f"Stream for {request_id} finished")

    def _handle_line(self, line: str, request_id: str) -> bool:
        """Process one line of the stream. Returns True at the terminator."""
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return False

        payload = line[len(DATA_PREFIX) :]
        if payload == DONE_MARKER:
            return True

        try:
            record = json.loads(payload)
            if not isinstance(record, dict):
                raise ValueError(f"expected an object, got {type(record).__name__}")
            event = SessionEvent.from_stream_record(record, request_id)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Skipping malformed stream record: {e}")
            return False

        self.registry.apply(event)
        self._dispatcher.dispatch(event)
        return False

    def on_event(self, handler: EventCallback) -> Callable[[], None]:
        return self._dispatcher.on("*", handler)

    def on_error(self, handler: ErrorCallback) -> None:
        self._error_handlers.append(handler)

    def _notify_error(self, error: BaseException) -> None:
        for handler in list(self._error_handlers):
            handler(error)


def _merge(first: list[str], second: list[str]) -> list[str]:
    """Concatenate without duplicates, keeping first-seen order."""
    return list(dict.fromkeys([*first, *second]))
