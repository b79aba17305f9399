"""Request registry - in-memory state of in-flight generation requests.

Every mutation is driven either by an inbound event or by a message the
client itself sent. Terminal requests are removed immediately; late events
for a removed (or never seen) request id are dropped without error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .errors import DuplicateRequestError
from .protocol.events import EventType, SessionEvent
from .protocol.messages import PERMISSION_TYPES, MessageType, SessionMessage

logger = logging.getLogger(__name__)


class RequestStatus(str, Enum):
    """Lifecycle of a single request."""

    RUNNING = "running"
    PAUSED = "paused"
    AWAITING_PERMISSION = "awaiting_permission"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({RequestStatus.CANCELLED, RequestStatus.COMPLETED})

# Non-terminal moves. Terminal statuses are reachable from anywhere.
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.RUNNING: frozenset({RequestStatus.PAUSED, RequestStatus.AWAITING_PERMISSION}),
    RequestStatus.PAUSED: frozenset({RequestStatus.RUNNING}),
    RequestStatus.AWAITING_PERMISSION: frozenset({RequestStatus.RUNNING}),
}

# data key -> ActiveRequest attribute
_TELEMETRY_FIELDS = {
    "queuePosition": "queue_position",
    "estimatedTokens": "estimated_tokens",
    "remainingTokens": "remaining_tokens",
    "progress": "progress",
    "stage": "stage",
    "permissions": "pending_permissions",
}

_TERMINAL_EVENTS = {
    EventType.COMPLETE.value: RequestStatus.COMPLETED,
    EventType.REQUEST_CANCELLED.value: RequestStatus.CANCELLED,
    # Remote failures end the request like a cancellation.
    EventType.ERROR.value: RequestStatus.CANCELLED,
}


@dataclass
class ActiveRequest:
    """One in-flight generation request and its live telemetry."""

    id: str
    status: RequestStatus
    message: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    project_id: str | None = None

    estimated_tokens: int | None = None
    remaining_tokens: int | None = None
    progress: float | None = None
    stage: str | None = None
    queue_position: int | None = None
    pending_permissions: list[Any] = field(default_factory=list)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class RequestRegistry:
    """Map of request id to ActiveRequest, shared by both transports."""

    def __init__(self) -> None:
        self._requests: dict[str, ActiveRequest] = {}

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._requests

    def __len__(self) -> int:
        return len(self._requests)

    def get(self, request_id: str) -> ActiveRequest | None:
        return self._requests.get(request_id)

    def active(self) -> list[ActiveRequest]:
        """Snapshot of tracked requests in insertion order."""
        return list(self._requests.values())

    def track(self, message: SessionMessage) -> ActiveRequest:
        """Start tracking a generate message.

        Raises:
            DuplicateRequestError: If the id is already tracked
        """
        if message.request_id in self._requests:
            raise DuplicateRequestError(message.request_id)

        request = ActiveRequest(
            id=message.request_id,
            status=RequestStatus.RUNNING,
            message=message.message or "",
            project_id=message.project_id,
        )
        self._requests[request.id] = request
        logger.debug(f"Tracking request {request.id}")
        return request

    def discard(self, request_id: str) -> ActiveRequest | None:
        """Stop tracking a request without a terminal event."""
        return self._requests.pop(request_id, None)

    def clear(self) -> None:
        self._requests.clear()

    def apply(self, event: SessionEvent) -> ActiveRequest | None:
        """Apply an inbound event.

        Returns:
            The updated request (its final snapshot if the event was
            terminal), or None if the event's request id is not tracked.
        """
        request = self._requests.get(event.request_id) if event.request_id else None
        if request is None:
            if event.request_id:
                logger.debug(f"Dropping {event.type} for unknown request {event.request_id}")
            return None

        self._update_telemetry(request, event)

        if event.type in _TERMINAL_EVENTS:
            request.status = _TERMINAL_EVENTS[event.type]
            del self._requests[request.id]
            logger.debug(f"Request {request.id} finished: {request.status.value}")
        elif event.type == EventType.REQUEST_STARTED.value:
            self._transition(request, RequestStatus.RUNNING)
        elif event.type == EventType.QUESTION.value and event.requires_approval:
            self._transition(request, RequestStatus.AWAITING_PERMISSION)
            if event.permissions and not request.pending_permissions:
                request.pending_permissions = list(event.permissions)

        return request

    def note_outbound(self, message: SessionMessage) -> None:
        """Reflect a transmitted control message in local state."""
        request = self._requests.get(message.request_id)
        if request is None:
            return

        if message.type == MessageType.PAUSE:
            self._transition(request, RequestStatus.PAUSED)
        elif message.type == MessageType.RESUME:
            self._transition(request, RequestStatus.RUNNING)
        elif message.type in PERMISSION_TYPES:
            if request.status == RequestStatus.AWAITING_PERMISSION:
                self._transition(request, RequestStatus.RUNNING)
                request.pending_permissions = []

    def _transition(self, request: ActiveRequest, status: RequestStatus) -> None:
        if request.status == status:
            return
        if status not in ALLOWED_TRANSITIONS.get(request.status, frozenset()):
            logger.debug(
                f"Ignoring transition {request.status.value} -> {status.value} for {request.id}"
            )
            return
        request.status = status

    @staticmethod
    def _update_telemetry(request: ActiveRequest, event: SessionEvent) -> None:
        if not isinstance(event.data, dict):
            return
        for key, attr in _TELEMETRY_FIELDS.items():
            if key in event.data and event.data[key] is not None:
                setattr(request, attr, event.data[key])
