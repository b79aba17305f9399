"""Inbound session events.

Events are sent by the backend and are correlated to a request through
``requestId``. Connection-level events (``pong``) may arrive without one.

Two shapes live here:
- SessionEvent: the wire event as received from either transport
- AIResponse: the normalized event handed to session subscribers
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    ValidationError,
    ValidationInfo,
    ValidatorFunctionWrapHandler,
    field_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """All inbound event types in the protocol."""

    # Request lifecycle
    REQUEST_STARTED = "request_started"
    REQUEST_CANCELLED = "request_cancelled"
    COMPLETE = "complete"
    ERROR = "error"

    # Streaming output
    PROGRESS = "progress"
    CODE = "code"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"

    # Interaction
    QUESTION = "question"
    INTERNAL_ACTION = "internal_action"

    # Connection level
    PONG = "pong"
    SUBSCRIPTION_UPDATED = "subscription_updated"


TERMINAL_EVENT_TYPES = frozenset(
    {
        EventType.COMPLETE.value,
        EventType.ERROR.value,
        EventType.REQUEST_CANCELLED.value,
    }
)


class _WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @field_validator("*", mode="wrap")
    @classmethod
    def _lenient_optional(
        cls, value: Any, handler: ValidatorFunctionWrapHandler, info: ValidationInfo
    ) -> Any:
        """Replace a malformed optional field with its default instead of dropping the event."""
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            if field.is_required():
                raise
            logger.debug(f"Ignoring malformed {info.field_name!r} on {cls.__name__}: {value!r}")
            return field.get_default(call_default_factory=True)


class FileInfo(_WireModel):
    """A file produced or touched by a generation step."""

    id: str
    path: str
    content: str = ""
    content_type: str = "text/plain"
    size: int = 0


class SessionEvent(_WireModel):
    """An event from backend to client.

    Example:
        {
            "type": "progress",
            "requestId": "r1",
            "message": "Planning changes",
            "data": {"progress": 40, "stage": "planning"}
        }

    ``type`` is kept as a plain string so event kinds added by the backend
    still parse; they simply have no typed handler slot.
    """

    type: str
    request_id: str | None = None
    message: str | None = None
    content: str | None = None
    data: Any = None

    # Error details
    can_retry: bool | None = None
    suggestions: list[str] | None = None
    error_context: str | None = None
    stats: dict[str, Any] | None = None

    # Permission flow
    permissions: list[Any] | None = None
    permission_ids: list[str] | None = None
    requires_approval: bool = False

    # Usage and progress
    tokens_used: int | None = None
    tokens_limit: int | None = None
    remaining_tokens: int | None = None
    estimated_tokens: int | None = None
    queue_position: int | None = None
    stage: str | None = None
    progress: float | None = None
    original_type: str | None = None

    # Internal actions
    action: str | None = None
    details: Any = None
    timestamp: float | None = None

    # Files
    file: FileInfo | None = None

    @property
    def event_type(self) -> EventType | None:
        """The typed event kind, or None for kinds this client does not know."""
        try:
            return EventType(self.type)
        except ValueError:
            return None

    def is_terminal(self) -> bool:
        """Check if this event ends its request."""
        return self.type in TERMINAL_EVENT_TYPES

    def data_field(self, key: str) -> Any:
        """Read a key from ``data`` when it is a JSON object."""
        if isinstance(self.data, dict):
            return self.data.get(key)
        return None

    @classmethod
    def from_stream_record(cls, record: dict[str, Any], request_id: str) -> SessionEvent:
        """Normalize a streaming record.

        The streaming endpoint does not echo a request id, so the caller's
        id is applied. Records without a type are progress updates, and the
        whole record doubles as the event data.
        """
        fields = {k: v for k, v in record.items() if k not in ("type", "requestId", "data")}
        return cls.model_validate(
            {
                **fields,
                "type": record.get("type") or EventType.PROGRESS.value,
                "requestId": request_id,
                "data": record,
            }
        )


class AIResponse(_WireModel):
    """Transport-independent event delivered to session subscribers."""

    type: str
    request_id: str | None = None
    message: str | None = None
    content: str | None = None
    data: Any = None
    can_retry: bool | None = None
    suggestions: list[str] | None = None
    error_context: str | None = None
    stats: dict[str, Any] | None = None
    action: str | None = None
    details: Any = None
    timestamp: float | None = None
    file: FileInfo | None = None

    @classmethod
    def from_event(cls, event: SessionEvent) -> AIResponse:
        """Build the subscriber shape from a wire event."""
        file_info = event.file
        if file_info is None:
            raw = event.data_field("file")
            if isinstance(raw, dict):
                try:
                    file_info = FileInfo.model_validate(raw)
                except ValueError:
                    file_info = None
        return cls(
            type=event.type,
            request_id=event.request_id,
            message=event.message,
            content=event.content,
            data=event.data,
            can_retry=event.can_retry,
            suggestions=event.suggestions,
            error_context=event.error_context,
            stats=event.stats,
            action=event.action,
            details=event.details,
            timestamp=event.timestamp,
            file=file_info,
        )
