"""Outbound session messages.

Messages are requests from the client to the generation backend. Every
message carries a caller-assigned ``requestId`` which the backend echoes
on every event it emits for that request.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_MODEL = "claude-4-sonnet-20250514"

Mode = Literal["coding", "conversation"]


class MessageType(str, Enum):
    """All outbound message types."""

    # Generation
    GENERATE = "generate"
    MODIFY = "modify"
    ANSWER = "answer"

    # Flow control
    CANCEL = "cancel"
    PAUSE = "pause"
    RESUME = "resume"

    # Permission flow
    APPROVE = "approve"
    REJECT = "reject"

    # Connection
    PING = "ping"


CONTROL_TYPES = frozenset(
    {
        MessageType.MODIFY,
        MessageType.ANSWER,
        MessageType.CANCEL,
        MessageType.PAUSE,
        MessageType.RESUME,
        MessageType.PING,
    }
)
PERMISSION_TYPES = frozenset({MessageType.APPROVE, MessageType.REJECT})


class SessionMessage(BaseModel):
    """A message from client to backend.

    Example (wire form):
        {
            "type": "generate",
            "requestId": "r1",
            "message": "Add a login form",
            "projectId": "proj_42",
            "model": "claude-4-sonnet-20250514",
            "mode": "coding",
            "approvedActions": [],
            "rejectedActions": []
        }

    Only ``type`` and ``requestId`` are always present; the remaining
    fields depend on the type and are omitted from the wire when unset.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    type: MessageType
    request_id: str
    message: str | None = None

    # generate payload
    project_id: str | None = None
    active_file: str | None = None
    selected_code: str | None = None
    model: str | None = None
    mode: Mode | None = None
    approved_actions: list[str] | None = None
    rejected_actions: list[str] | None = None

    # approve / reject payload
    permission_id: str | None = None
    permissions: list[str] | None = None

    def to_wire(self) -> str:
        """Serialize to the JSON frame sent over the wire."""
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def to_stream_body(self) -> dict[str, Any]:
        """Request body for the streaming endpoint (no type/requestId)."""
        return {
            "message": self.message or "",
            "projectId": self.project_id,
            "activeFile": self.active_file,
            "selectedCode": self.selected_code,
            "model": self.model or DEFAULT_MODEL,
            "mode": self.mode or "coding",
            "approvedActions": list(self.approved_actions or []),
            "rejectedActions": list(self.rejected_actions or []),
        }

    @property
    def is_control(self) -> bool:
        """True for messages that steer an in-flight request."""
        return self.type in CONTROL_TYPES

    # =========================================================================
    # Factory methods
    # =========================================================================

    @classmethod
    def generate(
        cls,
        request_id: str,
        message: str,
        project_id: str | None = None,
        active_file: str | None = None,
        selected_code: str | None = None,
        model: str | None = None,
        mode: Mode | None = None,
        approved_actions: list[str] | None = None,
        rejected_actions: list[str] | None = None,
    ) -> SessionMessage:
        """Create a generate message."""
        return cls(
            type=MessageType.GENERATE,
            request_id=request_id,
            message=message,
            project_id=project_id,
            active_file=active_file,
            selected_code=selected_code,
            model=model or DEFAULT_MODEL,
            mode=mode or "coding",
            approved_actions=list(approved_actions or []),
            rejected_actions=list(rejected_actions or []),
        )

    @classmethod
    def modify(cls, request_id: str, modification: str) -> SessionMessage:
        """Create a modify message."""
        return cls(type=MessageType.MODIFY, request_id=request_id, message=modification)

    @classmethod
    def answer(cls, request_id: str, answer: str) -> SessionMessage:
        """Create an answer message for a backend question."""
        return cls(type=MessageType.ANSWER, request_id=request_id, message=answer)

    @classmethod
    def cancel(cls, request_id: str) -> SessionMessage:
        return cls(type=MessageType.CANCEL, request_id=request_id)

    @classmethod
    def pause(cls, request_id: str) -> SessionMessage:
        return cls(type=MessageType.PAUSE, request_id=request_id)

    @classmethod
    def resume(cls, request_id: str) -> SessionMessage:
        return cls(type=MessageType.RESUME, request_id=request_id)

    @classmethod
    def approve(cls, request_id: str, permissions: list[str]) -> SessionMessage:
        """Create an approve message for the given permission ids."""
        return cls(type=MessageType.APPROVE, request_id=request_id, permissions=list(permissions))

    @classmethod
    def reject(cls, request_id: str, permissions: list[str]) -> SessionMessage:
        """Create a reject message for the given permission ids."""
        return cls(type=MessageType.REJECT, request_id=request_id, permissions=list(permissions))

    @classmethod
    def ping(cls, request_id: str = "ping") -> SessionMessage:
        return cls(type=MessageType.PING, request_id=request_id)
