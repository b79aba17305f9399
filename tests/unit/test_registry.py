"""Unit tests for the request registry state machine."""

from __future__ import annotations

import pytest

from codegen_session.errors import DuplicateRequestError
from codegen_session.protocol import SessionEvent, SessionMessage
from codegen_session.registry import RequestRegistry, RequestStatus


@pytest.fixture
def registry() -> RequestRegistry:
    reg = RequestRegistry()
    reg.track(SessionMessage.generate("r1", "Add a login form", project_id="proj_42"))
    return reg


def event(event_type: str, request_id: str = "r1", **fields) -> SessionEvent:
    return SessionEvent.model_validate({"type": event_type, "requestId": request_id, **fields})


class TestTracking:
    """Tests for track/discard."""

    def test_track_creates_running_request(self, registry: RequestRegistry) -> None:
        """A tracked generate starts in running."""
        request = registry.get("r1")

        assert request is not None
        assert request.status == RequestStatus.RUNNING
        assert request.message == "Add a login form"
        assert request.project_id == "proj_42"
        assert request.start_time.tzinfo is not None
        assert "r1" in registry
        assert len(registry) == 1

    def test_track_duplicate_raises(self, registry: RequestRegistry) -> None:
        """Request ids are unique while in flight."""
        with pytest.raises(DuplicateRequestError) as exc_info:
            registry.track(SessionMessage.generate("r1", "again"))

        assert exc_info.value.request_id == "r1"

    def test_id_reusable_after_terminal(self, registry: RequestRegistry) -> None:
        """Once a request ends its id can be used again."""
        registry.apply(event("complete"))

        registry.track(SessionMessage.generate("r1", "again"))
        assert registry.get("r1").message == "again"

    def test_discard(self, registry: RequestRegistry) -> None:
        """discard removes without a terminal event."""
        assert registry.discard("r1") is not None
        assert registry.discard("r1") is None
        assert registry.active() == []

    def test_active_keeps_insertion_order(self, registry: RequestRegistry) -> None:
        """active() lists requests in the order they were tracked."""
        registry.track(SessionMessage.generate("r2", "b"))
        registry.track(SessionMessage.generate("r3", "c"))

        assert [r.id for r in registry.active()] == ["r1", "r2", "r3"]


class TestApplyEvents:
    """Tests for event-driven transitions."""

    def test_complete_removes_request(self, registry: RequestRegistry) -> None:
        """complete yields a final completed snapshot and removes the entry."""
        final = registry.apply(event("complete"))

        assert final is not None
        assert final.status == RequestStatus.COMPLETED
        assert "r1" not in registry

    def test_request_cancelled_removes_request(self, registry: RequestRegistry) -> None:
        """request_cancelled ends the request as cancelled."""
        final = registry.apply(event("request_cancelled"))

        assert final.status == RequestStatus.CANCELLED
        assert registry.get("r1") is None

    def test_error_is_terminal(self, registry: RequestRegistry) -> None:
        """A remote error ends the request."""
        final = registry.apply(event("error", message="boom"))

        assert final.status == RequestStatus.CANCELLED
        assert len(registry) == 0

    def test_events_after_terminal_are_dropped(self, registry: RequestRegistry) -> None:
        """Late events for a finished request change nothing."""
        registry.apply(event("complete"))

        assert registry.apply(event("progress", data={"progress": 90})) is None
        assert registry.apply(event("complete")) is None
        assert registry.active() == []

    def test_unknown_request_is_ignored(self, registry: RequestRegistry) -> None:
        """Events for untracked ids are dropped."""
        assert registry.apply(event("progress", request_id="nope")) is None
        assert len(registry) == 1

    def test_event_without_request_id(self, registry: RequestRegistry) -> None:
        """Connection-level events do not touch any request."""
        assert registry.apply(SessionEvent(type="pong")) is None

    def test_progress_updates_telemetry(self, registry: RequestRegistry) -> None:
        """Progress data updates the matching telemetry fields."""
        registry.apply(
            event(
                "progress",
                data={
                    "progress": 40,
                    "stage": "planning",
                    "queuePosition": 2,
                    "estimatedTokens": 1200,
                    "remainingTokens": 800,
                },
            )
        )
        request = registry.get("r1")

        assert request.progress == 40
        assert request.stage == "planning"
        assert request.queue_position == 2
        assert request.estimated_tokens == 1200
        assert request.remaining_tokens == 800
        assert request.status == RequestStatus.RUNNING

    def test_permission_question_awaits_approval(self, registry: RequestRegistry) -> None:
        """A question requiring approval moves the request to awaiting_permission."""
        registry.apply(
            event("question", requiresApproval=True, permissions=[{"id": "p1"}])
        )
        request = registry.get("r1")

        assert request.status == RequestStatus.AWAITING_PERMISSION
        assert request.pending_permissions == [{"id": "p1"}]

    def test_plain_question_keeps_running(self, registry: RequestRegistry) -> None:
        """Questions without requiresApproval do not change status."""
        registry.apply(event("question", message="Which color?"))

        assert registry.get("r1").status == RequestStatus.RUNNING

    def test_request_started_resumes_paused(self, registry: RequestRegistry) -> None:
        """request_started returns a paused request to running."""
        registry.note_outbound(SessionMessage.pause("r1"))
        registry.apply(event("request_started"))

        assert registry.get("r1").status == RequestStatus.RUNNING


class TestOutboundEffects:
    """Tests for local effects of sent control messages."""

    def test_pause_and_resume(self, registry: RequestRegistry) -> None:
        """pause and resume toggle the status."""
        registry.note_outbound(SessionMessage.pause("r1"))
        assert registry.get("r1").status == RequestStatus.PAUSED

        registry.note_outbound(SessionMessage.resume("r1"))
        assert registry.get("r1").status == RequestStatus.RUNNING

    def test_approve_clears_pending_permissions(self, registry: RequestRegistry) -> None:
        """approve returns an awaiting request to running."""
        registry.apply(event("question", requiresApproval=True, permissions=["p1"]))
        registry.note_outbound(SessionMessage.approve("r1", ["p1"]))
        request = registry.get("r1")

        assert request.status == RequestStatus.RUNNING
        assert request.pending_permissions == []

    def test_reject_clears_pending_permissions(self, registry: RequestRegistry) -> None:
        """reject also resolves the permission wait."""
        registry.apply(event("question", requiresApproval=True, permissions=["p1"]))
        registry.note_outbound(SessionMessage.reject("r1", ["p1"]))

        assert registry.get("r1").status == RequestStatus.RUNNING

    def test_cancel_waits_for_backend(self, registry: RequestRegistry) -> None:
        """Sending cancel does not end the request locally."""
        registry.note_outbound(SessionMessage.cancel("r1"))

        assert registry.get("r1").status == RequestStatus.RUNNING

    def test_pause_while_awaiting_permission_is_ignored(self, registry: RequestRegistry) -> None:
        """Only legal transitions are applied."""
        registry.apply(event("question", requiresApproval=True))
        registry.note_outbound(SessionMessage.pause("r1"))

        assert registry.get("r1").status == RequestStatus.AWAITING_PERMISSION

    def test_unknown_request_is_ignored(self, registry: RequestRegistry) -> None:
        """Control messages for untracked ids are no-ops."""
        registry.note_outbound(SessionMessage.pause("nope"))

        assert registry.get("nope") is None
