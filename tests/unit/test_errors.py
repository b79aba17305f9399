"""Unit tests for the session error taxonomy."""

from __future__ import annotations

from codegen_session.errors import (
    CapabilityError,
    DuplicateRequestError,
    ReconnectExhaustedError,
    SessionError,
    SessionUnavailableError,
    StreamError,
    TokenFetchError,
)


class TestErrors:
    """Tests for error messages and hierarchy."""

    def test_capability_error_message(self) -> None:
        """Default message names the capability."""
        error = CapabilityError("cancel")

        assert str(error) == "Cancel not supported with current connection"
        assert error.capability == "cancel"
        assert isinstance(error, SessionError)

    def test_session_unavailable(self) -> None:
        """No transport is a capability failure."""
        error = SessionUnavailableError()

        assert str(error) == "No connection available"
        assert isinstance(error, CapabilityError)

    def test_duplicate_request_is_value_error(self) -> None:
        error = DuplicateRequestError("r1")

        assert isinstance(error, ValueError)
        assert error.request_id == "r1"

    def test_connection_errors(self) -> None:
        """Transport failures are ConnectionErrors."""
        assert isinstance(TokenFetchError("no token"), ConnectionError)
        assert isinstance(StreamError("r1", "broken"), ConnectionError)

        exhausted = ReconnectExhaustedError(5)
        assert isinstance(exhausted, ConnectionError)
        assert exhausted.attempts == 5
        assert "5 attempts" in str(exhausted)
