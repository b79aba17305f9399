"""Session error taxonomy.

- Connection errors (TokenFetchError, ReconnectExhaustedError, StreamError)
  are ConnectionError subclasses. They reach error handlers and drive
  reconnect/fallback; `send` never raises them.
- Capability errors are raised to the caller when the active transport
  cannot carry the requested operation.
- Protocol errors are ordinary `error` events, not exceptions.
"""

from __future__ import annotations


class SessionError(Exception):
    """Base class for session client errors."""


class CapabilityError(SessionError):
    """Raised when the active transport does not support an operation."""

    def __init__(self, capability: str, message: str | None = None) -> None:
        self.capability = capability
        super().__init__(message or f"{capability.capitalize()} not supported with current connection")


class SessionUnavailableError(CapabilityError):
    """Raised when no transport could be established."""

    def __init__(self, message: str = "No connection available") -> None:
        super().__init__("connection", message)


class DuplicateRequestError(SessionError, ValueError):
    """Raised when a request id is already in flight."""

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        super().__init__(f"Request id already active: {request_id}")


class TokenFetchError(SessionError, ConnectionError):
    """The session credential endpoint did not return a usable token."""


class ReconnectExhaustedError(SessionError, ConnectionError):
    """The duplex channel gave up after the configured number of attempts."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Gave up reconnecting after {attempts} attempts")


class StreamError(SessionError, ConnectionError):
    """A streaming request failed or its stream broke."""

    def __init__(self, request_id: str, message: str) -> None:
        self.request_id = request_id
        super().__init__(message)
