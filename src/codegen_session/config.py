"""Session client configuration."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from urllib.parse import quote

from .protocol.messages import DEFAULT_MODEL


def parse_cookie_header(value: str) -> dict[str, str]:
    """Parse ``name=value; other=value`` into a dict."""
    cookies: dict[str, str] = {}
    for part in value.split(";"):
        name, sep, cookie_value = part.strip().partition("=")
        if sep and name:
            cookies[name] = cookie_value
    return cookies


@dataclass
class SessionConfig:
    """Configuration shared by both transports and the session facade."""

    # Endpoints
    base_url: str = "http://localhost:3001"
    ws_path: str = "/ws/ai-agent"
    token_path: str = "/api/auth/ws-token"
    stream_path: str = "/api/builder/chat/stream"

    # Ambient authentication (sent with token and streaming requests)
    cookies: dict[str, str] = field(default_factory=dict)

    # Timeouts
    timeout: float = 30.0
    handshake_timeout: float = 5.0

    # Reconnection
    reconnect_delay: float = 1.0
    reconnect_backoff: float = 2.0
    max_reconnect_delay: float = 30.0
    max_reconnect_attempts: int = 5

    # WebSocket keepalive
    ping_interval: float | None = 30.0
    ping_timeout: float | None = 10.0

    # Generation defaults
    default_model: str = DEFAULT_MODEL
    default_mode: str = "coding"

    def ws_url(self, token: str) -> str:
        """Duplex connection URL with the session credential attached."""
        ws_base = self.base_url.rstrip("/")
        ws_base = ws_base.replace("https://", "wss://").replace("http://", "ws://")
        return f"{ws_base}{self.ws_path}?token={quote(token, safe='')}"

    def reconnect_delay_for(self, attempt: int) -> float:
        """Backoff delay before the given (1-based) reconnect attempt."""
        delay = self.reconnect_delay * self.reconnect_backoff ** (attempt - 1)
        return min(delay, self.max_reconnect_delay)

    @classmethod
    def from_env(cls, **overrides: object) -> SessionConfig:
        """Build a config from CODEGEN_SESSION_* environment variables.

        Explicit keyword overrides win over the environment.
        """
        config = cls()
        if url := os.environ.get("CODEGEN_SESSION_URL"):
            config.base_url = url
        if cookie := os.environ.get("CODEGEN_SESSION_COOKIE"):
            config.cookies = parse_cookie_header(cookie)
        if timeout := os.environ.get("CODEGEN_SESSION_HANDSHAKE_TIMEOUT"):
            config.handshake_timeout = float(timeout)
        if attempts := os.environ.get("CODEGEN_SESSION_MAX_RECONNECTS"):
            config.max_reconnect_attempts = int(attempts)
        for key, value in overrides.items():
            if not hasattr(config, key):
                raise ValueError(f"Unknown config option: {key}")
            setattr(config, key, value)
        return config
