"""Unit tests for the codegen-session CLI."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner

from codegen_session.cli import format_response, main
from codegen_session.config import SessionConfig
from codegen_session.protocol import AIResponse, FileInfo
from codegen_session.registry import RequestRegistry
from codegen_session.session import SessionClient
from codegen_session.transport import DuplexChannelClient, StreamingChannelClient


def sse_response(*records: dict[str, Any]) -> httpx.Response:
    lines = [f"data: {json.dumps(record)}\n\n" for record in records]
    lines.append("data: [DONE]\n\n")
    return httpx.Response(200, content="".join(lines).encode())


def answer_generate(ws, message: dict[str, Any]) -> None:
    """Server side of the WebSocket: finish every generate right away."""
    if message["type"] != "generate":
        return
    request_id = message["requestId"]
    ws.push(
        {
            "type": "progress",
            "requestId": request_id,
            "message": "Planning",
            "data": {"progress": 40, "stage": "planning"},
        }
    )
    ws.push({"type": "complete", "requestId": request_id, "message": "Done"})


class BrokenStreaming(StreamingChannelClient):
    async def connect(self) -> None:
        raise ConnectionError("stream endpoint down")


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def session_factory(fake_connector, token_client):
    """Build create_session replacements around faked network I/O."""

    def build(stream_handler=None, streaming_cls=StreamingChannelClient):
        def create(config: SessionConfig) -> SessionClient:
            registry = RequestRegistry()
            http = httpx.AsyncClient(
                transport=httpx.MockTransport(stream_handler or (lambda r: sse_response())),
                base_url="http://test",
            )
            return SessionClient(
                DuplexChannelClient(
                    config, registry=registry, http_client=token_client, connector=fake_connector
                ),
                streaming_cls(config, registry=registry, http_client=http),
                config,
            )

        return create

    return build


class TestGenerateCommand:
    """Tests for `codegen-session generate`."""

    def test_generate_over_websocket(self, runner, session_factory, fake_connector) -> None:
        """Events are printed until the terminal event arrives."""
        fake_connector.responder = answer_generate

        with patch("codegen_session.cli.create_session", session_factory()):
            result = runner.invoke(
                main,
                ["--url", "http://test", "generate", "Add a login form", "--request-id", "r1"],
            )

        assert result.exit_code == 0, result.output
        assert "[progress] 40% planning Planning" in result.output
        assert "[complete] Done" in result.output
        sent = fake_connector.latest.sent[0]
        assert sent["requestId"] == "r1"
        assert sent["message"] == "Add a login form"

    def test_generate_json_output(self, runner, session_factory, fake_connector) -> None:
        """-f json prints one JSON object per event."""
        fake_connector.responder = answer_generate

        with patch("codegen_session.cli.create_session", session_factory()):
            result = runner.invoke(main, ["generate", "hi", "--request-id", "r1", "-f", "json"])

        assert result.exit_code == 0, result.output
        events = [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]
        assert [e["type"] for e in events] == ["progress", "complete"]
        assert events[0]["requestId"] == "r1"

    def test_generate_falls_back_to_sse(self, runner, session_factory, fake_connector) -> None:
        """With the WebSocket down the request streams over SSE."""
        fake_connector.fail = True
        bodies: list[dict[str, Any]] = []

        def stream(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return sse_response({"type": "code", "content": "x"}, {"type": "complete"})

        with patch("codegen_session.cli.create_session", session_factory(stream)):
            result = runner.invoke(
                main,
                ["generate", "hi", "--project-id", "p1", "--mode", "conversation"],
            )

        assert result.exit_code == 0, result.output
        assert "[code] x" in result.output
        assert "[complete]" in result.output
        assert bodies[0]["projectId"] == "p1"
        assert bodies[0]["mode"] == "conversation"

    def test_generate_error_event_fails(self, runner, session_factory, fake_connector) -> None:
        """An error event ends the command with a non-zero exit."""
        fake_connector.fail = True

        def stream(request: httpx.Request) -> httpx.Response:
            return sse_response({"type": "error", "message": "Rate limited"})

        with patch("codegen_session.cli.create_session", session_factory(stream)):
            result = runner.invoke(main, ["generate", "hi"])

        assert result.exit_code == 1
        assert "[error] Rate limited" in result.output

    def test_generate_stream_failure_fails(self, runner, session_factory, fake_connector) -> None:
        """A broken SSE stream for the request ends the command with a non-zero exit."""
        fake_connector.fail = True

        with patch(
            "codegen_session.cli.create_session",
            session_factory(lambda request: httpx.Response(500)),
        ):
            result = runner.invoke(main, ["generate", "hi", "--request-id", "r1"])

        assert result.exit_code == 1
        assert "Streaming request failed: 500" in result.output

    def test_generate_without_connection(self, runner, session_factory, fake_connector) -> None:
        """No usable transport exits with an error."""
        fake_connector.fail = True

        with patch(
            "codegen_session.cli.create_session",
            session_factory(streaming_cls=BrokenStreaming),
        ):
            result = runner.invoke(main, ["generate", "hi"])

        assert result.exit_code == 1
        assert "No connection available" in result.output


class TestCapabilitiesCommand:
    """Tests for `codegen-session capabilities`."""

    def test_table(self, runner, session_factory) -> None:
        with patch("codegen_session.cli.create_session", session_factory()):
            result = runner.invoke(main, ["capabilities"])

        assert result.exit_code == 0, result.output
        assert "Transport: websocket" in result.output
        assert "cancel" in result.output

    def test_json(self, runner, session_factory, fake_connector) -> None:
        """JSON output lists the streaming capability set after fallback."""
        fake_connector.fail = True

        with patch("codegen_session.cli.create_session", session_factory()):
            result = runner.invoke(main, ["capabilities", "-f", "json"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.output[result.output.index("{") :])
        assert payload["transport"] == "sse"
        assert payload["capabilities"]["permissions"] is True
        assert payload["capabilities"]["cancel"] is False

    def test_disconnected_exit_code(self, runner, session_factory, fake_connector) -> None:
        fake_connector.fail = True

        with patch(
            "codegen_session.cli.create_session",
            session_factory(streaming_cls=BrokenStreaming),
        ):
            result = runner.invoke(main, ["capabilities"])

        assert result.exit_code == 1
        assert "Transport: disconnected" in result.output


class TestFormatResponse:
    """Tests for format_response."""

    def test_plain_message(self) -> None:
        response = AIResponse(type="complete", request_id="r1", message="Done")

        assert format_response(response, "table") == "[complete] Done"

    def test_file_path_appended(self) -> None:
        response = AIResponse(
            type="code",
            content="x",
            file=FileInfo(id="f1", path="src/a.ts"),
        )

        assert format_response(response, "table") == "[code] x (src/a.ts)"

    def test_json(self) -> None:
        response = AIResponse(type="pong")

        assert json.loads(format_response(response, "json")) == {"type": "pong"}
