"""codegen-session CLI.

Drives a generation request from the terminal using the same session
facade an application would embed.

Usage:
    codegen-session generate "Add a login form"            # Stream events
    codegen-session generate "..." --project-id p1 -f json # JSON lines
    codegen-session capabilities                           # Show transport
    codegen-session --url https://app.example --cookie accessToken=... generate "..."
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import uuid

import click

from .config import SessionConfig, parse_cookie_header
from .errors import ReconnectExhaustedError, StreamError
from .protocol.events import TERMINAL_EVENT_TYPES, AIResponse, EventType
from .session import create_session
from .transport.base import TransportKind

# Output format options
FORMAT_TABLE = "table"
FORMAT_JSON = "json"


def _configure_logging(verbose: int) -> None:
    level = logging.WARNING
    if verbose == 1:
        level = logging.INFO
    elif verbose >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def format_response(response: AIResponse, output_format: str) -> str:
    """Render one event for display."""
    if output_format == FORMAT_JSON:
        return response.model_dump_json(by_alias=True, exclude_none=True)

    text = response.message or response.content or ""
    if response.type == EventType.PROGRESS.value and isinstance(response.data, dict):
        progress = response.data.get("progress")
        stage = response.data.get("stage")
        if progress is not None or stage:
            text = f"{progress if progress is not None else '?'}% {stage or ''} {text}".strip()
    if response.file is not None:
        text = f"{text} ({response.file.path})".strip()
    return f"[{response.type}] {text}".rstrip()


@click.group()
@click.option("--url", default=None, help="Backend base URL (default: $CODEGEN_SESSION_URL)")
@click.option(
    "--cookie",
    "cookies",
    multiple=True,
    help="Authentication cookie as NAME=VALUE (repeatable)",
)
@click.option(
    "--handshake-timeout",
    type=float,
    default=None,
    help="Seconds to wait for the WebSocket before falling back to SSE",
)
@click.option("-v", "--verbose", count=True, help="Increase log verbosity (-v, -vv)")
@click.pass_context
def main(
    ctx: click.Context,
    url: str | None,
    cookies: tuple[str, ...],
    handshake_timeout: float | None,
    verbose: int,
) -> None:
    """Codegen session client - drive AI code generation over WebSocket or SSE."""
    _configure_logging(verbose)

    overrides: dict[str, object] = {}
    if url:
        overrides["base_url"] = url
    if cookies:
        overrides["cookies"] = parse_cookie_header(";".join(cookies))
    if handshake_timeout is not None:
        overrides["handshake_timeout"] = handshake_timeout

    ctx.obj = SessionConfig.from_env(**overrides)


@main.command()
@click.argument("prompt")
@click.option("--request-id", default=None, help="Request id (default: generated)")
@click.option("--project-id", default=None, help="Project to scope the request to")
@click.option("--file", "active_file", default=None, help="Active file path")
@click.option("--model", default=None, help="Model to use")
@click.option(
    "--mode",
    type=click.Choice(["coding", "conversation"]),
    default=None,
    help="Generation mode",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_obj
def generate(
    config: SessionConfig,
    prompt: str,
    request_id: str | None,
    project_id: str | None,
    active_file: str | None,
    model: str | None,
    mode: str | None,
    output_format: str,
) -> None:
    """Send PROMPT and print events until the request finishes.

    Examples:

        # Generate in the context of a project
        codegen-session generate "Add a dark mode toggle" --project-id proj_42

        # JSON lines for scripting
        codegen-session generate "Fix the navbar" -f json
    """
    request_id = request_id or f"req_{uuid.uuid4().hex[:12]}"

    async def run() -> bool:
        session = create_session(config)
        done = asyncio.Event()
        failed = False

        def on_response(response: AIResponse) -> None:
            nonlocal failed
            if response.request_id != request_id:
                return
            click.echo(format_response(response, output_format))
            if response.type in TERMINAL_EVENT_TYPES:
                failed = response.type == EventType.ERROR.value
                done.set()

        def on_error(error: BaseException) -> None:
            nonlocal failed
            click.echo(f"Connection error: {error}", err=True)
            if isinstance(error, ReconnectExhaustedError) or (
                isinstance(error, StreamError) and error.request_id == request_id
            ):
                failed = True
                done.set()

        session.on("*", on_response)
        session.on_error(on_error)

        async with session:
            if session.connection_type == TransportKind.DISCONNECTED:
                click.echo("No connection available", err=True)
                return False
            click.echo(f"Connected via {session.connection_type.value}", err=True)

            await session.generate_code(
                request_id,
                prompt,
                project_id=project_id,
                active_file=active_file,
                model=model,
                mode=mode,
            )
            # SSE returns at end of stream; WebSocket needs a terminal event.
            if session.connection_type == TransportKind.WEBSOCKET:
                await done.wait()
        return not failed

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice([FORMAT_TABLE, FORMAT_JSON]),
    default=FORMAT_TABLE,
    help="Output format",
)
@click.pass_obj
def capabilities(config: SessionConfig, output_format: str) -> None:
    """Negotiate a transport and show what it supports."""

    async def run() -> tuple[TransportKind, dict[str, bool]]:
        async with create_session(config) as session:
            return session.connection_type, session.get_capabilities().to_dict()

    kind, caps = asyncio.run(run())

    if output_format == FORMAT_JSON:
        click.echo(json.dumps({"transport": kind.value, "capabilities": caps}, indent=2))
        return

    click.echo(f"Transport: {kind.value}")
    for name, enabled in caps.items():
        click.echo(f"  {name:<18} {'yes' if enabled else 'no'}")
    if kind == TransportKind.DISCONNECTED:
        sys.exit(1)


if __name__ == "__main__":
    main()
