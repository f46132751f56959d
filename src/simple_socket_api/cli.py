"""simple-socket-api CLI.

Usage:
    simple-socket-api serve                          # Serve /ws on 127.0.0.1:4096
    simple-socket-api serve --port 8080 --debug      # Custom port, log protocol I/O
    simple-socket-api call ws://localhost:4096/ws ping
    simple-socket-api call ws://localhost:4096/ws echo '{"a": 1}'
    simple-socket-api health                         # Check server health
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
import httpx

from .config import EndpointConfig
from .endpoint import Endpoint
from .errors import ConfigurationError, RemoteError, ReplyTimeoutError, SocketAPIError
from .protocol.envelope import is_binary
from .transport.websocket import WebSocketClientTransport

# Bytes of a binary reply shown as hex
HEX_PREVIEW = 32


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def format_result(result: Any) -> str:
    """Format a reply payload for display."""
    if is_binary(result):
        data = bytes(result)
        preview = data[:HEX_PREVIEW].hex()
        suffix = "..." if len(data) > HEX_PREVIEW else ""
        return f"<{len(data)} bytes: {preview}{suffix}>"
    return json.dumps(result, indent=2)


@click.group()
def main() -> None:
    """Command/reply protocol over WebSockets."""


@main.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=4096, help="Port to bind to")
@click.option("--debug", is_flag=True, help="Log every frame sent and received")
def serve(host: str, port: int, debug: bool) -> None:
    """Serve the protocol on /ws."""
    import uvicorn

    from .app import create_app

    _setup_logging(debug)
    try:
        config = EndpointConfig.from_env(debug=True) if debug else EndpointConfig.from_env()
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e

    click.echo(f"Serving on ws://{host}:{port}/ws", err=True)
    uvicorn.run(create_app(config=config), host=host, port=port)


@main.command()
@click.argument("url")
@click.argument("cmd")
@click.argument("payload", required=False)
@click.option("--timeout", default=2.0, help="Seconds to wait for the reply")
@click.option("--debug", is_flag=True, help="Log every frame sent and received")
def call(url: str, cmd: str, payload: str | None, timeout: float, debug: bool) -> None:
    """Send CMD with an optional JSON PAYLOAD and print the reply."""
    _setup_logging(debug)
    try:
        value = json.loads(payload) if payload is not None else None
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"not valid JSON: {e}", param_hint="PAYLOAD") from e

    try:
        result = asyncio.run(_call(url, cmd, value, timeout, debug))
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e
    except RemoteError as e:
        click.echo(f"Remote error: {e}", err=True)
        sys.exit(1)
    except ReplyTimeoutError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    except (ConnectionError, SocketAPIError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    click.echo(format_result(result))


async def _call(url: str, cmd: str, payload: Any, timeout: float, debug: bool) -> Any:
    transport = await WebSocketClientTransport.connect(url)
    async with Endpoint(transport, EndpointConfig(debug=debug)) as endpoint:
        future = endpoint.send(cmd, payload, timeout=timeout)
        if future is None:
            raise ConnectionError(f"Connection to {url} is not open")
        result = await future
    await transport.wait_closed()
    return result


@main.command()
@click.option("--url", default="http://localhost:4096", help="Server URL")
def health(url: str) -> None:
    """Check server health."""

    async def check() -> None:
        try:
            async with httpx.AsyncClient() as client:
                response = await client.get(f"{url}/health")
                if response.status_code == 200:
                    click.echo(f"Server is healthy: {response.json()}")
                else:
                    click.echo(f"Server returned {response.status_code}", err=True)
                    sys.exit(1)
        except httpx.ConnectError:
            click.echo(f"Cannot connect to server at {url}", err=True)
            sys.exit(1)

    asyncio.run(check())


if __name__ == "__main__":
    main()
