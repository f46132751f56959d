"""Starlette application serving an Endpoint per WebSocket connection.

Routes:
- /health - Health check
- /ws     - WebSocket speaking the command/reply protocol

Every connection gets its own Endpoint, destroyed when the connection
closes, with these commands registered:
- ping        - replies "pong"
- echo        - replies with its payload
- echo.bytes  - replies with the UTF-8 encoding of a string payload, as a
                binary reply
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from .config import EndpointConfig
from .endpoint import Endpoint
from .protocol.reply import ReplyHelper
from .transport.websocket import StarletteWebSocketTransport

logger = logging.getLogger(__name__)

EndpointSetup = Callable[[Endpoint], None]


def _ping(reply: ReplyHelper, payload: Any) -> None:
    reply("pong")


def _echo(reply: ReplyHelper, payload: Any) -> None:
    reply(payload)


def _echo_bytes(reply: ReplyHelper, payload: Any) -> None:
    def encode() -> bytes:
        if not isinstance(payload, str):
            raise TypeError(f"echo.bytes expects a string payload, got {type(payload).__name__}")
        return payload.encode("utf-8")

    reply(encode)


def register_builtin_commands(endpoint: Endpoint) -> None:
    """Register the commands every served connection answers."""
    endpoint.handle("ping", _ping)
    endpoint.handle("echo", _echo)
    endpoint.handle("echo.bytes", _echo_bytes)


async def health_check(request: Request) -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({"status": "ok"})


def create_app(
    setup: EndpointSetup | None = None,
    config: EndpointConfig | None = None,
) -> Starlette:
    """Create the application.

    Args:
        setup: Called with each new connection's Endpoint to register
               additional command handlers
        config: Endpoint configuration (destroy_on_close is always set)

    Returns:
        Configured Starlette application
    """
    endpoint_config = (config or EndpointConfig.from_env()).with_options(destroy_on_close=True)

    async def websocket_endpoint(websocket: WebSocket) -> None:
        transport = StarletteWebSocketTransport(websocket)
        await transport.accept()

        endpoint = Endpoint(transport, endpoint_config)
        register_builtin_commands(endpoint)
        if setup is not None:
            setup(endpoint)

        client = websocket.client
        logger.info(f"WebSocket client connected: {client}")
        try:
            await transport.run()
        finally:
            endpoint.destroy()
            logger.info(f"WebSocket client disconnected: {client}")

    routes: list[Route | WebSocketRoute] = [
        Route("/health", health_check, methods=["GET"]),
        WebSocketRoute("/ws", websocket_endpoint),
    ]
    return Starlette(routes=routes)
