"""WebSocket transport adapters.

Wrap an established WebSocket connection in the Transport contract:
- WebSocketClientTransport: a `websockets` client connection
- StarletteWebSocketTransport: a server-side Starlette WebSocket

Both funnel outgoing frames through one queue drained by one writer task,
so frames reach the wire in the order send() was called. A binary reply
relies on this: its marker envelope and its raw frame are two sends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import abstractmethod
from dataclasses import dataclass
from typing import Any

import websockets
from starlette.websockets import WebSocket, WebSocketDisconnect, WebSocketState
from websockets.exceptions import ConnectionClosed

from .base import BaseTransport, CloseInfo, Frame, TransportEvent, TransportState

logger = logging.getLogger(__name__)

# Close code reported when the connection dropped without a close frame
ABNORMAL_CLOSURE = 1006


@dataclass(frozen=True)
class _CloseRequest:
    """Queued after pending frames so they are flushed before closing."""

    code: int
    reason: str


class _QueuedTransport(BaseTransport):
    """Outgoing queue and writer task shared by the WebSocket adapters."""

    def __init__(self) -> None:
        super().__init__()
        self._outbox: asyncio.Queue[Frame | _CloseRequest] = asyncio.Queue()
        self._writer_task: asyncio.Task[None] | None = None

    def send(self, data: Frame) -> None:
        """Queue a frame for the writer task."""
        if self._state != TransportState.OPEN:
            raise ConnectionError(f"WebSocket is {self._state.value}")
        if isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        self._outbox.put_nowait(data)

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Close after the frames queued so far have been written."""
        if self._state in (TransportState.CLOSING, TransportState.CLOSED):
            return
        if self._writer_task is None:
            self._set_closed(CloseInfo(code=code, reason=reason, was_clean=True))
            return
        self._state = TransportState.CLOSING
        self._outbox.put_nowait(_CloseRequest(code, reason))

    def _start_writer(self) -> None:
        self._writer_task = asyncio.create_task(self._write_loop())

    async def _stop_writer(self) -> None:
        if self._writer_task and not self._writer_task.done():
            self._writer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer_task
        self._writer_task = None

    async def _write_loop(self) -> None:
        while True:
            item = await self._outbox.get()
            try:
                if isinstance(item, _CloseRequest):
                    await self._write_close(item.code, item.reason)
                    self._set_closed(CloseInfo(code=item.code, reason=item.reason, was_clean=True))
                    return
                await self._write(item)
            except (ConnectionClosed, WebSocketDisconnect, RuntimeError) as e:
                # Connection went away under us; the reader reports the close
                logger.debug(f"{self.__class__.__name__} write stopped: {e}")
                return

    @abstractmethod
    async def _write(self, data: Frame) -> None:
        """Write one frame to the underlying WebSocket."""
        ...

    @abstractmethod
    async def _write_close(self, code: int, reason: str) -> None:
        """Send the close frame."""
        ...


class WebSocketClientTransport(_QueuedTransport):
    """Client-side WebSocket transport over the `websockets` library.

    Usage:
        transport = await WebSocketClientTransport.connect("ws://localhost:4096/ws")
        endpoint = Endpoint(transport)
    """

    def __init__(self, websocket: Any):
        super().__init__()
        self._websocket = websocket  # websockets client connection
        self._reader_task: asyncio.Task[None] | None = None

    @classmethod
    async def connect(cls, url: str, **kwargs: Any) -> WebSocketClientTransport:
        """Open a WebSocket connection and start pumping frames.

        Args:
            url: ws:// or wss:// URL (http:// and https:// are converted)
            **kwargs: Passed to websockets.connect

        Raises:
            ConnectionError: If the connection can't be established
        """
        ws_url = url.replace("http://", "ws://").replace("https://", "wss://")
        kwargs.setdefault("ping_interval", 30)
        kwargs.setdefault("ping_timeout", 10)
        try:
            websocket = await websockets.connect(ws_url, **kwargs)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise ConnectionError(f"Failed to connect to {ws_url}: {e}") from e

        transport = cls(websocket)
        transport.start()
        logger.info(f"WebSocket connected to {ws_url}")
        return transport

    def start(self) -> None:
        """Start the reader and writer tasks and mark the transport open."""
        self._start_writer()
        self._reader_task = asyncio.create_task(self._read_loop())
        self._set_open()

    async def wait_closed(self) -> None:
        """Wait until the connection is closed."""
        if self._reader_task:
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task

    async def _read_loop(self) -> None:
        """Background task emitting received frames."""
        try:
            async for data in self._websocket:
                self._emit(TransportEvent.MESSAGE, data)
        except ConnectionClosed as e:
            self._emit(TransportEvent.ERROR, e)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"WebSocket receive loop error: {e}")
            self._emit(TransportEvent.ERROR, e)
        finally:
            await self._stop_writer()
            code = getattr(self._websocket, "close_code", None)
            reason = getattr(self._websocket, "close_reason", None) or ""
            self._set_closed(
                CloseInfo(
                    code=code if code is not None else ABNORMAL_CLOSURE,
                    reason=reason,
                    was_clean=code is not None and code != ABNORMAL_CLOSURE,
                )
            )

    async def _write(self, data: Frame) -> None:
        await self._websocket.send(data)

    async def _write_close(self, code: int, reason: str) -> None:
        await self._websocket.close(code, reason)


class StarletteWebSocketTransport(_QueuedTransport):
    """Server-side WebSocket transport over a Starlette WebSocket.

    Usage:
        transport = StarletteWebSocketTransport(websocket)
        await transport.accept()
        endpoint = Endpoint(transport)
        await transport.run()
    """

    def __init__(self, websocket: WebSocket):
        super().__init__()
        self._websocket = websocket

    async def accept(self) -> None:
        """Accept the WebSocket connection and mark the transport open."""
        if self._websocket.client_state == WebSocketState.CONNECTING:
            await self._websocket.accept()
        if self._writer_task is None:
            self._start_writer()
        self._set_open()

    async def run(self) -> None:
        """Receive frames until the client disconnects."""
        if self._state == TransportState.CONNECTING:
            await self.accept()

        info = CloseInfo(code=1000, reason="", was_clean=True)
        try:
            while self._state == TransportState.OPEN:
                message = await self._websocket.receive()
                if message["type"] == "websocket.disconnect":
                    info = CloseInfo(
                        code=message.get("code", 1000),
                        reason=message.get("reason") or "",
                        was_clean=True,
                    )
                    break
                if message.get("text") is not None:
                    self._emit(TransportEvent.MESSAGE, message["text"])
                elif message.get("bytes") is not None:
                    self._emit(TransportEvent.MESSAGE, message["bytes"])
        except WebSocketDisconnect as e:
            info = CloseInfo(code=e.code, reason=e.reason or "", was_clean=True)
        except RuntimeError as e:
            # receive() after the server side closed
            logger.debug(f"WebSocket receive stopped: {e}")
        except Exception as e:
            logger.exception(f"WebSocket receive error: {e}")
            self._emit(TransportEvent.ERROR, e)
            info = CloseInfo(code=1011, reason=str(e), was_clean=False)
        finally:
            if self._state == TransportState.CLOSING:
                # Let the writer flush queued frames and send the close frame
                with contextlib.suppress(asyncio.CancelledError):
                    if self._writer_task:
                        await self._writer_task
            await self._stop_writer()
            self._set_closed(info)

    async def _write(self, data: Frame) -> None:
        if isinstance(data, str):
            await self._websocket.send_text(data)
        else:
            await self._websocket.send_bytes(data)

    async def _write_close(self, code: int, reason: str) -> None:
        await self._websocket.close(code=code, reason=reason)
