"""In-process transport pair.

Two linked transports: a frame sent on one is delivered as a message on the
other. Delivery is scheduled with ``loop.call_soon``, never inline, so frames
arrive in send order and after the sender's current callback returns, like
they would over a real socket.

Usage:
    left, right = create_memory_pair()
    client = Endpoint(left)
    server = Endpoint(right)
"""

from __future__ import annotations

import asyncio
import logging

from .base import BaseTransport, CloseInfo, Frame, TransportEvent, TransportState

logger = logging.getLogger(__name__)


class MemoryTransport(BaseTransport):
    """One side of an in-process transport pair.

    Records every sent frame in `sent_frames` for inspection in tests.
    """

    def __init__(self, name: str = "memory") -> None:
        super().__init__()
        self.name = name
        self.peer: MemoryTransport | None = None
        self.sent_frames: list[Frame] = []

    def open(self) -> None:
        """Mark this side open (both sides of a pair are opened together)."""
        self._set_open()

    def send(self, data: Frame) -> None:
        """Deliver a frame to the peer on the next loop iteration."""
        if self._state != TransportState.OPEN:
            raise ConnectionError(f"{self.name} transport is {self._state.value}")
        if isinstance(data, (bytearray, memoryview)):
            data = bytes(data)
        self.sent_frames.append(data)
        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer._deliver, data)

    def _deliver(self, data: Frame) -> None:
        if self._state == TransportState.OPEN:
            self._emit(TransportEvent.MESSAGE, data)
        else:
            logger.debug(f"{self.name}: dropping frame received while {self._state.value}")

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Close both sides; each notifies its listeners on the next loop iteration."""
        if self._state in (TransportState.CLOSING, TransportState.CLOSED):
            return
        self._state = TransportState.CLOSING
        info = CloseInfo(code=code, reason=reason, was_clean=True)
        loop = asyncio.get_running_loop()
        loop.call_soon(self._set_closed, info)
        if self.peer is not None and self.peer._state not in (
            TransportState.CLOSING,
            TransportState.CLOSED,
        ):
            self.peer._state = TransportState.CLOSING
            loop.call_soon(self.peer._set_closed, info)

    def fail(self, error: Exception, code: int = 1006) -> None:
        """Simulate an abnormal connection loss: error, then unclean close."""
        self._emit(TransportEvent.ERROR, error)
        self._set_closed(CloseInfo(code=code, reason=str(error), was_clean=False))

    def __repr__(self) -> str:
        return f"MemoryTransport(name={self.name!r}, state={self._state.value})"


def create_memory_pair(
    names: tuple[str, str] = ("left", "right"), open: bool = True
) -> tuple[MemoryTransport, MemoryTransport]:
    """Create two linked transports.

    Args:
        names: Names of the two sides (used in logs and repr)
        open: Open both sides immediately

    Returns:
        The two transports
    """
    left, right = MemoryTransport(names[0]), MemoryTransport(names[1])
    left.peer, right.peer = right, left
    if open:
        left.open()
        right.open()
    return left, right
