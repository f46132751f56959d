"""Transport layer.

An Endpoint can be bound to anything implementing the Transport protocol:
- MemoryTransport - in-process linked pair, for tests and embedding
- WebSocketClientTransport - client connection via the websockets library
- StarletteWebSocketTransport - server-side Starlette WebSocket
"""

from .base import (
    BaseTransport,
    CloseInfo,
    Frame,
    Transport,
    TransportEvent,
    TransportState,
)
from .memory import MemoryTransport, create_memory_pair
from .websocket import StarletteWebSocketTransport, WebSocketClientTransport

__all__ = [
    # Base abstractions
    "BaseTransport",
    "CloseInfo",
    "Frame",
    "Transport",
    "TransportEvent",
    "TransportState",
    # In-process
    "MemoryTransport",
    "create_memory_pair",
    # WebSocket
    "StarletteWebSocketTransport",
    "WebSocketClientTransport",
]
