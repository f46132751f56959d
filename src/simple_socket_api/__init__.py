"""Simple command/reply API on top of a WebSocket-like transport.

Either side can send a named command and await its reply, or answer
commands received from the other side. Commands sent to a side with no
handler for them fail with a RemoteError. Replies can carry any JSON value
or raw binary data.
"""

from .config import BinaryType, EndpointConfig
from .endpoint import Endpoint, EndpointState, create_endpoint
from .errors import (
    ConfigurationError,
    EndpointDestroyedError,
    RemoteError,
    ReplyTimeoutError,
    SocketAPIError,
)
from .protocol import LifecycleEvent, ReplyHelper, Thunk, Value
from .transport import CloseInfo, Transport, TransportState, create_memory_pair

__version__ = "0.1.0"

__all__ = [
    "BinaryType",
    "EndpointConfig",
    "Endpoint",
    "EndpointState",
    "create_endpoint",
    "ConfigurationError",
    "EndpointDestroyedError",
    "RemoteError",
    "ReplyTimeoutError",
    "SocketAPIError",
    "LifecycleEvent",
    "ReplyHelper",
    "Thunk",
    "Value",
    "CloseInfo",
    "Transport",
    "TransportState",
    "create_memory_pair",
]
