"""Transport contract.

An Endpoint runs on top of any already-established, message-oriented,
bidirectional transport that provides:
- a connection state (connecting/open/closing/closed)
- open/close/error/message notifications via add_listener/remove_listener
- a non-blocking send(data) that preserves order
- close(code, reason)

Text frames are ``str``; binary frames are ``bytes``-like.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

Frame = str | bytes | bytearray | memoryview
Listener = Callable[..., None]


class TransportState(str, Enum):
    """Connection state machine."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class TransportEvent(str, Enum):
    """Notifications a transport delivers to its listeners.

    Listener arguments:
    - OPEN: none
    - CLOSE: a CloseInfo
    - ERROR: the exception
    - MESSAGE: the received frame
    """

    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"
    MESSAGE = "message"


@dataclass(frozen=True)
class CloseInfo:
    """Detail of a close notification (WebSocket close code semantics)."""

    code: int = 1000
    reason: str = ""
    was_clean: bool = True


@runtime_checkable
class Transport(Protocol):
    """Protocol for transports an Endpoint can be bound to."""

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        ...

    def add_listener(self, event: TransportEvent, callback: Listener) -> None:
        """Register a callback for a notification."""
        ...

    def remove_listener(self, event: TransportEvent, callback: Listener) -> None:
        """Remove a callback registered with add_listener (no-op if absent)."""
        ...

    def send(self, data: Frame) -> None:
        """Queue a text or binary frame for delivery."""
        ...

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Start closing the connection."""
        ...


class BaseTransport(ABC):
    """Base class for transports with common functionality.

    Provides:
    - State management
    - Listener registry and notification delivery
    """

    def __init__(self) -> None:
        self._state = TransportState.CONNECTING
        self._listeners: dict[TransportEvent, list[Listener]] = {
            event: [] for event in TransportEvent
        }

    @property
    def state(self) -> TransportState:
        """Current connection state."""
        return self._state

    @property
    def is_open(self) -> bool:
        """Check if frames can be sent."""
        return self._state == TransportState.OPEN

    def add_listener(self, event: TransportEvent, callback: Listener) -> None:
        """Register a callback for a notification."""
        self._listeners[TransportEvent(event)].append(callback)

    def remove_listener(self, event: TransportEvent, callback: Listener) -> None:
        """Remove a callback registered with add_listener."""
        listeners = self._listeners[TransportEvent(event)]
        if callback in listeners:
            listeners.remove(callback)

    def listener_count(self, event: TransportEvent | None = None) -> int:
        """Number of registered listeners, for one event or in total."""
        if event is not None:
            return len(self._listeners[TransportEvent(event)])
        return sum(len(listeners) for listeners in self._listeners.values())

    def _emit(self, event: TransportEvent, *args: Any) -> None:
        """Deliver a notification to a snapshot of the current listeners."""
        for callback in list(self._listeners[event]):
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Error in {event.value} listener of {self.__class__.__name__}")

    def _set_open(self) -> None:
        if self._state == TransportState.CONNECTING:
            self._state = TransportState.OPEN
            self._emit(TransportEvent.OPEN)

    def _set_closed(self, info: CloseInfo) -> None:
        """Move to CLOSED and notify, once."""
        if self._state == TransportState.CLOSED:
            return
        self._state = TransportState.CLOSED
        self._emit(TransportEvent.CLOSE, info)

    @abstractmethod
    def send(self, data: Frame) -> None:
        """Implementation-specific send logic."""
        ...

    @abstractmethod
    def close(self, code: int = 1000, reason: str = "") -> None:
        """Implementation-specific close logic."""
        ...
