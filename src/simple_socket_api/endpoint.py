"""Endpoint: command/reply protocol over a bound transport.

Either side of a connection can send a named command and await the
correlated reply, or receive commands and answer them through the reply
helper given to each command handler. Any JSON-encodable payload can be
exchanged; replies can also carry binary data, which is sent as a raw
frame instead of being JSON-encoded.

Architecture:
- Transport binding: listeners on the current transport, which can be
  swapped with bind() without losing handlers, subscriptions or the id counter
- Request tracker: integer ids, pending futures, per-request timeouts
- Dispatcher: routes received frames to handlers, pending requests or the
  binary reply slot

Only one binary reply can be in flight per endpoint: a binary frame always
answers the most recent `int:binaryReply` marker. Callers must not await two
binary replies at the same time.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .config import EndpointConfig
from .errors import (
    ConfigurationError,
    EndpointDestroyedError,
    RemoteError,
    ReplyTimeoutError,
)
from .protocol.envelope import (
    Envelope,
    InternalCommand,
    LifecycleEvent,
    MalformedEnvelope,
    is_binary,
    validate_command_name,
)
from .protocol.reply import ReplyHelper
from .transport.base import CloseInfo, Frame, Transport, TransportEvent, TransportState

logger = logging.getLogger(__name__)

# Synthetic close reported when bind() is given a transport that is already closed
CLOSE_ALREADY_CLOSED = CloseInfo(code=1006, reason="Transport was already closed", was_clean=False)

# Local close reported by destroy()
CLOSE_DESTROYED = CloseInfo(code=1000, reason="Endpoint destroyed", was_clean=True)

CommandHandler = Callable[[ReplyHelper, Any], Any]
LifecycleCallback = Callable[..., Any]


class EndpointState(str, Enum):
    """Endpoint lifecycle state."""

    UNBOUND = "unbound"  # No transport attached yet
    BOUND = "bound"  # Transport attached and not closed
    CLOSED = "closed"  # Transport closed, endpoint not destroyed
    DESTROYED = "destroyed"


@dataclass
class PendingRequest:
    """A sent command awaiting its reply."""

    id: int
    cmd: str
    future: asyncio.Future[Any]
    timer: asyncio.TimerHandle

    def resolve(self, result: Any) -> None:
        self.timer.cancel()
        if not self.future.done():
            self.future.set_result(result)

    def reject(self, error: BaseException) -> None:
        self.timer.cancel()
        if not self.future.done():
            self.future.set_exception(error)


class Endpoint:
    """One side of the command/reply protocol.

    Usage:
        endpoint = Endpoint(transport)

        def on_echo(reply, payload):
            reply(payload)

        endpoint.handle("echo", on_echo)
        result = await endpoint.send("echo", {"a": 1})
    """

    def __init__(
        self,
        transport: Transport | None = None,
        config: EndpointConfig | None = None,
    ):
        self.config = config or EndpointConfig()
        self._transport: Transport | None = None
        self._destroyed = False

        self._msg_id = 0
        self._pending: dict[int, PendingRequest] = {}
        self._binary_slot: PendingRequest | None = None
        # Requests whose marker was overridden by a later one; only their timeout settles them
        self._displaced: dict[int, PendingRequest] = {}
        self._tasks: set[asyncio.Future[Any]] = set()

        self._handlers: dict[str, list[CommandHandler]] = {}
        self._subscribers: dict[LifecycleEvent, list[LifecycleCallback]] = {
            event: [] for event in LifecycleEvent
        }

        self._transport_listeners: dict[TransportEvent, Callable[..., None]] = {
            TransportEvent.OPEN: self._on_open,
            TransportEvent.ERROR: self._on_error,
            TransportEvent.CLOSE: self._on_close,
            TransportEvent.MESSAGE: self._on_message,
        }

        if transport is not None:
            self.bind(transport)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def transport(self) -> Transport | None:
        """The currently bound transport."""
        return self._transport

    @property
    def state(self) -> EndpointState:
        """Current lifecycle state."""
        if self._destroyed:
            return EndpointState.DESTROYED
        if self._transport is None:
            return EndpointState.UNBOUND
        if self._transport.state == TransportState.CLOSED:
            return EndpointState.CLOSED
        return EndpointState.BOUND

    @property
    def is_open(self) -> bool:
        """Check if a transport is bound and open."""
        return self._transport is not None and self._transport.state == TransportState.OPEN

    @property
    def is_closed(self) -> bool:
        """Check if a transport is bound and closed."""
        return self._transport is not None and self._transport.state == TransportState.CLOSED

    @property
    def is_destroyed(self) -> bool:
        return self._destroyed

    @property
    def pending_count(self) -> int:
        """Number of sent commands still awaiting a reply."""
        return len(self._pending)

    # =========================================================================
    # Transport binding & lifecycle
    # =========================================================================

    def bind(self, transport: Transport) -> None:
        """Attach to a transport, detaching from the previous one.

        Handlers, subscriptions, pending requests and the id counter are kept.
        If the transport is already open (or closed), the open (or close)
        notification is scheduled on the event loop rather than published
        inline, so listeners added right after bind() still receive it.
        """
        if self._destroyed:
            return
        if self._transport is not None:
            self._detach()

        self._transport = transport
        for event, listener in self._transport_listeners.items():
            transport.add_listener(event, listener)
        logger.info(f"Endpoint bound to {transport!r}")

        if transport.state == TransportState.CLOSED:
            self._schedule(transport, self._on_close, CLOSE_ALREADY_CLOSED)
        elif transport.state == TransportState.OPEN:
            self._schedule(transport, self._on_open)

    def destroy(self) -> None:
        """Make the endpoint inert. Safe to call more than once.

        Pending requests are rejected with EndpointDestroyedError. An open
        transport is closed and a local close notification is published.
        All handlers and subscriptions are then dropped.
        """
        if self._destroyed:
            return
        self._destroyed = True
        logger.info("Endpoint destroyed")

        self._reject_all_pending()

        transport = self._transport
        self._detach()
        if transport is not None and transport.state != TransportState.CLOSED:
            if transport.state != TransportState.CLOSING:
                transport.close(CLOSE_DESTROYED.code, CLOSE_DESTROYED.reason)
            self._publish(LifecycleEvent.CLOSE, CLOSE_DESTROYED)

        self._handlers.clear()
        for callbacks in self._subscribers.values():
            callbacks.clear()

    def _detach(self) -> None:
        if self._transport is None:
            return
        for event, listener in self._transport_listeners.items():
            self._transport.remove_listener(event, listener)

    def _schedule(self, transport: Transport, callback: Callable[..., None], *args: Any) -> None:
        def run() -> None:
            # Dropped if rebound or destroyed in the meantime
            if self._destroyed or self._transport is not transport:
                logger.debug(f"Dropping stale {callback.__name__} for {transport!r}")
                return
            callback(*args)

        asyncio.get_running_loop().call_soon(run)

    def _reject_all_pending(self) -> None:
        pending = [*self._pending.values(), *self._displaced.values()]
        if self._binary_slot is not None:
            pending.append(self._binary_slot)
        self._pending.clear()
        self._displaced.clear()
        self._binary_slot = None
        for request in pending:
            request.reject(EndpointDestroyedError(request.cmd))

    async def __aenter__(self) -> Endpoint:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.destroy()

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(self, event: LifecycleEvent | str, callback: LifecycleCallback) -> Callable[[], None]:
        """Subscribe to a lifecycle notification.

        Callback arguments: OPEN none, CLOSE a CloseInfo, ERROR the exception.

        Returns:
            Unsubscribe function
        """
        if self._destroyed:
            return lambda: None
        key = LifecycleEvent(event)
        self._subscribers[key].append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers[key]:
                self._subscribers[key].remove(callback)

        return unsubscribe

    def handle(self, cmd: str, handler: CommandHandler) -> Callable[[], None]:
        """Register a handler for a command received from the other side.

        The handler is called with ``(reply, payload)``; coroutine functions
        are scheduled as tasks. Several handlers may share a command name.

        Returns:
            Unsubscribe function

        Raises:
            ConfigurationError: If the command name is invalid or reserved
        """
        if self._destroyed:
            return lambda: None
        validate_command_name(cmd)
        self._handlers.setdefault(cmd, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(cmd)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[cmd]

        return unsubscribe

    def unhandle(self, cmd: str, handler: CommandHandler | None = None) -> None:
        """Remove one handler for a command, or all of them."""
        if handler is None:
            self._handlers.pop(cmd, None)
            return
        handlers = self._handlers.get(cmd)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[cmd]

    def handler_count(self, cmd: str) -> int:
        return len(self._handlers.get(cmd, ()))

    def _publish(self, event: LifecycleEvent, *args: Any) -> None:
        for callback in list(self._subscribers[event]):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    self._track(result, f"async {event.value} subscriber")
            except Exception:
                logger.exception(f"Error in {event.value} subscriber")

    # =========================================================================
    # Outbound requests
    # =========================================================================

    def send(
        self, cmd: str, payload: Any = None, timeout: float | None = None
    ) -> asyncio.Future[Any] | None:
        """Send a command and return a future for its reply.

        The future resolves with the reply payload, or fails with RemoteError
        (error reply), ReplyTimeoutError (no reply within `timeout` seconds)
        or EndpointDestroyedError.

        Returns None without sending anything if the endpoint is destroyed or
        the transport is not open. Must be called from a running event loop.

        Raises:
            ConfigurationError: If the command name is invalid or reserved
        """
        if self._destroyed:
            return None
        validate_command_name(cmd)
        if not self.is_open:
            logger.debug(f"Not sending {cmd!r}: transport not open")
            return None

        timeout = self.config.default_timeout if timeout is None else timeout
        msg_id = self._msg_id
        self._msg_id += 1

        self._transmit(Envelope.command(cmd, payload, msg_id))

        loop = asyncio.get_running_loop()
        future: asyncio.Future[Any] = loop.create_future()
        timer = loop.call_later(timeout, self._on_timeout, msg_id, cmd, timeout)
        self._pending[msg_id] = PendingRequest(id=msg_id, cmd=cmd, future=future, timer=timer)
        return future

    def _on_timeout(self, msg_id: int, cmd: str, timeout: float) -> None:
        request = self._pending.pop(msg_id, None)
        if request is None:
            request = self._displaced.pop(msg_id, None)
        if request is None and self._binary_slot is not None and self._binary_slot.id == msg_id:
            request, self._binary_slot = self._binary_slot, None
        if request is not None:
            request.reject(ReplyTimeoutError(cmd, timeout))

    def _transmit(self, envelope: Envelope) -> None:
        """Serialize and send one envelope."""
        self._debug("outgoing", envelope.to_wire())
        data = envelope.to_json(self.config.json_default)
        self._send_frame(data)

    def _send_frame(self, data: Frame) -> None:
        if self._transport is None:
            raise ConnectionError("Endpoint is not bound to a transport")
        self._transport.send(data)

    def _send_reply(self, msg_id: int | None, payload: Any, is_error: bool) -> None:
        """Send a reply, error reply or binary reply for a received command."""
        if self._destroyed:
            return
        if is_binary(payload):
            if is_error:
                raise ConfigurationError("Can't send a binary error reply.")
            if not self.is_open:
                logger.debug(f"Dropping binary reply to id={msg_id}: transport not open")
                return
            self._transmit(Envelope.binary_marker(msg_id))
            self._debug("outgoing binary", {"size": memoryview(payload).nbytes, "id": msg_id})
            self._send_frame(payload)
            return
        if not self.is_open:
            logger.debug(f"Dropping reply to id={msg_id}: transport not open")
            return
        self._transmit(Envelope.reply(msg_id, payload, is_error))

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    def _on_open(self) -> None:
        self._publish(LifecycleEvent.OPEN)

    def _on_error(self, error: BaseException) -> None:
        self._publish(LifecycleEvent.ERROR, error)

    def _on_close(self, info: CloseInfo) -> None:
        self._detach()
        self._publish(LifecycleEvent.CLOSE, info)
        if self.config.destroy_on_close:
            self.destroy()

    def _on_message(self, data: Frame) -> None:
        if self._destroyed:
            return
        if not isinstance(data, str):
            self._on_binary(data)
            return

        try:
            envelope = Envelope.from_json(data)
        except MalformedEnvelope as e:
            self._debug("Invalid message received", {"error": str(e), "data": data})
            return
        self._debug("incoming", envelope.to_wire())

        cmd = envelope.cmd
        if cmd is None:
            self._debug("Invalid message received", envelope.to_wire())
            return

        tag = envelope.internal_command()
        if tag is None:
            self._dispatch_command(cmd, envelope)
        else:
            self._dispatch_reply(tag, envelope)

    def _on_binary(self, data: bytes | bytearray | memoryview) -> None:
        request = self._binary_slot
        if request is None:
            self._debug("Un-awaited binary payload.", {"size": len(data)})
            return
        self._binary_slot = None
        self._debug("incoming binary", {"size": len(data), "id": request.id})
        request.resolve(self.config.binary_type.convert(data))

    def _dispatch_reply(self, tag: InternalCommand, envelope: Envelope) -> None:
        request = self._pending.pop(envelope.id, None) if envelope.id is not None else None
        if request is None:
            self._debug(f"Un-awaited {tag.value}", envelope.payload)
            return

        if tag is InternalCommand.REPLY:
            request.resolve(envelope.payload)
        elif tag is InternalCommand.ERROR_REPLY:
            request.reject(RemoteError(envelope.payload))
        elif tag is InternalCommand.BINARY_REPLY:
            # Settled by the next binary frame; timeout stays armed until then
            displaced = self._binary_slot
            if displaced is not None:
                logger.debug(
                    f"Binary reply for id={envelope.id} replaces the one awaited for "
                    f"id={displaced.id}"
                )
                self._displaced[displaced.id] = displaced
            self._binary_slot = request

    def _dispatch_command(self, cmd: str, envelope: Envelope) -> None:
        handlers = list(self._handlers.get(cmd, ()))
        if not handlers:
            self._send_reply(envelope.id, f"No listener for command: {cmd}", True)
            return

        reply = ReplyHelper(self, envelope.id, cmd)
        for handler in handlers:
            try:
                result = handler(reply, envelope.payload)
                if inspect.isawaitable(result):
                    self._track(result, f"async handler for command {cmd!r}")
            except Exception:
                logger.exception(f"Error in handler for command {cmd!r}")

    def _track(self, awaitable: Any, description: str) -> asyncio.Future[Any]:
        """Run a handler or subscriber coroutine, logging its failure."""
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def done(task: asyncio.Future[Any]) -> None:
            self._tasks.discard(task)
            if task.cancelled():
                return
            error = task.exception()
            if error is not None:
                logger.error(f"Error in {description}: {error}", exc_info=error)

        task.add_done_callback(done)
        return task

    # =========================================================================
    # Debugging
    # =========================================================================

    def _debug(self, text: str, value: Any = None) -> None:
        sink = self.config.debug_sink
        if sink is not None:
            sink(text, value)

    def __repr__(self) -> str:
        return f"Endpoint(state={self.state.value}, pending={len(self._pending)})"


def create_endpoint(transport: Transport | None = None, **options: Any) -> Endpoint:
    """Create an endpoint from keyword options.

    Args:
        transport: Transport to bind immediately
        **options: EndpointConfig fields (debug, json_default, binary_type,
            destroy_on_close, default_timeout)

    Returns:
        Endpoint configured with the given options
    """
    return Endpoint(transport, EndpointConfig().with_options(**options))
