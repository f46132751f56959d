"""Reply helper handed to command handlers.

A handler receives ``(reply, payload)`` and may answer by calling
``reply(value)``, ``reply(value, is_error=True)`` or ``reply(thunk)``.
Replying is optional; a command can be treated as fire-and-forget.

A thunk is a zero-argument callable (sync or async) producing the reply
payload. Exceptions raised while producing it are sent back as an error
reply, so a failing handler rejects the sender's request instead of
surfacing on the receiving side.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..endpoint import Endpoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Value:
    """A reply payload that is ready to send."""

    payload: Any


@dataclass(frozen=True)
class Thunk:
    """A deferred reply payload, computed (and awaited) when the reply is sent."""

    fn: Callable[[], Any | Awaitable[Any]]


Reply = Value | Thunk


def as_reply(reply: Any) -> Reply:
    """Normalise a handler's argument to a Reply variant.

    Value and Thunk pass through; other callables become a Thunk and
    everything else a Value.
    """
    if isinstance(reply, (Value, Thunk)):
        return reply
    if callable(reply):
        return Thunk(reply)
    return Value(reply)


class ReplyHelper:
    """Sends the reply for one received command."""

    def __init__(self, endpoint: Endpoint, msg_id: int | None, cmd: str):
        self._endpoint = endpoint
        self.id = msg_id
        self.cmd = cmd

    def __call__(self, reply: Any = None, is_error: bool = False) -> asyncio.Task[None] | None:
        """Send the reply.

        Args:
            reply: The payload, or a Value/Thunk (plain callables are thunks)
            is_error: Send an error reply instead of a reply

        Returns:
            The task producing the reply for thunks, None otherwise

        Raises:
            ConfigurationError: For a binary payload with is_error set
        """
        variant = as_reply(reply)
        if isinstance(variant, Value):
            self._endpoint._send_reply(self.id, variant.payload, is_error)
            return None
        if isinstance(variant, Thunk):
            return asyncio.ensure_future(self._run_thunk(variant, is_error))
        raise TypeError(f"Unknown reply variant: {variant!r}")

    async def _run_thunk(self, thunk: Thunk, is_error: bool) -> None:
        try:
            payload = thunk.fn()
            if inspect.isawaitable(payload):
                payload = await payload
            self._endpoint._send_reply(self.id, payload, is_error)
        except Exception as e:
            logger.debug(f"Reply to {self.cmd!r} (id={self.id}) failed: {e}")
            self._endpoint._send_reply(self.id, e, True)

    def __repr__(self) -> str:
        return f"ReplyHelper(cmd={self.cmd!r}, id={self.id!r})"
