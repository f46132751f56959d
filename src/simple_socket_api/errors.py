"""Error types raised by the command/reply protocol.

Configuration errors are raised synchronously to the caller. Remote, timeout
and destroyed errors are delivered as rejections of the future returned by
``Endpoint.send``.
"""

from __future__ import annotations

from typing import Any


class SocketAPIError(Exception):
    """Base class for all protocol errors."""


class ConfigurationError(SocketAPIError, ValueError):
    """Invalid use of the API (bad command name, binary error reply, bad config)."""


class RemoteError(SocketAPIError):
    """The other endpoint answered a command with an error reply.

    The remote payload is kept unchanged in ``payload``; it can be any JSON
    value, e.g. ``"No listener for command: foo"`` or the encoded exception
    raised by a reply thunk on the remote side.
    """

    def __init__(self, payload: Any):
        self.payload = payload
        super().__init__(self._describe(payload))

    @staticmethod
    def _describe(payload: Any) -> str:
        if isinstance(payload, dict) and "message" in payload:
            name = payload.get("name", "Error")
            return f"{name}: {payload['message']}"
        return str(payload)


class ReplyTimeoutError(SocketAPIError, TimeoutError):
    """No reply arrived for a command within its timeout."""

    def __init__(self, cmd: str, timeout: float):
        self.cmd = cmd
        self.timeout = timeout
        super().__init__(f"No reply to command {cmd!r} within {timeout:.3f} sec")


class EndpointDestroyedError(SocketAPIError):
    """The endpoint was destroyed while a command was awaiting its reply."""

    def __init__(self, cmd: str | None = None):
        self.cmd = cmd
        detail = f" before command {cmd!r} was answered" if cmd else ""
        super().__init__(f"Endpoint destroyed{detail}")
