"""Envelope definitions for the wire protocol.

Every text frame carries one JSON envelope:

    {"cmd": "echo", "payload": {"a": 1}, "id": 0}

`cmd` is either a user command name or one of the internal reply tags
(prefixed with ``int:`` so they can never collide with user commands).
Replies echo the `id` of the command they answer. The binary reply marker
has no payload; the raw bytes follow in the next binary frame.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, Field, StrictInt, ValidationError

from ..errors import ConfigurationError

INTERNAL_PREFIX = "int:"

BINARY_TYPES = (bytes, bytearray, memoryview)


class InternalCommand(str, Enum):
    """Reply tags used by the protocol itself."""

    REPLY = "int:reply"
    ERROR_REPLY = "int:errorReply"
    BINARY_REPLY = "int:binaryReply"


class LifecycleEvent(str, Enum):
    """Endpoint lifecycle notifications. Their names can't be used as commands."""

    OPEN = "open"
    CLOSE = "close"
    ERROR = "error"


RESERVED_NAMES = frozenset(event.value for event in LifecycleEvent)


class MalformedEnvelope(ValueError):
    """A text frame that is not a valid envelope."""


def validate_command_name(cmd: Any) -> str:
    """Check that `cmd` may be used as a user command name.

    Raises:
        ConfigurationError: If the name is not a string, uses the internal
            prefix, or collides with a lifecycle event name.
    """
    if not isinstance(cmd, str):
        raise ConfigurationError(f"cmd must be a string, got {type(cmd).__name__}")
    if cmd.startswith(INTERNAL_PREFIX):
        raise ConfigurationError(f'Only internal commands can start with "{INTERNAL_PREFIX}"')
    if cmd in RESERVED_NAMES:
        raise ConfigurationError(
            f'A command can not be named "{cmd}" because that is an endpoint lifecycle event'
        )
    return cmd


def is_binary(payload: Any) -> bool:
    """Check whether a payload must travel as a raw binary frame."""
    return isinstance(payload, BINARY_TYPES)


def encode_exception(error: BaseException) -> dict[str, str]:
    """JSON representation of an exception sent as an error reply."""
    return {"name": type(error).__name__, "message": str(error)}


def make_json_default(
    user_default: Callable[[Any], Any] | None = None,
) -> Callable[[Any], Any]:
    """Build a ``json.dumps(default=...)`` hook.

    Exceptions are encoded with :func:`encode_exception`; anything else is
    handed to `user_default`, if given.
    """

    def default(value: Any) -> Any:
        if isinstance(value, BaseException):
            return encode_exception(value)
        if user_default is not None:
            return user_default(value)
        raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")

    return default


class Envelope(BaseModel):
    """One protocol message.

    `cmd` may be None only for envelopes received from a misbehaving peer;
    such envelopes are discarded by the dispatcher.
    """

    cmd: str | None = None
    payload: Any = None
    # Non-negative integer; strings and floats are rejected rather than coerced
    id: Annotated[StrictInt, Field(ge=0)] | None = None

    # Set when the payload key must be left out of the wire form
    omit_payload: bool = False

    def is_internal(self) -> bool:
        """Check if this is a reply tag rather than a user command."""
        return self.cmd is not None and self.cmd.startswith(INTERNAL_PREFIX)

    def internal_command(self) -> InternalCommand | None:
        """The reply tag of this envelope, or None for user commands."""
        try:
            return InternalCommand(self.cmd)
        except ValueError:
            return None

    def to_wire(self) -> dict[str, Any]:
        """Dict form as it appears on the wire."""
        data: dict[str, Any] = {"cmd": self.cmd}
        if not self.omit_payload:
            data["payload"] = self.payload
        data["id"] = self.id
        return data

    def to_json(self, default: Callable[[Any], Any] | None = None) -> str:
        """Serialize to a JSON text frame."""
        return json.dumps(self.to_wire(), default=make_json_default(default))

    @classmethod
    def from_json(cls, data: str | bytes) -> Envelope:
        """Parse a JSON text frame.

        Raises:
            MalformedEnvelope: If the frame is not a JSON object with valid fields
        """
        try:
            parsed = json.loads(data)
        except json.JSONDecodeError as e:
            raise MalformedEnvelope(f"Invalid JSON: {e}") from e
        if not isinstance(parsed, dict):
            raise MalformedEnvelope(f"Envelope must be an object, got {type(parsed).__name__}")
        try:
            return cls(
                cmd=parsed.get("cmd"),
                payload=parsed.get("payload"),
                id=parsed.get("id"),
            )
        except ValidationError as e:
            raise MalformedEnvelope(f"Invalid envelope fields: {e}") from e

    # =========================================================================
    # Factory methods
    # =========================================================================

    @classmethod
    def command(cls, cmd: str, payload: Any, msg_id: int) -> Envelope:
        """Create a user command envelope."""
        return cls(cmd=cmd, payload=payload, id=msg_id)

    @classmethod
    def reply(cls, msg_id: int | None, payload: Any, is_error: bool = False) -> Envelope:
        """Create a reply or error reply envelope."""
        tag = InternalCommand.ERROR_REPLY if is_error else InternalCommand.REPLY
        return cls(cmd=tag.value, payload=payload, id=msg_id)

    @classmethod
    def binary_marker(cls, msg_id: int | None) -> Envelope:
        """Create the marker announcing that the next binary frame answers `msg_id`."""
        return cls(cmd=InternalCommand.BINARY_REPLY.value, id=msg_id, omit_payload=True)
