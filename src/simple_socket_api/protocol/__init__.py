"""Wire protocol layer.

Defines the envelope exchanged over text frames and the reply helper
given to command handlers.

Key concepts:
- Commands: named requests carrying an integer `id` chosen by the sender
- Replies: `int:reply` / `int:errorReply` envelopes echoing that `id`
- Binary replies: an `int:binaryReply` marker followed by one raw binary frame
"""

from .envelope import (
    INTERNAL_PREFIX,
    RESERVED_NAMES,
    Envelope,
    InternalCommand,
    LifecycleEvent,
    MalformedEnvelope,
    encode_exception,
    is_binary,
    make_json_default,
    validate_command_name,
)
from .reply import Reply, ReplyHelper, Thunk, Value, as_reply

__all__ = [
    "INTERNAL_PREFIX",
    "RESERVED_NAMES",
    "Envelope",
    "InternalCommand",
    "LifecycleEvent",
    "MalformedEnvelope",
    "encode_exception",
    "is_binary",
    "make_json_default",
    "validate_command_name",
    "Reply",
    "ReplyHelper",
    "Thunk",
    "Value",
    "as_reply",
]
