"""Endpoint configuration.

Options are plain dataclass fields. ``EndpointConfig.from_env`` reads the
``SOCKET_API_*`` environment variables, with explicit keyword overrides
taking precedence.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Any

from .errors import ConfigurationError

wire_logger = logging.getLogger("simple_socket_api.wire")

# Called with a direction tag ("outgoing", "incoming", ...) and the frame detail
DebugSink = Callable[[str, Any], None]

ENV_PREFIX = "SOCKET_API_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class BinaryType(str, Enum):
    """Python type used for binary frames handed to the caller."""

    BYTES = "bytes"
    BYTEARRAY = "bytearray"
    MEMORYVIEW = "memoryview"

    def convert(self, data: bytes | bytearray | memoryview) -> bytes | bytearray | memoryview:
        """Convert a received binary frame to this representation."""
        if self is BinaryType.BYTEARRAY:
            return data if isinstance(data, bytearray) else bytearray(data)
        if self is BinaryType.MEMORYVIEW:
            return data if isinstance(data, memoryview) else memoryview(data)
        return data if isinstance(data, bytes) else bytes(data)


def log_debug_sink(text: str, value: Any = None) -> None:
    """Default debug sink: log protocol I/O to the ``simple_socket_api.wire`` logger."""
    if value is not None:
        wire_logger.debug(f"{text}: {value!r}")
    else:
        wire_logger.debug(text)


@dataclass
class EndpointConfig:
    """Configuration for an Endpoint."""

    # False disables protocol debugging, True logs through log_debug_sink
    debug: bool | DebugSink = False

    # Passed to json.dumps(default=...) for values JSON can't encode natively
    json_default: Callable[[Any], Any] | None = None

    binary_type: BinaryType = BinaryType.BYTES

    # Destroy the endpoint when the bound transport closes
    destroy_on_close: bool = False

    # Seconds to wait for a reply when send() is given no timeout
    default_timeout: float = 2.0

    def __post_init__(self) -> None:
        if not isinstance(self.binary_type, BinaryType):
            try:
                self.binary_type = BinaryType(self.binary_type)
            except ValueError as e:
                raise ConfigurationError(f"Unknown binary type: {self.binary_type!r}") from e
        if self.default_timeout <= 0:
            raise ConfigurationError(
                f"default_timeout must be positive, got {self.default_timeout!r}"
            )

    @property
    def debug_sink(self) -> DebugSink | None:
        """The callable to report protocol I/O to, or None when disabled."""
        if self.debug is True:
            return log_debug_sink
        if callable(self.debug):
            return self.debug
        return None

    def with_options(self, **options: Any) -> EndpointConfig:
        """Return a copy with the given fields replaced."""
        known = {f.name for f in fields(self)}
        unknown = set(options) - known
        if unknown:
            raise ConfigurationError(f"Unknown endpoint options: {', '.join(sorted(unknown))}")
        return replace(self, **options)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides: Any) -> EndpointConfig:
        """Build a config from ``SOCKET_API_*`` environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)
            **overrides: Field values that take precedence over the environment
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}

        if (raw := env.get(f"{ENV_PREFIX}DEBUG")) is not None:
            values["debug"] = _parse_bool("DEBUG", raw)
        if (raw := env.get(f"{ENV_PREFIX}DESTROY_ON_CLOSE")) is not None:
            values["destroy_on_close"] = _parse_bool("DESTROY_ON_CLOSE", raw)
        if (raw := env.get(f"{ENV_PREFIX}TIMEOUT")) is not None:
            try:
                values["default_timeout"] = float(raw)
            except ValueError as e:
                raise ConfigurationError(f"{ENV_PREFIX}TIMEOUT is not a number: {raw!r}") from e
        if (raw := env.get(f"{ENV_PREFIX}BINARY_TYPE")) is not None:
            values["binary_type"] = raw.strip().lower()

        values.update(overrides)
        return cls().with_options(**values)


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{ENV_PREFIX}{name} is not a boolean: {raw!r}")
