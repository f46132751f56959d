"""Unit tests for endpoint configuration."""

import logging

import pytest

from simple_socket_api.config import BinaryType, EndpointConfig, log_debug_sink
from simple_socket_api.errors import (
    ConfigurationError,
    EndpointDestroyedError,
    RemoteError,
    ReplyTimeoutError,
    SocketAPIError,
)


class TestEndpointConfig:
    """Tests for EndpointConfig defaults and validation."""

    def test_defaults(self) -> None:
        config = EndpointConfig()

        assert config.debug is False
        assert config.debug_sink is None
        assert config.json_default is None
        assert config.binary_type is BinaryType.BYTES
        assert config.destroy_on_close is False
        assert config.default_timeout == 2.0

    def test_debug_true_uses_logging_sink(self) -> None:
        assert EndpointConfig(debug=True).debug_sink is log_debug_sink

    def test_debug_callable_is_sink(self) -> None:
        calls = []

        def sink(text, value):
            calls.append((text, value))

        config = EndpointConfig(debug=sink)
        config.debug_sink("outgoing", {"id": 0})

        assert calls == [("outgoing", {"id": 0})]

    def test_binary_type_from_string(self) -> None:
        assert EndpointConfig(binary_type="bytearray").binary_type is BinaryType.BYTEARRAY

    def test_unknown_binary_type(self) -> None:
        with pytest.raises(ConfigurationError, match="binary type"):
            EndpointConfig(binary_type="blob")

    @pytest.mark.parametrize("timeout", [0, -1.5])
    def test_non_positive_timeout(self, timeout: float) -> None:
        with pytest.raises(ConfigurationError, match="default_timeout"):
            EndpointConfig(default_timeout=timeout)

    def test_with_options(self) -> None:
        config = EndpointConfig().with_options(destroy_on_close=True, default_timeout=5)

        assert config.destroy_on_close is True
        assert config.default_timeout == 5

    def test_with_unknown_option(self) -> None:
        with pytest.raises(ConfigurationError, match="reconnect"):
            EndpointConfig().with_options(reconnect=True)


class TestConfigFromEnv:
    """Tests for environment-based configuration."""

    def test_empty_environment(self) -> None:
        assert EndpointConfig.from_env({}) == EndpointConfig()

    def test_all_variables(self) -> None:
        config = EndpointConfig.from_env(
            {
                "SOCKET_API_DEBUG": "1",
                "SOCKET_API_DESTROY_ON_CLOSE": "true",
                "SOCKET_API_TIMEOUT": "0.5",
                "SOCKET_API_BINARY_TYPE": "MemoryView",
            }
        )

        assert config.debug is True
        assert config.destroy_on_close is True
        assert config.default_timeout == 0.5
        assert config.binary_type is BinaryType.MEMORYVIEW

    def test_false_values(self) -> None:
        config = EndpointConfig.from_env({"SOCKET_API_DEBUG": "off"})

        assert config.debug is False

    def test_overrides_take_precedence(self) -> None:
        config = EndpointConfig.from_env({"SOCKET_API_TIMEOUT": "9"}, default_timeout=1.0)

        assert config.default_timeout == 1.0

    def test_invalid_boolean(self) -> None:
        with pytest.raises(ConfigurationError, match="SOCKET_API_DEBUG"):
            EndpointConfig.from_env({"SOCKET_API_DEBUG": "maybe"})

    def test_invalid_timeout(self) -> None:
        with pytest.raises(ConfigurationError, match="SOCKET_API_TIMEOUT"):
            EndpointConfig.from_env({"SOCKET_API_TIMEOUT": "soon"})

    def test_reads_os_environ(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SOCKET_API_DESTROY_ON_CLOSE", "yes")

        assert EndpointConfig.from_env().destroy_on_close is True


class TestBinaryType:
    """Tests for converting received binary frames."""

    def test_bytes(self) -> None:
        result = BinaryType.BYTES.convert(bytearray(b"ab"))

        assert type(result) is bytes
        assert result == b"ab"

    def test_bytearray(self) -> None:
        result = BinaryType.BYTEARRAY.convert(b"ab")

        assert type(result) is bytearray
        assert result == bytearray(b"ab")

    def test_memoryview(self) -> None:
        result = BinaryType.MEMORYVIEW.convert(b"ab")

        assert isinstance(result, memoryview)
        assert result.tobytes() == b"ab"

    def test_same_type_is_not_copied(self) -> None:
        data = b"ab"

        assert BinaryType.BYTES.convert(data) is data


class TestDebugSink:
    """Tests for the logging-backed debug sink."""

    def test_logs_to_wire_logger(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="simple_socket_api.wire"):
            log_debug_sink("outgoing", {"cmd": "echo"})
            log_debug_sink("Un-awaited binary payload.")

        messages = [r.getMessage() for r in caplog.records if r.name == "simple_socket_api.wire"]
        assert messages == ["outgoing: {'cmd': 'echo'}", "Un-awaited binary payload."]


class TestErrors:
    """Tests for the error taxonomy."""

    def test_hierarchy(self) -> None:
        assert issubclass(ConfigurationError, SocketAPIError)
        assert issubclass(RemoteError, SocketAPIError)
        assert issubclass(ReplyTimeoutError, TimeoutError)
        assert issubclass(EndpointDestroyedError, SocketAPIError)

    def test_remote_error_keeps_payload(self) -> None:
        error = RemoteError("No listener for command: foo")

        assert error.payload == "No listener for command: foo"
        assert str(error) == "No listener for command: foo"

    def test_remote_error_describes_encoded_exception(self) -> None:
        error = RemoteError({"name": "ValueError", "message": "boom"})

        assert str(error) == "ValueError: boom"

    def test_timeout_error_names_command(self) -> None:
        error = ReplyTimeoutError("slow", 0.05)

        assert error.cmd == "slow"
        assert error.timeout == 0.05
        assert "'slow'" in str(error)

    def test_destroyed_error(self) -> None:
        assert "'echo'" in str(EndpointDestroyedError("echo"))
        assert str(EndpointDestroyedError()) == "Endpoint destroyed"
