from __future__ import annotations


class StreamError(RuntimeError):
    """Base class for everything that terminates a streaming session."""


class TransportError(StreamError):
    pass


class DeviceError(StreamError):
    """The controller answered with something other than an acknowledgment."""

    def __init__(self, response: str):
        super().__init__(f"Controller reported error: {response}")
        self.response = response


class CommandTooLongError(StreamError):
    def __init__(self, text: str, wire_length: int, rx_buffer_size: int):
        super().__init__(
            f"Command needs {wire_length} bytes but the receive buffer holds {rx_buffer_size}: {text!r}"
        )
        self.text = text
        self.wire_length = wire_length
        self.rx_buffer_size = rx_buffer_size
