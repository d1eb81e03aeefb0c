from __future__ import annotations

from collections import deque
from typing import Iterable, List, Optional, Tuple

import pytest
import serial


class FakeSerial:
    """
    Scripted stand-in for serial.Serial. Every write and readline is recorded
    in `log` so tests can check how sends and replies interleave.
    """

    def __init__(self, replies: Iterable[bytes] = (), fail_write: bool = False, short_write: bool = False):
        self.replies = deque(replies)
        self.fail_write = fail_write
        self.short_write = short_write
        self.timeout: Optional[float] = 5.0
        self.read_timeouts: List[Optional[float]] = []
        self.written: List[bytes] = []
        self.log: List[Tuple[str, bytes]] = []
        self.flushes = 0
        self.input_resets = 0
        self.closed = False

    def write(self, data: bytes) -> int:
        if self.fail_write:
            raise serial.SerialException("device disconnected")
        self.written.append(data)
        self.log.append(("write", data))
        return len(data) - 1 if self.short_write else len(data)

    def flush(self) -> None:
        self.flushes += 1

    def readline(self) -> bytes:
        self.read_timeouts.append(self.timeout)
        line = self.replies.popleft() if self.replies else b""
        self.log.append(("read", line))
        return line

    def reset_input_buffer(self) -> None:
        self.input_resets += 1

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_serial():
    def make(*replies: bytes, **kw) -> FakeSerial:
        return FakeSerial(replies, **kw)
    return make


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("grblstream.services.transport.time.sleep", lambda s: None)


class UnpluggedSerial(FakeSerial):
    """
    Behaves like pyserial after the USB device disappears: readline fails,
    and so does every later attempt to reconfigure the port.
    """

    def __init__(self, *a, **kw):
        self.unplugged = False
        self.timeout_sets = 0
        super().__init__(*a, **kw)

    @property
    def timeout(self):
        return self._timeout

    @timeout.setter
    def timeout(self, value):
        if self.unplugged:
            raise serial.SerialException("Could not configure port: (5, 'Input/output error')")
        self.timeout_sets += 1
        self._timeout = value

    def readline(self) -> bytes:
        self.unplugged = True
        raise serial.SerialException("device reports readiness to read but returned no data")


@pytest.fixture
def unplugged_serial():
    def make(*replies: bytes, **kw) -> UnpluggedSerial:
        return UnpluggedSerial(replies, **kw)
    return make
