from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Literal, Optional

from .classifier import DEFAULT_POLICY, ResponseKind, ResponsePolicy
from .errors import CommandTooLongError, DeviceError, TransportError
from .source import Command, CommandSource
from .transport import SerialTransport

logger = logging.getLogger("scheduler")

# GRBL has a 128 byte serial RX buffer; one byte is kept back as margin.
RX_BUFFER_SIZE = 127


@dataclass(frozen=True)
class StreamEvent:
    kind: Literal["sent", "acknowledged", "ignored"]
    text: str
    length: int
    capacity: int


Listener = Callable[[StreamEvent], None]


class FlowControlScheduler:
    """
    Character-counting flow control.

    The controller acknowledges a line only after executing it, so waiting
    for each "ok" would starve its planner. Instead we keep our own estimate
    of free space in its receive buffer, send whatever fits, and give the
    space back one line at a time as acknowledgments arrive. Replies are
    matched to sent lines strictly in order.

    Invariant: rx_buffer_size - capacity == sum(in_flight).
    """

    def __init__(
        self,
        rx_buffer_size: int = RX_BUFFER_SIZE,
        policy: ResponsePolicy = DEFAULT_POLICY,
        listener: Optional[Listener] = None,
    ):
        if rx_buffer_size < 2:
            raise ValueError("rx_buffer_size must leave room for at least one character and a newline")
        self.rx_buffer_size = rx_buffer_size
        self.policy = policy
        self.listener = listener
        self.capacity = rx_buffer_size
        self.in_flight: Deque[int] = deque()
        self.sent_count = 0
        self.ack_count = 0

    # -------------------------------------------------------------------------
    # Single steps
    # -------------------------------------------------------------------------

    def fits(self, command: Command) -> bool:
        return command.wire_length <= self.capacity

    def admit(self, command: Command, transport: SerialTransport) -> None:
        length = command.wire_length
        if length > self.capacity:
            raise RuntimeError(f"admit() called for {length} bytes with only {self.capacity} free")
        transport.send(command.to_bytes())
        self.capacity -= length
        self.in_flight.append(length)
        self.sent_count += 1
        logger.debug("Sent %r (len: %d, available: %d)", command.text, length, self.capacity)
        self._emit(StreamEvent("sent", command.text, length, self.capacity))

    def acknowledge(self, response: str = "ok") -> int:
        """
        Release the oldest in-flight line. Returns the bytes freed (0 when
        nothing was outstanding).
        """
        if not self.in_flight:
            logger.warning("Acknowledgment %r with nothing in flight; ignored", response)
            return 0
        length = self.in_flight.popleft()
        self.capacity += length
        self.ack_count += 1
        logger.debug("Received ok, freed %d bytes (available now: %d)", length, self.capacity)
        self._emit(StreamEvent("acknowledged", response, length, self.capacity))
        return length

    def _emit(self, event: StreamEvent) -> None:
        if self.listener is not None:
            self.listener(event)

    # -------------------------------------------------------------------------
    # Main loop
    # -------------------------------------------------------------------------

    def _fill(self, source: CommandSource, transport: SerialTransport) -> None:
        while self.capacity > 0:
            command = source.next_command()
            if command is None:
                return
            if not self.fits(command):
                if command.wire_length > self.rx_buffer_size:
                    raise CommandTooLongError(command.text, command.wire_length, self.rx_buffer_size)
                source.push_back(command)
                return
            self.admit(command, transport)

    def _await_reply(self, transport: SerialTransport) -> None:
        logger.debug("Waiting for response... (pending: %d, available: %d)",
                     len(self.in_flight), self.capacity)
        while True:
            raw = transport.receive_line(timeout=None)
            if raw is None:
                raise TransportError("Serial channel closed while waiting for a response")
            response = raw.strip()
            logger.debug("Response: %r", response)
            kind = self.policy.classify(response)
            if kind is ResponseKind.ACKNOWLEDGED:
                self.acknowledge(response)
                return
            if kind is ResponseKind.ERROR:
                raise DeviceError(response)
            logger.debug("Ignoring informational reply %r", response)
            self._emit(StreamEvent("ignored", response, 0, self.capacity))

    def stream(self, source: CommandSource, transport: SerialTransport) -> None:
        """
        Send every command from source, returning once all are acknowledged.
        Raises DeviceError or TransportError on the first failure; whatever is
        still in flight at that point stays in in_flight.
        """
        while True:
            self._fill(source, transport)
            if not self.in_flight:
                return
            self._await_reply(transport)
