from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal, Optional

from .classifier import DEFAULT_POLICY, ResponsePolicy
from .errors import StreamError, TransportError
from .scheduler import RX_BUFFER_SIZE, FlowControlScheduler, Listener
from .source import CommandSource
from .transport import DEFAULT_SETTLE_S, WAKE_SEQUENCE, SerialTransport

logger = logging.getLogger("session")


@dataclass
class SessionSettings:
    rx_buffer_size: int = RX_BUFFER_SIZE
    wake_sequence: bytes = WAKE_SEQUENCE
    settle_s: float = DEFAULT_SETTLE_S
    read_banner: bool = True
    banner_timeout_s: float = 1.0
    policy: ResponsePolicy = field(default_factory=lambda: DEFAULT_POLICY)


@dataclass(frozen=True)
class SessionOutcome:
    status: Literal["completed", "aborted"]
    sent: int
    acknowledged: int
    reason: Optional[str] = None
    abandoned: int = 0   # lines still in flight when the session aborted

    @property
    def ok(self) -> bool:
        return self.status == "completed"

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


def _read_banner(transport: SerialTransport, timeout_s: float) -> Optional[str]:
    """Best effort; the controller may stay silent after the flush."""
    try:
        line = transport.receive_line(timeout=timeout_s)
    except TransportError as e:
        logger.warning("Banner read failed: %s", e)
        return None
    if line and line.strip():
        logger.info("Initial controller response: %s", line.strip())
        return line.strip()
    return None


def run_session(
    source: CommandSource,
    transport: SerialTransport,
    settings: Optional[SessionSettings] = None,
    listener: Optional[Listener] = None,
) -> SessionOutcome:
    """
    Wake the controller, then stream every command from source through the
    flow-control scheduler. Never raises for streaming failures; they come
    back as an aborted outcome.
    """
    settings = settings or SessionSettings()
    scheduler = FlowControlScheduler(
        rx_buffer_size=settings.rx_buffer_size,
        policy=settings.policy,
        listener=listener,
    )

    try:
        logger.debug("Waking up controller...")
        transport.wake(settings.wake_sequence, settings.settle_s)
        if settings.read_banner:
            _read_banner(transport, settings.banner_timeout_s)
        scheduler.stream(source, transport)
    except StreamError as e:
        logger.error("Streaming halted: %s", e)
        return SessionOutcome(
            status="aborted",
            sent=scheduler.sent_count,
            acknowledged=scheduler.ack_count,
            reason=str(e),
            abandoned=len(scheduler.in_flight),
        )

    logger.info("Streaming completed: %d lines sent, %d acknowledged",
                scheduler.sent_count, scheduler.ack_count)
    return SessionOutcome(
        status="completed",
        sent=scheduler.sent_count,
        acknowledged=scheduler.ack_count,
    )
