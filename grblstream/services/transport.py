from __future__ import annotations

import glob
import logging
import os
import time
from typing import Any, Dict, List, Optional

import serial  # pyserial
import serial.tools.list_ports

from .errors import TransportError

logger = logging.getLogger("transport")

WAKE_SEQUENCE = b"\r\n\r\n"
DEFAULT_SETTLE_S = 2.0


# =============================================================================
# Port discovery / opening
# =============================================================================

def list_ports() -> List[Dict[str, str]]:
    """
    Return a LIST of serial ports with metadata, for picking the controller.
    """
    ports: List[Dict[str, str]] = []
    for p in serial.tools.list_ports.comports():
        by_id = ""
        for link in glob.glob("/dev/serial/by-id/*"):
            if os.path.realpath(link) == p.device:
                by_id = link
                break
        ports.append({
            "device": p.device,
            "by_id": by_id,
            "description": p.description or "",
            "manufacturer": getattr(p, "manufacturer", "") or "",
            "vid": f"{p.vid:04x}" if p.vid is not None else "",
            "pid": f"{p.pid:04x}" if p.pid is not None else "",
        })
    return ports


def open_serial(port: str, baud: int, write_timeout_s: Optional[float] = None) -> serial.Serial:
    """
    Open the port 8N1 without flow control. Reads block until told otherwise.
    """
    logger.info("Opening serial port %s @ %d", port, baud)
    try:
        return serial.Serial(
            port=port,
            baudrate=baud,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=None,
            write_timeout=write_timeout_s,
            rtscts=False,
            dsrdtr=False,
            xonxoff=False,
        )
    except (serial.SerialException, OSError) as e:
        raise TransportError(f"Cannot open serial port {port}: {e}") from e


# =============================================================================
# Transport
# =============================================================================

class SerialTransport:
    """
    Line-oriented duplex channel over a borrowed, already configured port.

    The port is not closed here; whoever opened it owns it.
    """

    def __init__(self, port: Any):
        self.port = port

    def send(self, data: bytes) -> None:
        try:
            written = self.port.write(data)
            self.port.flush()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Write to serial port failed: {e}") from e
        if written is not None and written != len(data):
            raise TransportError(f"Short write: {written} of {len(data)} bytes")

    def receive_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Read one line, terminator included. timeout=None waits forever.
        Returns None when a bounded wait produced nothing; a partial line
        left by a closing channel is returned as-is.
        """
        # pyserial reconfigures the tty on every timeout assignment
        try:
            prev_to = self.port.timeout
            if prev_to != timeout:
                self.port.timeout = timeout
            try:
                raw = self.port.readline()
            finally:
                if self.port.timeout != prev_to:
                    self.port.timeout = prev_to
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Read from serial port failed: {e}") from e
        if not raw:
            return None
        return raw.decode("utf-8", errors="replace")

    def wake(self, sequence: bytes = WAKE_SEQUENCE, settle_s: float = DEFAULT_SETTLE_S) -> None:
        """
        Nudge the controller out of its reset, let it boot, then drop the
        startup chatter so the first reply we read belongs to us.
        """
        self.send(sequence)
        time.sleep(max(0.0, settle_s))
        try:
            self.port.reset_input_buffer()
        except (serial.SerialException, OSError) as e:
            raise TransportError(f"Flushing serial input failed: {e}") from e
