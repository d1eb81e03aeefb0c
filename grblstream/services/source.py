from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, Optional, Union

logger = logging.getLogger("source")

COMMENT_CHAR = ";"
TRAILING_WS = " \t\r\n"
TERMINATOR = "\n"


@dataclass(frozen=True)
class Command:
    text: str

    @property
    def wire_length(self) -> int:
        # encoded bytes plus the terminator byte
        return len(self.to_bytes())

    def to_bytes(self) -> bytes:
        return (self.text + TERMINATOR).encode("utf-8")


def normalize_line(raw: str) -> Optional[str]:
    """
    Strip the comment and trailing whitespace from one raw line.
    Returns None when nothing sendable remains.
    """
    if not raw.strip():
        return None
    pos = raw.find(COMMENT_CHAR)
    if pos != -1:
        raw = raw[:pos]
    line = raw.rstrip(TRAILING_WS)
    return line or None


class CommandSource:
    """
    Forward-only reader of normalized commands with a one-slot lookahead.

    The scheduler hands back a command it could not admit yet via push_back();
    the next call to next_command() returns it again.
    """

    def __init__(self, lines: Iterable[str]):
        self._lines: Iterator[str] = iter(lines)
        self._held: Optional[Command] = None
        self.read_count = 0
        self.skipped_count = 0

    @classmethod
    @contextmanager
    def from_path(cls, path: Union[str, Path]) -> Iterator["CommandSource"]:
        p = Path(path)
        logger.debug("Opening command file %s", p)
        with p.open("r", encoding="utf-8", errors="replace") as f:
            yield cls(f)

    def next_command(self) -> Optional[Command]:
        if self._held is not None:
            cmd, self._held = self._held, None
            return cmd
        for raw in self._lines:
            self.read_count += 1
            text = normalize_line(raw)
            if text is None:
                self.skipped_count += 1
                continue
            return Command(text)
        return None

    def push_back(self, command: Command) -> None:
        if self._held is not None:
            raise RuntimeError("Lookahead slot already occupied.")
        self._held = command

    def __iter__(self) -> Iterator[Command]:
        while True:
            cmd = self.next_command()
            if cmd is None:
                return
            yield cmd
