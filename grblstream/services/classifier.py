from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List


class ResponseKind(enum.Enum):
    ACKNOWLEDGED = "acknowledged"
    ERROR = "error"
    INFORMATIONAL = "informational"


@dataclass(frozen=True)
class ResponsePolicy:
    """
    Token lists matched case-insensitively anywhere in a reply.

    ok_tokens win over info_tokens; a reply matching neither is an error.
    With no info_tokens (the default) every non-ack reply aborts the stream.
    """
    ok_tokens: List[str] = field(default_factory=lambda: ["ok"])
    info_tokens: List[str] = field(default_factory=list)

    def matches(self, line: str, tokens: List[str]) -> bool:
        low = line.lower()
        return any(tok in low for tok in map(str.lower, tokens) if tok)

    def classify(self, line: str) -> ResponseKind:
        line = line.strip()
        if self.matches(line, self.ok_tokens):
            return ResponseKind.ACKNOWLEDGED
        if self.matches(line, self.info_tokens):
            return ResponseKind.INFORMATIONAL
        return ResponseKind.ERROR


DEFAULT_POLICY = ResponsePolicy()


def classify(line: str, policy: ResponsePolicy = DEFAULT_POLICY) -> ResponseKind:
    return policy.classify(line)
