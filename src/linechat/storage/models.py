"""Data models for linechat."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class CommandResult:
    """Response computed for one input line."""

    response: str
    terminate: bool = False


@dataclass(frozen=True)
class TranscriptEntry:
    """A single received message as recorded in a client transcript."""

    timestamp: datetime
    message: str

    def render(self) -> str:
        return f"[{self.timestamp.isoformat(timespec='seconds')}] {self.message}\n"


@dataclass
class SessionStats:
    """Per-connection counters reported on disconnect."""

    peer: str
    messages: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started_at) * 1000)
