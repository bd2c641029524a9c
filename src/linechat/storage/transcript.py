"""Per-client transcript files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TextIO

from linechat.storage.models import TranscriptEntry
from linechat.utils.system import Clock, local_now

logger = logging.getLogger(__name__)


def transcript_filename(peer: str) -> str:
    """Derive a path-safe file name from a client address."""
    return f"{peer.replace(':', '_')}.log"


class TranscriptSink:
    """Append-only record of the messages received from one client."""

    def __init__(self, path: Path, clock: Clock = local_now) -> None:
        self.path = path
        self._clock = clock
        self._file: TextIO | None = open(path, "a", encoding="utf-8")
        self.entries = 0

    def append(self, message: str) -> TranscriptEntry:
        """Record a message, stamped with the current time."""
        if self._file is None:
            raise RuntimeError(f"Transcript closed: {self.path}")
        entry = TranscriptEntry(timestamp=self._clock(), message=message)
        self._file.write(entry.render())
        self._file.flush()
        self.entries += 1
        return entry

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def __enter__(self) -> TranscriptSink:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def open_transcript(directory: str, peer: str, clock: Clock = local_now) -> TranscriptSink:
    """Open (creating if needed) the transcript file for ``peer``.

    Raises OSError when the directory or file cannot be created.
    """
    resolved = Path(directory).expanduser().resolve()
    resolved.mkdir(parents=True, exist_ok=True)
    path = resolved / transcript_filename(peer)
    sink = TranscriptSink(path, clock=clock)
    logger.debug("Transcript opened: %s", path)
    return sink
