"""System utility checks."""

from __future__ import annotations

import os
import socket
from datetime import datetime
from pathlib import Path
from typing import Callable

Clock = Callable[[], datetime]


def local_now() -> datetime:
    """Current local time, timezone-aware."""
    return datetime.now().astimezone()


def check_port_available(host: str, port: int) -> tuple[bool, str]:
    """Check whether a TCP port can be bound on this host."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host or "0.0.0.0", port))
        except OSError as e:
            return False, f"Port {port} unavailable: {e.strerror or e}"
    return True, f"Port {port} is free"


def check_transcript_dir(path: str) -> tuple[bool, str]:
    """Validate (and create) a transcript directory path."""
    resolved = Path(path).expanduser().resolve()
    if resolved.exists() and not resolved.is_dir():
        return False, f"Not a directory: {resolved}"
    try:
        resolved.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return False, f"Cannot create {resolved}: {e.strerror or e}"
    if not os.access(resolved, os.W_OK):
        return False, f"Directory not writable: {resolved}"
    return True, str(resolved)
