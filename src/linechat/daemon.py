"""Background process support: daemonizing and PID file tracking."""

from __future__ import annotations

import logging
import os
import signal
import sys
import time
from pathlib import Path

logger = logging.getLogger(__name__)

STOP_TIMEOUT = 5.0
POLL_INTERVAL = 0.1


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists but owned by someone else
        return True
    return True


class PidFile:
    """PID file for the running server; stale entries are cleaned up on read."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(os.getpid()))

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def read(self) -> int | None:
        """Return the recorded PID if that process is still alive."""
        try:
            pid = int(self.path.read_text().strip())
        except FileNotFoundError:
            return None
        except ValueError:
            logger.warning("Corrupt PID file removed: %s", self.path)
            self.remove()
            return None

        if not _process_alive(pid):
            self.remove()
            return None
        return pid


def stop_process(pid_file: PidFile, timeout: float = STOP_TIMEOUT) -> bool:
    """Terminate the server recorded in ``pid_file``.

    Sends SIGTERM, waits up to ``timeout`` seconds, then falls back to
    SIGKILL. Returns False if no server was running.
    """
    pid = pid_file.read()
    if pid is None:
        return False

    try:
        os.kill(pid, signal.SIGTERM)
    except ProcessLookupError:
        pid_file.remove()
        return True

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _process_alive(pid):
            pid_file.remove()
            return True
        time.sleep(POLL_INTERVAL)

    logger.warning("PID %d ignored SIGTERM, sending SIGKILL", pid)
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass

    pid_file.remove()
    return True


def daemonize(log_file: Path) -> None:
    """Detach from the terminal (Unix double fork), sending stdio to ``log_file``."""
    if os.fork() > 0:
        sys.exit(0)

    os.setsid()

    if os.fork() > 0:
        sys.exit(0)

    sys.stdout.flush()
    sys.stderr.flush()

    with open(os.devnull, "r") as devnull, open(log_file, "a") as log_fd:
        os.dup2(devnull.fileno(), sys.stdin.fileno())
        os.dup2(log_fd.fileno(), sys.stdout.fileno())
        os.dup2(log_fd.fileno(), sys.stderr.fileno())
