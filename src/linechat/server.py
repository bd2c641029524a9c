"""TCP server setup and lifecycle."""

from __future__ import annotations

import asyncio
import logging
import signal
from typing import Any

from linechat.config import AppConfig
from linechat.services.session import SessionHandler
from linechat.utils.formatting import format_listen_address

logger = logging.getLogger(__name__)


def _log_loop_error(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Route uncaught event-loop errors (e.g. failed accepts) to our logger."""
    exc = context.get("exception")
    message = context.get("message", "Unhandled event loop error")
    if exc is not None:
        logger.error("%s: %s", message, exc)
    else:
        logger.error("%s", message)


async def start_server(config: AppConfig, handler: SessionHandler | None = None) -> asyncio.Server:
    """Bind the listener and start accepting connections.

    Every accepted connection runs ``handler.handle`` in its own task.
    Raises OSError if the address cannot be bound.
    """
    session_handler = handler or SessionHandler(config)
    server = await asyncio.start_server(
        session_handler.handle,
        host=config.server.host or None,
        port=config.server.port,
        limit=config.server.max_line,
    )
    logger.info(
        "Server started on %s with %d second timeout",
        format_listen_address(config.server.host, bound_port(server)),
        config.server.timeout,
    )
    return server


def bound_port(server: asyncio.Server) -> int:
    """Return the port actually bound (useful when configured with port 0)."""
    return server.sockets[0].getsockname()[1]


async def run_server(config: AppConfig) -> None:
    """Start the server and run until SIGINT/SIGTERM."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_log_loop_error)

    server = await start_server(config)

    # Wait for shutdown signal
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _signal_handler)

    await stop_event.wait()

    # Stop accepting; in-flight sessions are cancelled when the loop exits
    logger.info("Shutting down server...")
    server.close()
    logger.info("Server stopped.")
