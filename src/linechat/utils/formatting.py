"""Formatting helpers for log and console output."""

from __future__ import annotations

from typing import Any

UNKNOWN_PEER = "unknown"


def format_peer(peername: Any) -> str:
    """Reduce a socket peername to the client host.

    asyncio reports ``(host, port)`` for IPv4 and ``(host, port, flowinfo,
    scope_id)`` for IPv6; only the host identifies the client.
    """
    if isinstance(peername, (tuple, list)) and peername:
        return str(peername[0])
    if isinstance(peername, str) and peername:
        return peername
    return UNKNOWN_PEER


def format_duration(ms: int) -> str:
    """Format milliseconds to human-readable duration."""
    if ms < 1000:
        return f"{ms}ms"
    elif ms < 60000:
        return f"{ms / 1000:.1f}s"
    else:
        minutes = ms // 60000
        seconds = (ms % 60000) // 1000
        return f"{minutes}m {seconds}s"


def format_listen_address(host: str, port: int) -> str:
    """Render a listen address for humans (empty host means all interfaces)."""
    if not host:
        return f"*:{port}"
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def preview(message: str, limit: int = 80) -> str:
    """Shorten a message for single-line log output."""
    if len(message) <= limit:
        return message
    return message[:limit] + "..."
