"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from linechat.config import AppConfig, LoggingConfig, ServerConfig, TranscriptConfig


@pytest.fixture
def app_config(tmp_path):
    """Create a test configuration bound to an ephemeral port."""
    return AppConfig(
        server=ServerConfig(host="127.0.0.1", port=0, timeout=5, max_line=1024, close_grace=1),
        transcript=TranscriptConfig(directory=str(tmp_path / "transcripts")),
        logging=LoggingConfig(level="DEBUG", file=str(tmp_path / "test.log")),
    )


class FakeClock:
    """Deterministic clock advancing one second per call."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 17, 13, 45, 9, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now += timedelta(seconds=1)
        return current


@pytest.fixture
def fake_clock():
    return FakeClock()
