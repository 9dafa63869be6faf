"""
Pytest configuration and shared fixtures.

Points the snapshot database at a throwaway SQLite file and clears the
settings cache before any app module reads it.
"""

import os
import tempfile

import pytest

_tmp_dir = tempfile.mkdtemp(prefix="message_board_test_")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp_dir, 'test.db')}"
os.environ["LOG_LEVEL"] = "DEBUG"

from message_board.config import get_settings
get_settings.cache_clear()

from message_board.store import MessageStore  # noqa: E402


class FakeClock:
    """Manually advanced nanosecond clock."""

    def __init__(self, start: int = 1_700_000_000 * 1_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1_000_000_000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> MessageStore:
    """Empty store driven by the fake clock."""
    return MessageStore(clock=clock)
