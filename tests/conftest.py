"""
Shared pytest configuration and fixtures.

Clocks are injected so tests can force tag collisions deterministically
instead of racing the system clock.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from env_archive.store import ArchiveStore

EPOCH_2026 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Returns the same instant on every call."""

    def __init__(self, instant: datetime = EPOCH_2026):
        self.instant = instant

    def __call__(self) -> datetime:
        return self.instant


class SteppingClock:
    """Advances by ``step`` on every call, starting at ``start``."""

    def __init__(self, start: datetime = EPOCH_2026, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = now + self.step
        return now


def write_file(path: Path, content: bytes | str) -> Path:
    """Create ``path`` (and its parents) holding ``content``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, str):
        content = content.encode()
    path.write_bytes(content)
    return path


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "archive.db"


@pytest.fixture
def store(db_path):
    s = ArchiveStore.init(db_path)
    yield s
    s.close()


@pytest.fixture
def project(tmp_path):
    """An empty project directory, canonicalized."""
    d = tmp_path / "project"
    d.mkdir()
    return d.resolve()
