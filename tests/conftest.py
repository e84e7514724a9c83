"""Common test fixtures for the Sticky Note engine."""

import tempfile
from pathlib import Path

import pytest

from stickynote.backup import BackupManager
from stickynote.config import StickyNoteConfig
from stickynote.observability import metrics
from stickynote.storage.note_store import NoteStore

# 2024-05-01 09:30:12 UTC
START_TIME = 1714555812.0


class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def data_dir():
    """Create a temporary data directory."""
    with tempfile.TemporaryDirectory() as tmp:
        yield Path(tmp) / "data"


@pytest.fixture
def test_config(data_dir):
    """Configuration pointing at the temporary data directory."""
    return StickyNoteConfig(
        data_dir=data_dir,
        history_max_files=50,
        snapshot_interval_seconds=20,
        trash_enabled=True,
        legacy_tag="legacy",
        log_dir=None,
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(test_config, clock):
    """A loaded note store driven by the fake clock."""
    note_store = NoteStore(test_config, clock=clock)
    note_store.ensure_loaded()
    return note_store


@pytest.fixture
def backup_manager(test_config, clock):
    return BackupManager(test_config, clock=clock)


@pytest.fixture(autouse=True)
def _reset_metrics():
    """Keep the process-wide metrics collector isolated per test."""
    metrics.reset()
    yield
    metrics.reset()
