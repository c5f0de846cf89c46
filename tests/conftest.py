"""Shared fixtures: temporary resources, fixed clock, store."""

from datetime import datetime

import pytest

from repository import WorkStore


class FakeClock:
    """Callable clock the tests move forward by hand."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def set(self, when: datetime) -> None:
        self.now = when


class RecordingScheduler:
    def __init__(self):
        self.scheduled: list[datetime] = []
        self.cancelled: list[str] = []

    def schedule(self, trigger: datetime) -> str:
        self.scheduled.append(trigger)
        return f"reminder-{len(self.scheduled)}"

    def cancel(self, handle: str) -> None:
        self.cancelled.append(handle)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 12, 18, 9, 0))


@pytest.fixture
def scheduler() -> RecordingScheduler:
    return RecordingScheduler()


@pytest.fixture
def store(tmp_path) -> WorkStore:
    """WorkStore on a throwaway SQLite file and data directory."""
    db_url = f"sqlite:///{(tmp_path / 'pointage.db').as_posix()}"
    return WorkStore(db_url, tmp_path / "work_log.txt", tmp_path / "weekly_summary.txt")
