# domain.py
from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum


class PointageError(Exception):
    """Base error for work-session tracking."""


class InvalidRange(PointageError):
    """Manual entry whose end time is not after its start time."""


class InvalidTransition(PointageError):
    """Action not allowed from the current session status."""


class StateCorrupted(PointageError):
    """Persisted work state cannot be read or breaks its invariants."""


class Status(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    ON_BREAK = "on_break"


class Action(str, Enum):
    START_WORK = "start_work"
    MANUAL_ENTRY = "manual_entry"
    BEGIN_BREAK = "begin_break"
    STOP_WORK = "stop_work"
    END_BREAK = "end_break"
    CONTINUE = "continue"


@dataclass(frozen=True)
class BreakInterval:
    start: datetime
    end: datetime | None = None  # None while the break is open

    @property
    def is_open(self) -> bool:
        return self.end is None


@dataclass(frozen=True)
class WorkState:
    """Live session state. Transitions return a new instance."""
    working: bool = False
    on_break: bool = False
    start_time: datetime | None = None
    breaks: tuple[BreakInterval, ...] = ()
    reminder_handle: str | None = None  # opaque, owned by the scheduler

    @property
    def status(self) -> Status:
        if self.on_break:
            return Status.ON_BREAK
        if self.working:
            return Status.WORKING
        return Status.IDLE

    def validate(self) -> "WorkState":
        """Raises StateCorrupted if the record breaks the session invariants."""
        if self.on_break and not self.working:
            raise StateCorrupted("on_break is set while not working")
        if self.working and self.start_time is None:
            raise StateCorrupted("working without a start time")
        if not self.working and (self.start_time is not None or self.breaks):
            raise StateCorrupted("idle state still carries session data")
        open_idx = [i for i, b in enumerate(self.breaks) if b.is_open]
        if self.on_break and open_idx != [len(self.breaks) - 1]:
            raise StateCorrupted("on_break requires exactly one open break, in last position")
        if not self.on_break and open_idx:
            raise StateCorrupted("open break while not on break")
        prev_end = self.start_time
        for b in self.breaks:
            if prev_end is not None and b.start < prev_end:
                raise StateCorrupted("breaks overlap or precede the session start")
            if b.end is not None and b.end < b.start:
                raise StateCorrupted("break ends before it starts")
            prev_end = b.end
        return self


@dataclass(frozen=True)
class LogEntry:
    """One completed session, ready to be written as a log line."""
    weekday: str
    work_date: date
    start_time: time
    end_time: time
    worked_minutes: int

    @property
    def hours(self) -> int:
        return self.worked_minutes // 60

    @property
    def minutes(self) -> int:
        return self.worked_minutes % 60


@dataclass(frozen=True)
class DecodedEntry:
    """What the aggregation needs back from a log line."""
    work_date: date
    total_minutes: int
    weekday: str = ""
    start_time: time | None = None
    end_time: time | None = None


@dataclass(frozen=True)
class RejectedBreak:
    start: time
    end: time
    reason: str


@dataclass(frozen=True)
class ManualEntryResult:
    entry: LogEntry
    accepted: list[tuple[time, time]] = field(default_factory=list)
    rejected: list[RejectedBreak] = field(default_factory=list)


@dataclass(frozen=True)
class WeeklySummary:
    week_start: date
    week_end: date
    total_minutes: int
    message: str
