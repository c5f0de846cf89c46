# services.py
from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Optional, Protocol

from loguru import logger

from config import (
    DEFAULT_BREAK_END,
    DEFAULT_BREAK_START,
    DEFAULT_END,
    DEFAULT_START,
    REMINDER_OFFSET,
)
from domain import (
    Action,
    BreakInterval,
    DecodedEntry,
    InvalidRange,
    InvalidTransition,
    LogEntry,
    ManualEntryResult,
    RejectedBreak,
    Status,
    WeeklySummary,
    WorkState,
)
from utils import (
    floor_minutes,
    format_date,
    format_hm,
    format_time,
    last_week_range,
    now_local,
    weekday_fr,
)

REASON_INVERTED = "ignorée : la fin est avant le début"
REASON_OUTSIDE = "ignorée : en dehors de la période de travail"

MENUS = {
    Status.IDLE: [Action.START_WORK, Action.MANUAL_ENTRY],
    Status.WORKING: [Action.BEGIN_BREAK, Action.STOP_WORK],
    Status.ON_BREAK: [Action.END_BREAK, Action.CONTINUE],
}

ACTION_LABELS = {
    Action.START_WORK: "Commencer le travail",
    Action.MANUAL_ENTRY: "Saisie manuelle",
    Action.BEGIN_BREAK: "Commencer une pause",
    Action.STOP_WORK: "Arrêter le travail",
    Action.END_BREAK: "Terminer la pause",
    Action.CONTINUE: "Rester en pause",
}

STATUS_LABELS = {
    Status.IDLE: "Sélectionnez une action",
    Status.WORKING: "Que voulez-vous faire ?",
    Status.ON_BREAK: "Terminer la pause ?",
}


# =========================
# Collaborators
# =========================
class Prompter(Protocol):
    """Host UI. Every call returns None when the user cancels."""

    def choose(self, status: Status, options: list[Action]) -> Optional[Action]: ...

    def ask_break_count(self) -> Optional[str]: ...

    def pick_date(self, default: date) -> Optional[date]: ...

    def pick_time(self, label: str, default: time) -> Optional[time]: ...

    def notify(self, message: str) -> None: ...


class Scheduler(Protocol):
    def schedule(self, trigger: datetime) -> str: ...

    def cancel(self, handle: str) -> None: ...


class PresetPrompter:
    """Prompter answering from values collected beforehand (forms, tests).

    Answers are consumed in order; a missing answer means cancellation.
    """

    def __init__(
        self,
        choice: Optional[Action] = None,
        break_count: Optional[str] = None,
        work_date: Optional[date] = None,
        times: Iterable[Optional[time]] = (),
    ):
        self.choice = choice
        self.break_count = break_count
        self.work_date = work_date
        self._times = deque(times)
        self.messages: list[str] = []

    def choose(self, status: Status, options: list[Action]) -> Optional[Action]:
        return self.choice if self.choice in options else None

    def ask_break_count(self) -> Optional[str]:
        return self.break_count

    def pick_date(self, default: date) -> Optional[date]:
        return self.work_date

    def pick_time(self, label: str, default: time) -> Optional[time]:
        return self._times.popleft() if self._times else None

    def notify(self, message: str) -> None:
        self.messages.append(message)


# =========================
# Worked time
# =========================
def worked_minutes(start: datetime, end: datetime, breaks: Iterable[BreakInterval]) -> int:
    """Elapsed minus closed breaks, floored to whole minutes, never negative.

    Open breaks are not deducted.
    """
    total_break = timedelta(0)
    for b in breaks:
        if b.end is None:
            logger.warning(f"Open break since {b.start:%H:%M} not deducted from worked time")
            continue
        total_break += b.end - b.start
    net = floor_minutes((end - start) - total_break)
    if net < 0:
        logger.warning(f"Breaks exceed elapsed time ({net} min), clamping to 0")
        return 0
    return net


def _entry_for(start: datetime, end: datetime, minutes: int) -> LogEntry:
    return LogEntry(
        weekday=weekday_fr(start.date()),
        work_date=start.date(),
        start_time=start.time(),
        end_time=end.time(),
        worked_minutes=minutes,
    )


# =========================
# Transitions (pure, state in -> state out)
# =========================
def _require(state: WorkState, expected: Status, action: Action) -> None:
    if state.status != expected:
        raise InvalidTransition(f"{action.value} is not allowed while {state.status.value}")

def start_work(
    state: WorkState,
    now: datetime,
    scheduler: Optional[Scheduler] = None,
    reminder_offset: timedelta = REMINDER_OFFSET,
) -> WorkState:
    _require(state, Status.IDLE, Action.START_WORK)
    handle = state.reminder_handle
    if scheduler is not None:
        if handle:
            scheduler.cancel(handle)
        handle = scheduler.schedule(now + reminder_offset)
        logger.info(f"Reminder scheduled for {now + reminder_offset:%d/%m/%y %H:%M} (handle={handle})")
    logger.info(f"Work started at {format_time(now)} ({weekday_fr(now.date())} {format_date(now.date())})")
    return WorkState(working=True, on_break=False, start_time=now, breaks=(), reminder_handle=handle)

def _last_instant(state: WorkState) -> datetime:
    last = state.start_time
    for b in state.breaks:
        last = max(last, b.end or b.start)
    return last

def _require_forward(state: WorkState, now: datetime, action: Action) -> None:
    """Breaks must lie within [start_time, now]; refuse a clock that went back."""
    last = _last_instant(state)
    if now < last:
        raise InvalidTransition(
            f"{action.value} at {now:%d/%m/%y %H:%M} is before the last recorded time "
            f"{last:%d/%m/%y %H:%M}"
        )

def begin_break(state: WorkState, now: datetime) -> WorkState:
    _require(state, Status.WORKING, Action.BEGIN_BREAK)
    _require_forward(state, now, Action.BEGIN_BREAK)
    logger.info(f"Break started at {format_time(now)}")
    return replace(state, on_break=True, breaks=state.breaks + (BreakInterval(start=now),))

def end_break(state: WorkState, now: datetime) -> WorkState:
    _require(state, Status.ON_BREAK, Action.END_BREAK)
    _require_forward(state, now, Action.END_BREAK)
    last = state.breaks[-1]
    logger.info(f"Break ended at {format_time(now)} ({floor_minutes(now - last.start)} min)")
    return replace(
        state,
        on_break=False,
        breaks=state.breaks[:-1] + (replace(last, end=now),),
    )

def stop_work(
    state: WorkState,
    now: datetime,
    scheduler: Optional[Scheduler] = None,
) -> tuple[WorkState, LogEntry]:
    _require(state, Status.WORKING, Action.STOP_WORK)
    minutes = worked_minutes(state.start_time, now, state.breaks)
    entry = _entry_for(state.start_time, now, minutes)
    if scheduler is not None and state.reminder_handle:
        scheduler.cancel(state.reminder_handle)
        logger.info(f"Reminder cancelled (handle={state.reminder_handle})")
    logger.info(f"Work stopped at {format_time(now)}, worked {format_hm(minutes)}")
    return WorkState(), entry


# =========================
# Manual entry
# =========================
def build_manual_entry(
    work_date: date,
    start: time,
    end: time,
    breaks: Iterable[tuple[time, time]] = (),
) -> ManualEntryResult:
    """Entry for a past day, independent of the live session."""
    start_dt = datetime.combine(work_date, start)
    end_dt = datetime.combine(work_date, end)
    if end_dt <= start_dt:
        raise InvalidRange(f"End {format_time(end)} must be after start {format_time(start)}")

    accepted: list[tuple[time, time]] = []
    rejected: list[RejectedBreak] = []
    total_break = timedelta(0)
    for b_start, b_end in breaks:
        bs = datetime.combine(work_date, b_start)
        be = datetime.combine(work_date, b_end)
        if be <= bs:
            rejected.append(RejectedBreak(b_start, b_end, REASON_INVERTED))
            continue
        if be <= start_dt or bs >= end_dt:
            rejected.append(RejectedBreak(b_start, b_end, REASON_OUTSIDE))
            continue
        bs, be = max(bs, start_dt), min(be, end_dt)
        accepted.append((bs.time(), be.time()))
        total_break += be - bs

    for r in rejected:
        logger.warning(f"Break {format_time(r.start)}-{format_time(r.end)} {r.reason}")

    net = floor_minutes((end_dt - start_dt) - total_break)
    if net < 0:
        # overlapping breaks can add up to more than the window
        logger.warning(f"Manual entry breaks exceed the work window ({net} min), clamping to 0")
        net = 0

    entry = _entry_for(start_dt, end_dt, net)
    return ManualEntryResult(entry=entry, accepted=accepted, rejected=rejected)

def parse_break_count(raw: Optional[str]) -> int:
    try:
        n = int(str(raw).strip())
    except ValueError:
        return 0
    return max(0, n)


# =========================
# State machine
# =========================
@dataclass
class StepResult:
    state: WorkState
    action: Optional[Action] = None
    entry: Optional[LogEntry] = None
    manual: Optional[ManualEntryResult] = None
    messages: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.action is not None


class SessionStateMachine:
    """Runs one user interaction: show the menu for the current status,
    apply the chosen transition, and hand back the new state plus any
    log entry to persist."""

    def __init__(
        self,
        prompter: Prompter,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = now_local,
        reminder_offset: timedelta = REMINDER_OFFSET,
    ):
        self.prompter = prompter
        self.scheduler = scheduler
        self.clock = clock
        self.reminder_offset = reminder_offset
        self._messages: list[str] = []

    def _say(self, message: str) -> None:
        self._messages.append(message)
        self.prompter.notify(message)

    def _done(self, state: WorkState, action: Optional[Action] = None, **kw) -> StepResult:
        result = StepResult(state=state, action=action, messages=self._messages, **kw)
        self._messages = []
        return result

    def step(self, state: WorkState) -> StepResult:
        status = state.status
        choice = self.prompter.choose(status, MENUS[status])

        if choice == Action.START_WORK:
            now = self.clock()
            new_state = start_work(state, now, self.scheduler, self.reminder_offset)
            self._say(
                f"Travail commencé à {format_time(now)} "
                f"({weekday_fr(now.date())} {format_date(now.date())})"
            )
            return self._done(new_state, choice)

        if choice == Action.MANUAL_ENTRY:
            return self.manual_entry(state)

        if choice == Action.BEGIN_BREAK:
            new_state = begin_break(state, self.clock())
            self._say("Pause commencée.")
            return self._done(new_state, choice)

        if choice == Action.STOP_WORK:
            new_state, entry = stop_work(state, self.clock(), self.scheduler)
            self._say("Session de travail terminée et enregistrée avec succès.")
            return self._done(new_state, choice, entry=entry)

        if choice == Action.END_BREAK:
            new_state = end_break(state, self.clock())
            self._say("Pause terminée.")
            return self._done(new_state, choice)

        self._say("Toujours en pause." if status == Status.ON_BREAK else "Aucune modification.")
        return self._done(state)

    def manual_entry(self, state: WorkState) -> StepResult:
        """Prompted retroactive entry; cancelling any prompt writes nothing."""
        work_date = self.prompter.pick_date(self.clock().date())
        if work_date is None:
            return self._cancelled(state)
        start = self.prompter.pick_time("Début", DEFAULT_START)
        if start is None:
            return self._cancelled(state)
        end = self.prompter.pick_time("Fin", DEFAULT_END)
        if end is None:
            return self._cancelled(state)
        if end <= start:
            self._say("L'heure de fin doit être après l'heure de début. Veuillez réessayer.")
            return self._done(state)

        raw = self.prompter.ask_break_count()
        if raw is None:
            return self._cancelled(state)
        count = parse_break_count(raw)

        pairs: list[tuple[time, time]] = []
        for i in range(1, count + 1):
            b_start = self.prompter.pick_time(f"Pause n°{i} début", DEFAULT_BREAK_START)
            if b_start is None:
                return self._cancelled(state)
            b_end = self.prompter.pick_time(f"Pause n°{i} fin", DEFAULT_BREAK_END)
            if b_end is None:
                return self._cancelled(state)
            pairs.append((b_start, b_end))

        try:
            result = build_manual_entry(work_date, start, end, pairs)
        except InvalidRange as exc:
            self._say(str(exc))
            return self._done(state)

        for r in result.rejected:
            self._say(f"Pause {format_time(r.start)}-{format_time(r.end)} {r.reason}.")
        self._say("Votre session de travail a été enregistrée avec succès dans le journal.")
        return self._done(state, Action.MANUAL_ENTRY, entry=result.entry, manual=result)

    def _cancelled(self, state: WorkState) -> StepResult:
        logger.info("Manual entry cancelled")
        self._say("Opération annulée.")
        return self._done(state)


# =========================
# Weekly aggregation
# =========================
def total_minutes_between(entries: Iterable[DecodedEntry], first: date, last: date) -> int:
    return sum(e.total_minutes for e in entries if first <= e.work_date <= last)

def summary_message(week_start: date, week_end: date, total: int) -> str:
    start_s, end_s = format_date(week_start), format_date(week_end)
    if total > 0:
        return f"Rapport du {start_s} au {end_s}:\nTotal travaillé: {format_hm(total)}"
    return f"Aucune heure enregistrée pour la semaine du {start_s} au {end_s}."


class WeeklyAggregator:
    """Sums last week's log entries and writes the summary resource."""

    def __init__(self, log_store, summary_store=None, clock: Callable[[], datetime] = now_local):
        self.log_store = log_store
        self.summary_store = summary_store
        self.clock = clock

    def summarize(self, now: Optional[datetime] = None) -> WeeklySummary:
        week_start, week_end = last_week_range(now or self.clock())
        entries = self.log_store.entries()
        total = total_minutes_between(entries, week_start, week_end)
        logger.info(
            f"Week {format_date(week_start)}-{format_date(week_end)}: "
            f"{len(entries)} entries read, {format_hm(total)} worked"
        )
        return WeeklySummary(
            week_start=week_start,
            week_end=week_end,
            total_minutes=total,
            message=summary_message(week_start, week_end, total),
        )

    def run(self, now: Optional[datetime] = None) -> WeeklySummary:
        summary = self.summarize(now)
        if self.summary_store is not None:
            self.summary_store.write(summary.message)
        return summary


# =========================
# Persisted step
# =========================
def run_session_step(store, prompter: Prompter, clock: Callable[[], datetime] = now_local) -> StepResult:
    """Load state, run one interaction, persist state and entry atomically."""
    with store.transaction() as tx:
        state = tx.load_state()
        machine = SessionStateMachine(prompter, tx.scheduler, clock)
        result = machine.step(state)
        if result.state != state:
            tx.save_state(result.state)
        if result.entry is not None:
            tx.append_entry(result.entry)
    return result

def run_manual_entry(store, prompter: Prompter, clock: Callable[[], datetime] = now_local) -> StepResult:
    """Prompted manual entry outside the menu; live state is read, never changed."""
    with store.transaction() as tx:
        state = tx.load_state()
        result = SessionStateMachine(prompter, None, clock).manual_entry(state)
        if result.entry is not None:
            tx.append_entry(result.entry)
    return result
