"""Tests for session transitions, the prompted state machine and manual entry."""

from datetime import date, datetime, time, timedelta

import pytest

from codec import encode_entry
from domain import (
    Action,
    BreakInterval,
    InvalidRange,
    InvalidTransition,
    Status,
    WorkState,
)
from services import (
    REASON_INVERTED,
    REASON_OUTSIDE,
    PresetPrompter,
    SessionStateMachine,
    begin_break,
    build_manual_entry,
    end_break,
    parse_break_count,
    start_work,
    stop_work,
    worked_minutes,
)

T0 = datetime(2024, 12, 18, 8, 0)


# =========================
# Pure transitions
# =========================
def test_full_session_scenario(scheduler):
    state = start_work(WorkState(), T0, scheduler, reminder_offset=timedelta(hours=10))
    assert state.status == Status.WORKING
    assert state.start_time == T0
    assert scheduler.scheduled == [T0 + timedelta(hours=10)]
    assert state.reminder_handle == "reminder-1"

    state = begin_break(state, T0 + timedelta(hours=2))
    assert state.status == Status.ON_BREAK
    assert state.breaks[-1].is_open

    state = end_break(state, T0 + timedelta(hours=2, minutes=30))
    assert state.status == Status.WORKING
    assert state.breaks == (BreakInterval(T0 + timedelta(hours=2), T0 + timedelta(hours=2, minutes=30)),)

    state, entry = stop_work(state, T0 + timedelta(hours=9), scheduler)
    assert entry.worked_minutes == 8 * 60 + 30
    assert (entry.hours, entry.minutes) == (8, 30)
    assert entry.work_date == date(2024, 12, 18)
    assert entry.weekday == "mercredi"
    assert state == WorkState()
    assert state.breaks == ()
    assert scheduler.cancelled == ["reminder-1"]


def test_transitions_do_not_mutate_input():
    idle = WorkState()
    working = start_work(idle, T0)
    begin_break(working, T0 + timedelta(hours=1))

    assert idle == WorkState()
    assert working.breaks == ()


def test_start_work_replaces_stale_reminder(scheduler):
    state = start_work(WorkState(reminder_handle="old"), T0, scheduler)
    assert scheduler.cancelled == ["old"]
    assert state.reminder_handle == "reminder-1"


@pytest.mark.parametrize(
    "state, transition",
    [
        (WorkState(), begin_break),
        (WorkState(), end_break),
        (WorkState(working=True, start_time=T0), end_break),
        (WorkState(working=True, start_time=T0), start_work),
    ],
)
def test_invalid_transitions_raise(state, transition):
    with pytest.raises(InvalidTransition):
        transition(state, T0 + timedelta(hours=1))


def test_stop_work_not_allowed_on_break():
    state = begin_break(start_work(WorkState(), T0), T0 + timedelta(hours=1))
    with pytest.raises(InvalidTransition):
        stop_work(state, T0 + timedelta(hours=2))


def test_worked_minutes_ignores_open_break():
    breaks = [
        BreakInterval(T0 + timedelta(hours=1), T0 + timedelta(hours=1, minutes=15)),
        BreakInterval(T0 + timedelta(hours=3)),
    ]
    assert worked_minutes(T0, T0 + timedelta(hours=4), breaks) == 4 * 60 - 15


def test_worked_minutes_floors_seconds():
    assert worked_minutes(T0, T0 + timedelta(minutes=59, seconds=59), []) == 59


def test_worked_minutes_never_negative():
    breaks = [BreakInterval(T0 - timedelta(hours=2), T0 + timedelta(minutes=30))]
    assert worked_minutes(T0, T0 + timedelta(minutes=30), breaks) == 0


# =========================
# Manual entry
# =========================
def test_manual_entry_line():
    result = build_manual_entry(date(2024, 6, 3), time(9, 0), time(18, 0), [(time(12, 0), time(12, 45))])

    assert result.rejected == []
    assert encode_entry(result.entry) == (
        "lundi 03/06/24, Début: 09:00, Fin: 18:00, Total travaillé: 8h 15m\n"
    )


def test_manual_entry_without_breaks_is_window_length():
    result = build_manual_entry(date(2024, 6, 3), time(8, 10), time(16, 55))
    assert result.entry.worked_minutes == 8 * 60 + 45


@pytest.mark.parametrize("end", [time(9, 0), time(8, 0)])
def test_manual_entry_invalid_range(end):
    with pytest.raises(InvalidRange):
        build_manual_entry(date(2024, 6, 3), time(9, 0), end)


def test_manual_entry_rejects_and_clips_breaks():
    result = build_manual_entry(
        date(2024, 6, 3),
        time(9, 0),
        time(17, 0),
        [
            (time(13, 0), time(12, 0)),   # inverted
            (time(7, 0), time(8, 30)),    # before the window
            (time(17, 0), time(18, 0)),   # starts at the end
            (time(8, 30), time(9, 30)),   # clipped to 09:00-09:30
            (time(16, 45), time(17, 30)), # clipped to 16:45-17:00
        ],
    )

    assert [r.reason for r in result.rejected] == [REASON_INVERTED, REASON_OUTSIDE, REASON_OUTSIDE]
    assert result.accepted == [(time(9, 0), time(9, 30)), (time(16, 45), time(17, 0))]
    assert result.entry.worked_minutes == 8 * 60 - 45


def test_manual_entry_overlapping_breaks_clamped_to_zero():
    result = build_manual_entry(
        date(2024, 6, 3),
        time(9, 0),
        time(10, 0),
        [(time(9, 0), time(10, 0)), (time(9, 0), time(10, 0))],
    )
    assert result.entry.worked_minutes == 0


@pytest.mark.parametrize("raw, expected", [("3", 3), (" 2 ", 2), ("-1", 0), ("abc", 0), ("", 0), (None, 0)])
def test_parse_break_count(raw, expected):
    assert parse_break_count(raw) == expected


# =========================
# Prompted state machine
# =========================
def test_machine_start_work(clock, scheduler):
    prompter = PresetPrompter(choice=Action.START_WORK)
    result = SessionStateMachine(prompter, scheduler, clock).step(WorkState())

    assert result.action == Action.START_WORK
    assert result.state.start_time == clock.now
    assert result.entry is None
    assert prompter.messages == ["Travail commencé à 09:00 (mercredi 18/12/24)"]


def test_machine_cancel_keeps_state(clock):
    state = WorkState(working=True, start_time=T0)
    prompter = PresetPrompter(choice=None)
    result = SessionStateMachine(prompter, None, clock).step(state)

    assert result.state is state
    assert not result.changed
    assert prompter.messages == ["Aucune modification."]


def test_machine_continue_break(clock):
    state = WorkState(working=True, on_break=True, start_time=T0, breaks=(BreakInterval(T0),))
    prompter = PresetPrompter(choice=Action.CONTINUE)
    result = SessionStateMachine(prompter, None, clock).step(state)

    assert result.state is state
    assert prompter.messages == ["Toujours en pause."]


def test_machine_ignores_action_not_in_menu(clock):
    prompter = PresetPrompter(choice=Action.STOP_WORK)
    result = SessionStateMachine(prompter, None, clock).step(WorkState())
    assert result.state == WorkState()
    assert result.entry is None


def test_machine_stop_emits_entry(clock, scheduler):
    state = WorkState(working=True, start_time=datetime(2024, 12, 18, 9, 0), reminder_handle="r")
    clock.set(datetime(2024, 12, 18, 17, 20))
    result = SessionStateMachine(PresetPrompter(choice=Action.STOP_WORK), scheduler, clock).step(state)

    assert result.entry.worked_minutes == 8 * 60 + 20
    assert result.state == WorkState()
    assert scheduler.cancelled == ["r"]


def test_machine_manual_entry(clock):
    prompter = PresetPrompter(
        choice=Action.MANUAL_ENTRY,
        work_date=date(2024, 6, 3),
        break_count="2",
        times=[time(9, 0), time(18, 0), time(12, 0), time(12, 45), time(15, 0), time(14, 0)],
    )
    result = SessionStateMachine(prompter, None, clock).step(WorkState())

    assert result.action == Action.MANUAL_ENTRY
    assert result.entry.worked_minutes == 8 * 60 + 15
    assert result.state == WorkState()
    assert len(result.manual.rejected) == 1
    assert prompter.messages[-1].startswith("Votre session de travail a été enregistrée")


def test_machine_manual_entry_invalid_range(clock):
    prompter = PresetPrompter(
        choice=Action.MANUAL_ENTRY,
        work_date=date(2024, 6, 3),
        break_count="0",
        times=[time(18, 0), time(9, 0)],
    )
    result = SessionStateMachine(prompter, None, clock).step(WorkState())

    assert result.entry is None
    assert "fin doit être après" in prompter.messages[0]


def test_machine_manual_entry_cancelled_mid_breaks(clock):
    prompter = PresetPrompter(
        choice=Action.MANUAL_ENTRY,
        work_date=date(2024, 6, 3),
        break_count="2",
        times=[time(9, 0), time(18, 0), time(12, 0), time(12, 30), time(15, 0)],
    )
    result = SessionStateMachine(prompter, None, clock).step(WorkState())

    assert result.entry is None
    assert prompter.messages == ["Opération annulée."]


def test_machine_manual_entry_does_not_touch_live_session(clock):
    live = WorkState(working=True, start_time=T0)
    prompter = PresetPrompter(work_date=date(2024, 6, 3), break_count="0", times=[time(9, 0), time(10, 0)])
    result = SessionStateMachine(prompter, None, clock).manual_entry(live)

    assert result.state is live
    assert result.entry.worked_minutes == 60


# =========================
# Clock going backwards
# =========================
def test_begin_break_before_session_start_is_refused():
    state = start_work(WorkState(), T0)
    with pytest.raises(InvalidTransition):
        begin_break(state, T0 - timedelta(minutes=30))


def test_end_break_before_break_start_is_refused():
    state = begin_break(start_work(WorkState(), T0), T0 + timedelta(hours=2))
    with pytest.raises(InvalidTransition):
        end_break(state, T0 + timedelta(hours=1, minutes=50))


def test_begin_break_before_previous_break_end_is_refused():
    state = start_work(WorkState(), T0)
    state = begin_break(state, T0 + timedelta(hours=1))
    state = end_break(state, T0 + timedelta(hours=2))
    with pytest.raises(InvalidTransition):
        begin_break(state, T0 + timedelta(hours=1, minutes=30))


def test_break_at_same_instant_is_accepted():
    state = start_work(WorkState(), T0)
    state = end_break(begin_break(state, T0), T0)
    assert state.validate().breaks == (BreakInterval(T0, T0),)
