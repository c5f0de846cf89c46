# utils.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Iterable

import pandas as pd

from domain import DecodedEntry

JOURS = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]


# =========================
# Clock / calendar
# =========================
def now_local() -> datetime:
    """Local wall-clock time, minute precision is enough for the log."""
    return datetime.now().replace(microsecond=0)

def weekday_fr(d: date) -> str:
    return JOURS[d.weekday()]

def format_date(d: date) -> str:
    return d.strftime("%d/%m/%y")

def format_time(t: time | datetime) -> str:
    return t.strftime("%H:%M")

def format_hm(minutes: int) -> str:
    h, m = divmod(int(minutes), 60)
    return f"{h}h {m}m"

def parse_hhmm(s: str) -> time | None:
    try:
        hh, mm = s.strip().split(":")
        return time(int(hh), int(mm))
    except (ValueError, AttributeError):
        return None

def floor_minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)

def last_week_range(now: date | datetime) -> tuple[date, date]:
    """Monday and Sunday of the calendar week before the one holding `now`."""
    today = now.date() if isinstance(now, datetime) else now
    # date.weekday() is already Monday=0, i.e. (sunday_based + 6) % 7
    this_monday = today - timedelta(days=today.weekday())
    last_monday = this_monday - timedelta(days=7)
    last_sunday = last_monday + timedelta(days=6)
    return last_monday, last_sunday


# =========================
# Tables
# =========================
def entries_to_dataframe(entries: Iterable[DecodedEntry]) -> pd.DataFrame:
    rows = []
    for e in entries:
        rows.append({
            "Date": e.work_date.isoformat(),
            "Jour": e.weekday or weekday_fr(e.work_date),
            "Début": format_time(e.start_time) if e.start_time else "",
            "Fin": format_time(e.end_time) if e.end_time else "",
            "Total travaillé": format_hm(e.total_minutes),
            "Minutes": e.total_minutes,
        })
    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values(["Date"], ascending=False).reset_index(drop=True)
    return df
