# codec.py
"""Log line format.

    lundi 03/06/24, Début: 09:00, Fin: 18:00, Total travaillé: 8h 15m

Two-digit years pivot at 50 (00-49 -> 20xx, 50-99 -> 19xx), so dates are
only read back correctly up to 31/12/49.
"""
from __future__ import annotations

import re
from datetime import date

from loguru import logger

from domain import DecodedEntry, LogEntry
from utils import format_date, format_time, parse_hhmm

LOG_HEADER = "Jour Date, Début, Fin, Total travaillé"

YEAR_PIVOT = 50

_TOTAL_RE = re.compile(r"Total travaillé:\s*(\d+)h\s+(\d+)m")
_TIME_RE = re.compile(r"(\d{1,2}:\d{2})")


def encode_entry(entry: LogEntry) -> str:
    return (
        f"{entry.weekday} {format_date(entry.work_date)}, "
        f"Début: {format_time(entry.start_time)}, "
        f"Fin: {format_time(entry.end_time)}, "
        f"Total travaillé: {entry.hours}h {entry.minutes}m\n"
    )

def is_header(line: str) -> bool:
    return line.startswith("Jour Date")

def _parse_ddmmyy(token: str) -> date | None:
    try:
        day_s, month_s, year_s = token.split("/")
        yy = int(year_s)
        year = 2000 + yy if yy < YEAR_PIVOT else 1900 + yy
        return date(year, int(month_s), int(day_s))
    except ValueError:
        return None

def _parse_labelled_time(field: str):
    m = _TIME_RE.search(field)
    return parse_hhmm(m.group(1)) if m else None

def decode_line(line: str) -> DecodedEntry | None:
    """Returns None for anything that is not a log entry; never raises."""
    parts = line.split(",")
    if len(parts) < 4:
        return None

    tokens = parts[0].strip().split()
    if len(tokens) < 2:
        return None
    work_date = _parse_ddmmyy(tokens[1])
    if work_date is None:
        return None

    match = _TOTAL_RE.search(parts[3].strip())
    if not match:
        return None
    total_minutes = int(match.group(1)) * 60 + int(match.group(2))

    return DecodedEntry(
        work_date=work_date,
        total_minutes=total_minutes,
        weekday=tokens[0],
        start_time=_parse_labelled_time(parts[1]),
        end_time=_parse_labelled_time(parts[2]),
    )

def decode_log(text: str) -> list[DecodedEntry]:
    """All decodable entries of a log, header and blank lines skipped."""
    entries = []
    for line in text.splitlines():
        if not line.strip() or is_header(line):
            continue
        entry = decode_line(line)
        if entry is None:
            logger.debug(f"Skipping unparseable log line: {line!r}")
            continue
        entries.append(entry)
    return entries
