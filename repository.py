# repository.py
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

from loguru import logger
from pydantic import NaiveDatetime
from sqlalchemy import event, text
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel, Field, Session, create_engine, select

from codec import LOG_HEADER, decode_log, encode_entry
from domain import BreakInterval, DecodedEntry, LogEntry, StateCorrupted, WorkState

STATE_ROW_ID = 1


class WorkStateDB(SQLModel, table=True):
    __tablename__ = "work_state"

    id: int | None = Field(default=None, primary_key=True)
    working: bool = False
    on_break: bool = False
    start_time: NaiveDatetime | None = None  # local wall-clock
    breaks: str = "[]"  # JSON list of {"start": iso, "end": iso | null}
    reminder_handle: str | None = None


class ReminderDB(SQLModel, table=True):
    __tablename__ = "reminders"

    id: int | None = Field(default=None, primary_key=True)
    trigger_at: NaiveDatetime = Field(index=True)
    created_at: NaiveDatetime
    cancelled: bool = False


def build_engine(db_url: str, echo: bool = False):
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
        "connect_args": {},
    }
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
    else:
        # Serverless PG: no local pool, bounded connect time
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"connect_timeout": 10}
        if "sslmode=" not in db_url:
            db_url += ("&" if "?" in db_url else "?") + "sslmode=require"
    engine = create_engine(db_url, **kwargs)

    if is_sqlite:
        # pysqlite defers BEGIN; take the write lock when the transaction starts
        @event.listens_for(engine, "connect")
        def _sqlite_autocommit_driver(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


# =========================
# State record
# =========================
def _breaks_to_json(breaks) -> str:
    return json.dumps([
        {"start": b.start.isoformat(), "end": b.end.isoformat() if b.end else None}
        for b in breaks
    ])

def _breaks_from_json(raw: str) -> tuple[BreakInterval, ...]:
    items = json.loads(raw or "[]")
    return tuple(
        BreakInterval(
            start=datetime.fromisoformat(b["start"]),
            end=datetime.fromisoformat(b["end"]) if b.get("end") else None,
        )
        for b in items
    )

def row_to_state(row: Optional[WorkStateDB]) -> WorkState:
    if row is None:
        return WorkState()
    try:
        state = WorkState(
            working=bool(row.working),
            on_break=bool(row.on_break),
            start_time=row.start_time,
            breaks=_breaks_from_json(row.breaks),
            reminder_handle=row.reminder_handle,
        )
    except (ValueError, TypeError, KeyError) as e:
        raise StateCorrupted(f"Unreadable work state: {e}") from e
    return state.validate()

def state_to_row(state: WorkState, row: Optional[WorkStateDB] = None) -> WorkStateDB:
    row = row or WorkStateDB(id=STATE_ROW_ID)
    row.working = state.working
    row.on_break = state.on_break
    row.start_time = state.start_time
    row.breaks = _breaks_to_json(state.breaks)
    row.reminder_handle = state.reminder_handle
    return row


# =========================
# Text resources
# =========================
def atomic_write(path: Path, content: str) -> None:
    """Write to a sibling temp file, then swap it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class LogStore:
    """Append-only work log (one line per session, header first)."""
    def __init__(self, path: Path):
        self.path = Path(path)

    def ensure_exists(self) -> None:
        if not self.path.exists():
            atomic_write(self.path, LOG_HEADER + "\n")
            logger.info(f"Created work log {self.path}")

    def read_text(self) -> str | None:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def entries(self) -> List[DecodedEntry]:
        content = self.read_text()
        if content is None:
            logger.warning(f"No work log at {self.path}, treating as empty")
            return []
        return decode_log(content)

    def append(self, entry: LogEntry) -> str:
        line = encode_entry(entry)
        current = self.read_text()
        if current is None:
            current = LOG_HEADER + "\n"
        elif current and not current.endswith("\n"):
            current += "\n"
        atomic_write(self.path, current + line)
        logger.info(f"Logged: {line.rstrip()}")
        return line


class SummaryStore:
    def __init__(self, path: Path):
        self.path = Path(path)

    def write(self, message: str) -> None:
        atomic_write(self.path, message)
        logger.info(f"Weekly summary written to {self.path}")

    def read(self) -> str | None:
        return self.path.read_text(encoding="utf-8") if self.path.exists() else None


# =========================
# Reminders
# =========================
class DatabaseScheduler:
    """Reminders kept in the database; the handle is the row id."""
    def __init__(self, session: Session):
        self.session = session

    def schedule(self, trigger: datetime) -> str:
        row = ReminderDB(trigger_at=trigger, created_at=datetime.now())
        self.session.add(row)
        self.session.flush()
        return str(row.id)

    def cancel(self, handle: str) -> None:
        try:
            row = self.session.get(ReminderDB, int(handle))
        except ValueError:
            row = None
        if row is None:
            logger.warning(f"Unknown reminder handle {handle!r}, nothing to cancel")
            return
        row.cancelled = True
        self.session.add(row)


# =========================
# Store + transaction
# =========================
class WorkTransaction:
    """One exclusive read-modify-write cycle over state, reminders and log."""
    def __init__(self, session: Session, log_store: LogStore):
        self.session = session
        self.log_store = log_store
        self.scheduler = DatabaseScheduler(session)
        self._pending: list[LogEntry] = []

    def load_state(self) -> WorkState:
        stmt = select(WorkStateDB).where(WorkStateDB.id == STATE_ROW_ID).with_for_update()
        return row_to_state(self.session.exec(stmt).first())

    def save_state(self, state: WorkState) -> None:
        row = self.session.get(WorkStateDB, STATE_ROW_ID)
        self.session.add(state_to_row(state, row))

    def append_entry(self, entry: LogEntry) -> None:
        """Queue a log line; it is written only when the transaction completes."""
        self._pending.append(entry)

    def write_pending(self) -> None:
        for entry in self._pending:
            self.log_store.append(entry)
        self._pending = []


class WorkStore:
    def __init__(self, url: str, log_path: Path, summary_path: Path, echo: bool = False):
        self.url = url
        self.engine = build_engine(url, echo=echo)

        # Fail fast if Postgres is unreachable
        if not url.startswith("sqlite"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("select 1"))
            except Exception as e:
                raise RuntimeError(f"Could not connect to the database: {e}") from e

        SQLModel.metadata.create_all(self.engine)
        self.log = LogStore(log_path)
        self.summary = SummaryStore(summary_path)
        self.log.ensure_exists()

    @contextmanager
    def transaction(self) -> Iterator[WorkTransaction]:
        with Session(self.engine) as session:
            tx = WorkTransaction(session, self.log)
            try:
                yield tx
                # State errors surface at flush, before the log is touched.
                # A crash between the log write and commit leaves the line
                # written with the old state still stored.
                session.flush()
                tx.write_pending()
                session.commit()
            except BaseException:
                session.rollback()
                raise

    def current_state(self) -> WorkState:
        with Session(self.engine) as session:
            return row_to_state(session.get(WorkStateDB, STATE_ROW_ID))

    def due_reminders(self, now: datetime) -> List[ReminderDB]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(ReminderDB)
                .where(ReminderDB.cancelled == False, ReminderDB.trigger_at <= now)  # noqa: E712
                .order_by(ReminderDB.trigger_at)
            ).all())


__all__ = [
    "WorkStateDB", "ReminderDB", "WorkStore", "WorkTransaction", "LogStore",
    "SummaryStore", "DatabaseScheduler", "build_engine", "atomic_write",
]
