# config.py
from __future__ import annotations

import os
from datetime import time, timedelta
from pathlib import Path

# =========================
# Persistence (env var, local fallback)
# =========================
def _pick_data_dir() -> Path:
    candidates = []
    env = os.getenv("DATA_DIR")
    if env:
        candidates.append(Path(env))
    candidates += [Path("/data"), Path.cwd() / "data"]

    for p in candidates:
        try:
            p.mkdir(parents=True, exist_ok=True)
            t = p / ".rwtest"
            t.write_text("ok")
            t.unlink(missing_ok=True)
            return p
        except OSError:
            continue
    return Path.cwd()

DATA_DIR = _pick_data_dir()
DEFAULT_SQLITE = f"sqlite:///{(DATA_DIR / 'pointage.db').as_posix()}"
DB_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE)

LOG_PATH = DATA_DIR / os.getenv("WORK_LOG_FILE", "work_log.txt")
SUMMARY_PATH = DATA_DIR / os.getenv("WEEKLY_SUMMARY_FILE", "weekly_summary.txt")

# =========================
# Parameters
# =========================
REMINDER_HOURS = float(os.getenv("REMINDER_HOURS", "10"))
REMINDER_OFFSET = timedelta(hours=REMINDER_HOURS)

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("LOG_FILE") or None

# Manual entry defaults
DEFAULT_START = time(9, 0)
DEFAULT_END = time(18, 0)
DEFAULT_BREAK_START = time(12, 0)
DEFAULT_BREAK_END = time(12, 30)
