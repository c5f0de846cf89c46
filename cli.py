"""Terminal entry point.

`pointer` runs one interaction with the session menu (the same action
a shortcut or widget would trigger), `report` is meant for a weekly
scheduled run.
"""

from datetime import date, datetime, time
from typing import Optional

import typer
from loguru import logger

import config
from domain import Action, PointageError, Status
from log_config import setup_logger
from repository import WorkStore
from services import (
    ACTION_LABELS,
    STATUS_LABELS,
    WeeklyAggregator,
    run_manual_entry,
    run_session_step,
)
from utils import entries_to_dataframe, format_date, format_hm, format_time, now_local, parse_hhmm

app = typer.Typer(help="Suivi des heures de travail.", no_args_is_help=False)

CANCEL = "q"


class ConsolePrompter:
    """Prompter on stdin/stdout. Typing `q` at any prompt cancels."""

    def choose(self, status: Status, options: list[Action]) -> Optional[Action]:
        typer.echo(STATUS_LABELS[status])
        for i, action in enumerate(options, start=1):
            typer.echo(f"  {i}. {ACTION_LABELS[action]}")
        typer.echo(f"  {CANCEL}. Annuler")
        while True:
            raw = typer.prompt("Choix", default=CANCEL).strip().lower()
            if raw == CANCEL:
                return None
            if raw.isdigit() and 1 <= int(raw) <= len(options):
                return options[int(raw) - 1]
            typer.echo("Choix invalide.")

    def ask_break_count(self) -> Optional[str]:
        raw = typer.prompt("Combien de pauses avez-vous pris ce jour-là ?", default="0")
        return None if raw.strip().lower() == CANCEL else raw

    def pick_date(self, default: date) -> Optional[date]:
        while True:
            raw = typer.prompt("Date (JJ/MM/AAAA)", default=default.strftime("%d/%m/%Y")).strip()
            if raw.lower() == CANCEL:
                return None
            try:
                return datetime.strptime(raw, "%d/%m/%Y").date()
            except ValueError:
                typer.echo("Date invalide.")

    def pick_time(self, label: str, default: time) -> Optional[time]:
        while True:
            raw = typer.prompt(f"{label} (HH:MM)", default=format_time(default)).strip()
            if raw.lower() == CANCEL:
                return None
            t = parse_hhmm(raw)
            if t is not None:
                return t
            typer.echo("Heure invalide.")

    def notify(self, message: str) -> None:
        typer.echo(message)


def _store() -> WorkStore:
    return WorkStore(config.DB_URL, config.LOG_PATH, config.SUMMARY_PATH)


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Enable debug logging")) -> None:
    setup_logger(level="DEBUG" if debug else config.LOG_LEVEL, log_file=config.LOG_FILE)


@app.command()
def pointer() -> None:
    """Start/stop work or breaks depending on the current state."""
    try:
        run_session_step(_store(), ConsolePrompter())
    except PointageError as e:
        logger.error(str(e))
        typer.echo(f"Erreur : {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def manual() -> None:
    """Record a past work day."""
    try:
        run_manual_entry(_store(), ConsolePrompter())
    except PointageError as e:
        logger.error(str(e))
        typer.echo(f"Erreur : {e}", err=True)
        raise typer.Exit(code=1)


@app.command()
def status() -> None:
    """Show the live session and any reminder that is due."""
    store = _store()
    try:
        state = store.current_state()
    except PointageError as e:
        typer.echo(f"Erreur : {e}", err=True)
        raise typer.Exit(code=1)

    now = now_local()
    if state.status == Status.IDLE:
        typer.echo("Aucune session en cours.")
    else:
        closed = [b for b in state.breaks if b.end is not None]
        typer.echo(
            f"Session commencée à {format_time(state.start_time)} "
            f"le {format_date(state.start_time.date())}, {len(closed)} pause(s) terminée(s)."
        )
        if state.status == Status.ON_BREAK:
            typer.echo(f"En pause depuis {format_time(state.breaks[-1].start)}.")
    for reminder in store.due_reminders(now):
        typer.echo(
            f"Rappel : vous travaillez depuis un long moment "
            f"(prévu à {format_time(reminder.trigger_at)}). Pensez à arrêter le travail."
        )


@app.command()
def report(
    on: Optional[datetime] = typer.Option(
        None, "--date", formats=["%d/%m/%Y"], help="Reference date JJ/MM/AAAA (default: today)"
    ),
) -> None:
    """Write last week's summary (for a weekly scheduled run)."""
    store = _store()
    summary = WeeklyAggregator(store.log, store.summary).run(on)
    typer.echo(summary.message)


@app.command()
def history(limit: int = typer.Option(20, help="Number of entries to show")) -> None:
    """List the most recent log entries."""
    df = entries_to_dataframe(_store().log.entries())
    if df.empty:
        typer.echo("Journal vide.")
        return
    typer.echo(df.drop(columns=["Minutes"]).head(limit).to_string(index=False))
    typer.echo(f"Total : {format_hm(int(df['Minutes'].sum()))}")


if __name__ == "__main__":
    app()
