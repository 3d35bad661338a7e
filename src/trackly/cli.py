"""Command-line interface for Trackly."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import typer

from .config import SyncSettings
from .errors import InvalidTimerStateError, NotFoundError
from .models import utc_now
from .paths import get_db_path
from .server_runner import run_server
from .store import Stores
from .sync import SyncEngine, engine_from_settings
from .timer import TimerService
from .timing import PERIODS, display_elapsed_seconds, format_duration

app = typer.Typer(help="Project time tracking with snapshot synchronization.")
sync_app = typer.Typer(help="Save or load synchronization snapshots.")
timer_app = typer.Typer(help="Control the active timer.")
app.add_typer(sync_app, name="sync")
app.add_typer(timer_app, name="timer")

DB_OPTION = typer.Option(
    None, "--db", path_type=Path, help="Location of the Trackly SQLite database."
)
SYNC_DIR_OPTION = typer.Option(
    None, "--sync-dir", path_type=Path, help="Directory holding sync snapshots."
)
FALLBACK_DIR_OPTION = typer.Option(
    None,
    "--fallback-dir",
    path_type=Path,
    help="Directory used when the primary sync target is unavailable.",
)
REMOTE_OPTION = typer.Option(
    None, "--remote", help="Base URL of a Trackly server to sync with."
)


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _stores(db_path: Optional[Path]) -> Stores:
    return Stores.open(db_path or get_db_path())


def _engine(
    db_path: Optional[Path],
    sync_dir: Optional[Path],
    fallback_dir: Optional[Path],
    remote: Optional[str],
) -> SyncEngine:
    settings = SyncSettings.from_intervals(
        5.0, sync_dir=sync_dir, fallback_dir=fallback_dir, remote_url=remote
    )
    return engine_from_settings(_stores(db_path), settings)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(3001, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = DB_OPTION,
    sync_minutes: float = typer.Option(
        5.0, "--sync-interval", min=0.1, help="Minutes between full synchronizations."
    ),
    change_seconds: float = typer.Option(
        30.0,
        "--change-interval",
        min=1.0,
        help="Seconds between checks for local changes.",
    ),
    sync_dir: Optional[Path] = SYNC_DIR_OPTION,
    fallback_dir: Optional[Path] = FALLBACK_DIR_OPTION,
    remote: Optional[str] = REMOTE_OPTION,
    auto_sync: bool = typer.Option(
        True, "--auto-sync/--no-auto-sync", help="Synchronize in the background."
    ),
) -> None:
    """Start the REST API with background synchronization."""
    settings = SyncSettings.from_intervals(
        sync_minutes,
        change_seconds,
        sync_dir=sync_dir,
        fallback_dir=fallback_dir,
        remote_url=remote,
        auto_sync=auto_sync,
    )
    run_server(host=host, port=port, db_path=db_path or get_db_path(), settings=settings)


@app.command()
def summary(
    period: str = typer.Option("day", "--period", help="One of: day, week, month."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Print per-project totals for the current day, week or month."""
    from .reporting import SummaryPrinter

    if period not in PERIODS:
        raise typer.BadParameter(f"must be one of {', '.join(PERIODS)}", param_hint="--period")
    SummaryPrinter(_stores(db_path)).print_summary(period, utc_now())


@sync_app.command("save")
def sync_save(
    db_path: Optional[Path] = DB_OPTION,
    sync_dir: Optional[Path] = SYNC_DIR_OPTION,
    fallback_dir: Optional[Path] = FALLBACK_DIR_OPTION,
    remote: Optional[str] = REMOTE_OPTION,
) -> None:
    """Write a snapshot of the local database."""
    result = _engine(db_path, sync_dir, fallback_dir, remote).save_snapshot()
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


@sync_app.command("load")
def sync_load(
    db_path: Optional[Path] = DB_OPTION,
    sync_dir: Optional[Path] = SYNC_DIR_OPTION,
    fallback_dir: Optional[Path] = FALLBACK_DIR_OPTION,
    remote: Optional[str] = REMOTE_OPTION,
) -> None:
    """Merge the latest snapshot into the local database."""
    result = _engine(db_path, sync_dir, fallback_dir, remote).load_snapshot()
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


@app.command("export")
def export_snapshot(
    path: Path = typer.Argument(..., help="File to write the snapshot to."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Export all projects, entries and the active timer to a JSON file."""
    if not _engine(db_path, None, None, None).export_to_file(path):
        typer.echo(f"Export to {path} failed.", err=True)
        raise typer.Exit(code=1)
    typer.echo(f"Exported to {path}")


@app.command("import")
def import_snapshot(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Snapshot file."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Import a JSON snapshot, overwriting matching records."""
    result = _engine(db_path, None, None, None).import_from_file(path)
    typer.echo(result.message)
    if not result.success:
        raise typer.Exit(code=1)


def _timer_command(action: str, db_path: Optional[Path], project_id: Optional[str] = None) -> None:
    service = TimerService(_stores(db_path))
    try:
        if action == "start":
            result = service.start(project_id or "")
            if result.finalized_entry:
                typer.echo(
                    f"Recorded {format_duration(result.finalized_entry.duration)} "
                    "for the previous timer."
                )
            typer.echo(f"Timer started for {result.timer.project_id}")
        elif action == "stop":
            entry = service.stop()
            typer.echo(f"Recorded {format_duration(entry.duration)} for {entry.project_id}")
        elif action == "pause":
            service.pause()
            typer.echo("Timer paused.")
        elif action == "resume":
            service.resume()
            typer.echo("Timer resumed.")
    except (NotFoundError, InvalidTimerStateError) as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=1) from exc


@timer_app.command("start")
def timer_start(
    project_id: str = typer.Argument(..., help="Project to track."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Start a timer, stopping and recording any timer already running."""
    _timer_command("start", db_path, project_id)


@timer_app.command("stop")
def timer_stop(db_path: Optional[Path] = DB_OPTION) -> None:
    _timer_command("stop", db_path)


@timer_app.command("pause")
def timer_pause(db_path: Optional[Path] = DB_OPTION) -> None:
    _timer_command("pause", db_path)


@timer_app.command("resume")
def timer_resume(db_path: Optional[Path] = DB_OPTION) -> None:
    _timer_command("resume", db_path)


@timer_app.command("status")
def timer_status(db_path: Optional[Path] = DB_OPTION) -> None:
    """Show the active timer, if any."""
    stores = _stores(db_path)
    timer = stores.active_timer.get()
    if timer is None:
        typer.echo("No active timer.")
        return
    project = stores.projects.get(timer.project_id)
    state = "paused" if timer.is_paused else "running"
    typer.echo(
        f"{project.name if project else timer.project_id}: "
        f"{format_duration(display_elapsed_seconds(timer, utc_now()))} ({state})"
    )
