"""Command-line interface for the focus tracker."""

from __future__ import annotations

import logging
import threading
import webbrowser
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer

from .config import TrackerSettings, default_db_path, default_log_path
from .errors import TrackerError

app = typer.Typer(help="Records which window has focus and classifies the time with rules.")
logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _db_option():
    return typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the focus tracker SQLite database.",
    )


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


def _log_to_file() -> None:
    handler = logging.FileHandler(default_log_path(), encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)


def _settings(sample_seconds: float, idle_minutes: float, stale_minutes: Optional[float]) -> TrackerSettings:
    return TrackerSettings.from_intervals(
        sample_seconds=sample_seconds,
        idle_minutes=idle_minutes,
        stale_minutes=stale_minutes,
    )


@app.command()
def track(
    db_path: Optional[Path] = _db_option(),
    sample_seconds: float = typer.Option(10.0, "--interval", min=1.0, help="Sampling interval in seconds."),
    idle_minutes: float = typer.Option(
        5.0, "--idle-threshold", min=0.5, help="Minutes without input before the user counts as idle."
    ),
    stale_minutes: Optional[float] = typer.Option(
        None,
        "--stale-threshold",
        min=0.5,
        help="Minutes after which a returning window starts a new span (defaults to 2x idle).",
    ),
) -> None:
    """Run the span tracker until interrupted."""
    from .tracker import TrackerDaemon

    _log_to_file()
    settings = _settings(sample_seconds, idle_minutes, stale_minutes)
    try:
        daemon = TrackerDaemon(db_path=db_path or default_db_path(), settings=settings)
    except TrackerError as exc:
        logger.error("Tracker could not start: %s", exc)
        raise typer.Exit(code=1) from exc
    daemon.run_forever()


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = _db_option(),
    top: int = typer.Option(5, "--top", min=1, help="Entries to show per group."),
) -> None:
    """Print tracked time by application, project and category for one day."""
    from .reporting import SummaryPrinter

    try:
        target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    except ValueError as exc:
        raise typer.BadParameter("expected YYYY-MM-DD", param_hint="--date") from exc
    summary_printer = SummaryPrinter(db_path=db_path or default_db_path(), top=top)
    summary_printer.print_daily_summary(target)


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8765, "--port", min=1, max=65535, help="TCP port for the API."),
    db_path: Optional[Path] = _db_option(),
    sample_seconds: float = typer.Option(10.0, "--interval", min=1.0, help="Sampling interval in seconds."),
    idle_minutes: float = typer.Option(
        5.0, "--idle-threshold", min=0.5, help="Minutes without input before the user counts as idle."
    ),
    stale_minutes: Optional[float] = typer.Option(
        None,
        "--stale-threshold",
        min=0.5,
        help="Minutes after which a returning window starts a new span (defaults to 2x idle).",
    ),
    run_tracker: bool = typer.Option(
        True,
        "--track/--no-track",
        help="Run the span tracker in the background while serving.",
    ),
    open_browser: bool = typer.Option(
        True,
        "--open-browser/--no-open-browser",
        help="Open the interactive API docs in your default browser.",
    ),
) -> None:
    """Serve the timeline API, with the tracker running in the background."""
    import uvicorn

    from .webapp import create_app

    _log_to_file()
    api = create_app(
        db_path=db_path or default_db_path(),
        settings=_settings(sample_seconds, idle_minutes, stale_minutes),
        run_tracker=run_tracker,
    )
    if open_browser:
        # Fires once uvicorn has had a moment to bind.
        url = f"http://{host}:{port}/docs"
        threading.Timer(1.0, _open_browser, args=(url,)).start()
    uvicorn.run(api, host=host, port=port, log_level="info")


def _open_browser(url: str) -> None:
    try:
        webbrowser.open(url)
    except webbrowser.Error:
        logger.warning("Failed to launch browser for %s", url)
