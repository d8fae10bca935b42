"""Tracker settings and on-disk locations."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from platformdirs import user_data_path

APP_NAME = "FocusTracker"


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for the span tracker."""

    sample_interval: timedelta = timedelta(seconds=10)
    idle_threshold: timedelta = timedelta(minutes=5)
    stale_threshold: timedelta = timedelta(minutes=10)

    @classmethod
    def from_intervals(
        cls,
        sample_seconds: float,
        idle_minutes: float,
        stale_minutes: float | None = None,
    ) -> "TrackerSettings":
        stale = stale_minutes if stale_minutes is not None else max(idle_minutes * 2, 1.0)
        return cls(
            sample_interval=timedelta(seconds=sample_seconds),
            idle_threshold=timedelta(minutes=idle_minutes),
            stale_threshold=timedelta(minutes=stale),
        )


def data_dir() -> Path:
    """Directory holding the database and the tracker log; created on demand."""
    return user_data_path(APP_NAME, appauthor=False, ensure_exists=True)


def default_db_path() -> Path:
    return data_dir() / "focus.sqlite3"


def default_log_path() -> Path:
    return data_dir() / "tracker.log"
