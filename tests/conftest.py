"""Shared fixtures for the focus tracker tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from focus_tracker.db import open_database
from focus_tracker.models import Snapshot, WindowInfo


class FakeClock:
    """Callable clock returning a controllable epoch time."""

    def __init__(self, now: float = 1_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """Returns queued snapshots (or raises queued errors) in order."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.calls = 0

    def get_snapshot(self) -> Snapshot:
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def focused(app_name: str, window_title: str, **kwargs) -> Snapshot:
    """Snapshot with one focused window and one background window."""
    return Snapshot(
        idle_seconds=kwargs.get("idle_seconds", 0.0),
        power_assertion_active=kwargs.get("power_assertion_active", False),
        windows=[
            WindowInfo(app_name="Finder", window_title="Downloads", is_focused=False),
            WindowInfo(app_name=app_name, window_title=window_title, is_focused=True),
        ],
    )


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "focus.sqlite3"


@pytest.fixture
def conn(db_path: Path):
    connection = open_database(db_path)
    yield connection
    connection.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
