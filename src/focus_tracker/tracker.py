"""Turns periodic focus snapshots into spans.

Each tick either does nothing (the user is idle, or no usable window has
focus), extends the latest span's ``end_at`` heartbeat, or opens a new span.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from .config import TrackerSettings
from .db import insert_span, latest_span, open_database, transaction, update_span_end
from .errors import TrackerError
from .models import Snapshot, Span
from .providers import SnapshotProvider, get_default_provider

logger = logging.getLogger(__name__)


class SpanTracker:
    """Decides, per snapshot, whether to skip, extend or open a span."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._conn = conn
        self._clock = clock
        self._lock = threading.Lock()
        self.previous_idle_state = False
        self.previous_power_assertion_state = False

    def observe(
        self,
        snapshot: Snapshot,
        idle_threshold: timedelta,
        stale_threshold: timedelta,
    ) -> Optional[Span]:
        """Apply one snapshot; returns the written span, if any."""
        is_idle = snapshot.idle_seconds > idle_threshold.total_seconds()
        asserted = snapshot.power_assertion_active

        if is_idle != self.previous_idle_state or asserted != self.previous_power_assertion_state:
            logger.debug(
                "Idle changed: idle=%s idle_seconds=%.1f threshold=%.0f power_assertion=%s",
                is_idle,
                snapshot.idle_seconds,
                idle_threshold.total_seconds(),
                asserted,
            )
        span = self._apply(snapshot, is_idle and not asserted, stale_threshold)
        self.previous_idle_state = is_idle
        self.previous_power_assertion_state = asserted
        return span

    def _apply(
        self, snapshot: Snapshot, suppressed: bool, stale_threshold: timedelta
    ) -> Optional[Span]:
        if suppressed:
            return None

        if not snapshot.windows:
            logger.warning("No windows found, are permissions correctly configured?")
            return None

        focused = snapshot.focused_window()
        if focused is None or not focused.app_name or not focused.window_title:
            logger.warning(
                "App or window name not found: app=%r window=%r",
                focused.app_name if focused else None,
                focused.window_title if focused else None,
            )
            return None

        return self.reconcile_span(focused.app_name, focused.window_title, stale_threshold)

    def reconcile_span(
        self, app_name: str, window_title: str, stale_threshold: timedelta
    ) -> Span:
        """Extend the latest span if it still matches and is fresh, else open one."""
        with self._lock, transaction(self._conn, immediate=True):
            latest = latest_span(self._conn)
            now = int(self._clock())

            matches = (
                latest is not None
                and latest.app_name == app_name
                and latest.window_title == window_title
            )
            stale = (
                latest is not None
                and now - latest.end_at > stale_threshold.total_seconds()
            )

            if latest is not None and matches and not stale:
                span = update_span_end(self._conn, latest.id, max(now, latest.end_at))
                logger.debug("Updated span: app=%s window=%s", app_name, window_title)
                return span

            span = insert_span(self._conn, app_name, window_title, now, now)
            logger.debug("New span: app=%s window=%s", app_name, window_title)
            return span


class TrackerDaemon:
    """Samples a snapshot provider at a fixed interval and records spans."""

    def __init__(
        self,
        db_path: Path,
        settings: TrackerSettings,
        provider: Optional[SnapshotProvider] = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db_path = Path(db_path)
        self.settings = settings
        self._provider = provider or get_default_provider()
        self._conn = open_database(self.db_path, check_same_thread=False)
        self.tracker = SpanTracker(self._conn, clock=clock)

    def tick(self) -> Optional[Span]:
        """Take one snapshot and apply it; errors propagate to the caller."""
        snapshot = self._provider.get_snapshot()
        return self.tracker.observe(
            snapshot,
            self.settings.idle_threshold,
            self.settings.stale_threshold,
        )

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self._run_loop(stop_event)
        except KeyboardInterrupt:
            logger.info("Tracker interrupted.")
        finally:
            self._shutdown()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run the tracker until the provided event is set."""
        try:
            self._run_loop(stop_event)
        finally:
            self._shutdown()

    def _run_loop(self, stop_event: threading.Event) -> None:
        logger.info("Starting tracker; writing to %s", self.db_path)
        interval = self.settings.sample_interval.total_seconds()
        while not stop_event.is_set():
            try:
                self.tick()
            except TrackerError:
                # The next tick starts from a fresh snapshot and store state.
                logger.exception("Error collecting data")
            stop_event.wait(interval)

    def _shutdown(self) -> None:
        self._conn.close()
        logger.info("Tracker stopped.")
