"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path

from .classification import LabelGroup, Overview, overview
from .db import database_connection


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path, top: int = 5) -> None:
        self.db_path = Path(db_path)
        self.top = top

    def print_daily_summary(self, day: datetime) -> None:
        start = day.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        with database_connection(self.db_path) as conn:
            data = overview(conn, int(start.timestamp()), int(end.timestamp()))
        if not data.apps:
            print("No activity recorded for the selected day.")
            return
        for line in render_overview(data, start, self.top):
            print(line)


def render_overview(data: Overview, day: datetime, top: int = 5) -> list[str]:
    lines = [
        f"Summary for {day.strftime('%Y-%m-%d')}",
        "-" * 40,
        f"Tracked time: {format_duration(data.total_seconds)}",
    ]

    lines.append("")
    lines.append("Top applications:")
    for app in data.apps[:top]:
        lines.append(f"  {app.name[:30]:<30} {format_duration(app.total_seconds)}")

    for title, groups in (("Projects:", data.projects), ("Categories:", data.categories)):
        if groups:
            lines.append("")
            lines.append(title)
            lines.extend(_label_lines(groups[:top]))

    if data.rule_errors:
        lines.append("")
        lines.append("Skipped rules:")
        for error in data.rule_errors:
            lines.append(f"  {error.namespace} rule {error.rule_id} {error.pattern!r}: {error.message}")
    return lines


def _label_lines(groups: list[LabelGroup]) -> list[str]:
    return [
        f"  {group.label.name[:30]:<30} {format_duration(group.total_seconds)}"
        for group in groups
    ]


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
