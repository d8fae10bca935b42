"""Domain models for snapshots, spans and classification labels."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional


@dataclass(slots=True)
class WindowInfo:
    app_name: str
    window_title: str
    is_focused: bool = False


@dataclass(slots=True)
class Snapshot:
    """A single reading from the platform snapshot provider.

    Never persisted. ``windows`` holds zero or one focused entry; having no
    focused window is a different condition from the user being idle.
    """

    idle_seconds: float
    power_assertion_active: bool
    windows: list[WindowInfo] = field(default_factory=list)

    def focused_window(self) -> Optional[WindowInfo]:
        for window in self.windows:
            if window.is_focused:
                return window
        return None


@dataclass(slots=True)
class Span:
    """A contiguous interval of focus on one application window.

    ``end_at`` is advanced on every sample that continues the same focus, so
    the most recent span doubles as the open one.
    """

    id: int
    app_name: str
    window_title: str
    start_at: int
    end_at: int

    @property
    def duration_seconds(self) -> int:
        return self.end_at - self.start_at

    @property
    def text(self) -> str:
        """The string rule patterns are matched against."""
        return f"{self.app_name} {self.window_title}"


@dataclass(slots=True)
class Category:
    id: int
    name: str
    color: str = ""


@dataclass(slots=True)
class Project:
    id: int
    name: str
    color: str = ""


@dataclass(slots=True)
class Rule:
    """A pattern that attaches a category or project to matching spans.

    Category and project rules share this shape; ``target_id`` refers to a
    category or a project depending on the table the rule was read from.
    ``target_name`` and ``target_color`` are filled in by list queries and are
    ``None`` when the target has been deleted. An ``is_active`` of ``None``
    on save leaves the stored flag unchanged.
    """

    id: int
    pattern: str
    target_id: int
    is_active: Optional[bool] = True
    target_name: Optional[str] = None
    target_color: Optional[str] = None
