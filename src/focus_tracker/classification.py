"""Retroactive classification of spans and the grouped overview built on it.

Rules are evaluated at read time against ``"<app_name> <window_title>"``; no
classification result is ever written back to the span rows, so editing or
deactivating a rule changes the next read and nothing else.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from .db import select_spans, transaction
from .errors import RuleCompileError
from .models import Category, Project, Rule, Span
from .rules import CATEGORIES, PROJECTS, Label, Namespace, compile_pattern, select_rules

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class TimelineSpan:
    span: Span
    categories: list[Category] = field(default_factory=list)
    projects: list[Project] = field(default_factory=list)


@dataclass(slots=True)
class RuleError:
    """A rule skipped during classification because its pattern is invalid."""

    namespace: str
    rule_id: int
    pattern: str
    message: str


@dataclass(slots=True)
class Timeline:
    start: int
    end: int
    spans: list[TimelineSpan] = field(default_factory=list)
    rule_errors: list[RuleError] = field(default_factory=list)


@dataclass(slots=True)
class AppGroup:
    name: str
    spans: list[Span] = field(default_factory=list)
    total_seconds: int = 0


@dataclass(slots=True)
class LabelGroup:
    label: Label
    spans: list[Span] = field(default_factory=list)
    total_seconds: int = 0


@dataclass(slots=True)
class Overview:
    start: int
    end: int
    total_seconds: int = 0
    apps: list[AppGroup] = field(default_factory=list)
    projects: list[LabelGroup] = field(default_factory=list)
    categories: list[LabelGroup] = field(default_factory=list)
    rule_errors: list[RuleError] = field(default_factory=list)


def default_range(
    start: Optional[int], end: Optional[int], now: Optional[datetime] = None
) -> tuple[int, int]:
    """Fill unset bounds with local midnight today and local midnight tomorrow."""
    today = (now or datetime.now()).replace(hour=0, minute=0, second=0, microsecond=0)
    if start is None:
        start = int(today.timestamp())
    if end is None:
        end = int((today + timedelta(days=1)).timestamp())
    return start, end


def timeline(
    conn: sqlite3.Connection, start: Optional[int] = None, end: Optional[int] = None
) -> Timeline:
    """Return spans overlapping ``[start, end)`` tagged by the active rules."""
    start, end = default_range(start, end)
    with transaction(conn):
        spans = select_spans(conn, start, end)
        category_rules = select_rules(conn, CATEGORIES)
        project_rules = select_rules(conn, PROJECTS)

    result = Timeline(start=start, end=end, spans=[TimelineSpan(span=s) for s in spans])
    _apply_rules(result, PROJECTS, project_rules, "projects")
    _apply_rules(result, CATEGORIES, category_rules, "categories")
    return result


def _apply_rules(
    result: Timeline, ns: Namespace, rules: list[Rule], attr: str
) -> None:
    for rule in rules:
        if not rule.is_active:
            continue
        if rule.target_name is None:
            logger.debug(
                "Skipping %s rule %d: target %d no longer exists",
                ns.name,
                rule.id,
                rule.target_id,
            )
            continue
        try:
            pattern = compile_pattern(rule.pattern)
        except RuleCompileError as exc:
            logger.warning("Skipping %s rule %d: %s", ns.name, rule.id, exc)
            result.rule_errors.append(
                RuleError(
                    namespace=ns.name,
                    rule_id=rule.id,
                    pattern=rule.pattern,
                    message=exc.reason,
                )
            )
            continue

        for item in result.spans:
            tags: list[Label] = getattr(item, attr)
            if any(tag.id == rule.target_id for tag in tags):
                continue
            if pattern.search(item.span.text):
                tags.append(
                    ns.label_type(
                        id=rule.target_id,
                        name=rule.target_name,
                        color=rule.target_color or "",
                    )
                )


def overview(
    conn: sqlite3.Connection, start: Optional[int] = None, end: Optional[int] = None
) -> Overview:
    """Group the timeline by app, project and category.

    A span tagged with several projects (or categories) counts its full
    duration towards each of them, so only the app grouping sums to
    ``total_seconds``.
    """
    data = timeline(conn, start, end)

    apps: OrderedDict[str, AppGroup] = OrderedDict()
    projects: OrderedDict[int, LabelGroup] = OrderedDict()
    categories: OrderedDict[int, LabelGroup] = OrderedDict()
    total = 0

    for item in data.spans:
        span = item.span
        seconds = span.duration_seconds
        total += seconds

        app = apps.setdefault(span.app_name, AppGroup(name=span.app_name))
        app.spans.append(span)
        app.total_seconds += seconds

        for project in item.projects:
            group = projects.setdefault(project.id, LabelGroup(label=project))
            group.spans.append(span)
            group.total_seconds += seconds

        for category in item.categories:
            group = categories.setdefault(category.id, LabelGroup(label=category))
            group.spans.append(span)
            group.total_seconds += seconds

    return Overview(
        start=data.start,
        end=data.end,
        total_seconds=total,
        apps=_by_total(apps.values()),
        projects=_by_total(projects.values()),
        categories=_by_total(categories.values()),
        rule_errors=data.rule_errors,
    )


def _by_total(groups):
    # sorted() is stable, so ties keep first-seen order.
    return sorted(groups, key=lambda group: group.total_seconds, reverse=True)
