"""Persistence for categories, projects and the rules that target them."""

from __future__ import annotations

import re
import sqlite3
from dataclasses import dataclass
from typing import Union

from .db import store_errors
from .errors import NotFoundError, RuleCompileError
from .models import Category, Project, Rule


Label = Union[Category, Project]


@dataclass(frozen=True, slots=True)
class Namespace:
    """Table layout of one label namespace (categories or projects)."""

    name: str
    label_table: str
    rule_table: str
    target_column: str
    label_type: type


CATEGORIES = Namespace(
    name="category",
    label_table="categories",
    rule_table="category_rules",
    target_column="category_id",
    label_type=Category,
)
PROJECTS = Namespace(
    name="project",
    label_table="projects",
    rule_table="project_rules",
    target_column="project_id",
    label_type=Project,
)


def compile_pattern(pattern: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as exc:
        raise RuleCompileError(pattern, str(exc)) from exc


def select_labels(conn: sqlite3.Connection, ns: Namespace) -> list[Label]:
    with store_errors(f"select {ns.label_table}"):
        rows = conn.execute(
            f"SELECT id, name, color FROM {ns.label_table} ORDER BY name COLLATE NOCASE, id"
        ).fetchall()
    return [ns.label_type(id=row["id"], name=row["name"], color=row["color"]) for row in rows]


def save_label(conn: sqlite3.Connection, ns: Namespace, label: Label) -> Label:
    """Insert ``label``, or update it in place when it carries a positive id."""
    name = label.name.strip()
    if not name:
        raise ValueError(f"{ns.name} name is required")
    color = label.color or ""

    if label.id and label.id > 0:
        with store_errors(f"update {ns.name}"):
            cur = conn.execute(
                f"UPDATE {ns.label_table} SET name = ?, color = ? WHERE id = ?",
                (name, color, label.id),
            )
        if cur.rowcount == 0:
            raise NotFoundError(f"No {ns.name} found for id={label.id}")
        return ns.label_type(id=label.id, name=name, color=color)

    with store_errors(f"insert {ns.name}"):
        cur = conn.execute(
            f"INSERT INTO {ns.label_table} (name, color) VALUES (?, ?)",
            (name, color),
        )
    return ns.label_type(id=cur.lastrowid, name=name, color=color)


def delete_label(conn: sqlite3.Connection, ns: Namespace, label_id: int) -> None:
    # Rules pointing at the label are left in place.
    with store_errors(f"delete {ns.name}"):
        cur = conn.execute(f"DELETE FROM {ns.label_table} WHERE id = ?", (label_id,))
    if cur.rowcount == 0:
        raise NotFoundError(f"No {ns.name} found for id={label_id}")


def select_rules(conn: sqlite3.Connection, ns: Namespace) -> list[Rule]:
    """Return every rule of the namespace joined with its target's name and color."""
    with store_errors(f"select {ns.rule_table}"):
        rows = conn.execute(
            f"""
            SELECT
                r.id,
                r.pattern,
                r.{ns.target_column} AS target_id,
                r.is_active,
                l.name AS target_name,
                l.color AS target_color
            FROM {ns.rule_table} AS r
            LEFT JOIN {ns.label_table} AS l ON l.id = r.{ns.target_column}
            ORDER BY r.id
            """
        ).fetchall()
    return [
        Rule(
            id=row["id"],
            pattern=row["pattern"],
            target_id=row["target_id"],
            is_active=bool(row["is_active"]),
            target_name=row["target_name"],
            target_color=row["target_color"],
        )
        for row in rows
    ]


def save_rule(conn: sqlite3.Connection, ns: Namespace, rule: Rule) -> Rule:
    """Insert or update a rule after checking that its pattern compiles.

    An ``is_active`` of ``None`` keeps the stored flag on update and means
    active on insert.
    """
    compile_pattern(rule.pattern)
    is_active = rule.is_active
    flag = None if is_active is None else int(is_active)

    if rule.id and rule.id > 0:
        with store_errors(f"update {ns.name} rule"):
            cur = conn.execute(
                f"""
                UPDATE {ns.rule_table}
                SET pattern = ?, {ns.target_column} = ?, is_active = COALESCE(?, is_active)
                WHERE id = ?
                """,
                (rule.pattern, rule.target_id, flag, rule.id),
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"No {ns.name} rule found for id={rule.id}")
            if is_active is None:
                (stored,) = conn.execute(
                    f"SELECT is_active FROM {ns.rule_table} WHERE id = ?", (rule.id,)
                ).fetchone()
                is_active = bool(stored)
        rule_id = rule.id
    else:
        with store_errors(f"insert {ns.name} rule"):
            cur = conn.execute(
                f"""
                INSERT INTO {ns.rule_table} (pattern, {ns.target_column}, is_active)
                VALUES (?, ?, ?)
                """,
                (rule.pattern, rule.target_id, 1 if flag is None else flag),
            )
        rule_id = cur.lastrowid
        if is_active is None:
            is_active = True

    return Rule(
        id=rule_id,
        pattern=rule.pattern,
        target_id=rule.target_id,
        is_active=is_active,
    )


def delete_rule(conn: sqlite3.Connection, ns: Namespace, rule_id: int) -> None:
    with store_errors(f"delete {ns.name} rule"):
        cur = conn.execute(f"DELETE FROM {ns.rule_table} WHERE id = ?", (rule_id,))
    if cur.rowcount == 0:
        raise NotFoundError(f"No {ns.name} rule found for id={rule_id}")


def select_categories(conn: sqlite3.Connection) -> list[Category]:
    return select_labels(conn, CATEGORIES)


def select_projects(conn: sqlite3.Connection) -> list[Project]:
    return select_labels(conn, PROJECTS)


def select_category_rules(conn: sqlite3.Connection) -> list[Rule]:
    return select_rules(conn, CATEGORIES)


def select_project_rules(conn: sqlite3.Connection) -> list[Rule]:
    return select_rules(conn, PROJECTS)


def save_category(conn: sqlite3.Connection, category: Category) -> Category:
    return save_label(conn, CATEGORIES, category)


def save_project(conn: sqlite3.Connection, project: Project) -> Project:
    return save_label(conn, PROJECTS, project)


def delete_category(conn: sqlite3.Connection, category_id: int) -> None:
    delete_label(conn, CATEGORIES, category_id)


def delete_project(conn: sqlite3.Connection, project_id: int) -> None:
    delete_label(conn, PROJECTS, project_id)


def save_category_rule(conn: sqlite3.Connection, rule: Rule) -> Rule:
    return save_rule(conn, CATEGORIES, rule)


def save_project_rule(conn: sqlite3.Connection, rule: Rule) -> Rule:
    return save_rule(conn, PROJECTS, rule)


def delete_category_rule(conn: sqlite3.Connection, rule_id: int) -> None:
    delete_rule(conn, CATEGORIES, rule_id)


def delete_project_rule(conn: sqlite3.Connection, rule_id: int) -> None:
    delete_rule(conn, PROJECTS, rule_id)
