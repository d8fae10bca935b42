"""SQLite database layer: connection handling, schema and span queries."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .errors import NotFoundError, StoreError
from .models import Span


SCHEMA_VERSION = 1


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    try:
        conn = sqlite3.connect(
            path,
            isolation_level=None,
            check_same_thread=check_same_thread,
        )
    except sqlite3.Error as exc:
        raise StoreError(f"open database {path}: {exc}") from exc
    conn.row_factory = sqlite3.Row
    try:
        with store_errors("initialize schema"):
            conn.execute("PRAGMA journal_mode = WAL;")
            initialize_schema(conn)
    except StoreError:
        conn.close()
        raise
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """Re-raise ``sqlite3.Error`` as ``StoreError`` prefixed with ``action``."""
    try:
        yield
    except sqlite3.Error as exc:
        raise StoreError(f"{action}: {exc}") from exc


@contextmanager
def transaction(conn: sqlite3.Connection, *, immediate: bool = False) -> Iterator[None]:
    """Run the enclosed statements in one transaction.

    ``immediate`` takes the write lock up front, which read-then-write
    sequences need so that no other writer can slip in between.
    """
    with store_errors("begin transaction"):
        conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
    try:
        yield
    except BaseException:
        with store_errors("rollback transaction"):
            conn.execute("ROLLBACK")
        raise
    with store_errors("commit transaction"):
        conn.execute("COMMIT")


def initialize_schema(conn: sqlite3.Connection) -> None:
    (version,) = conn.execute("PRAGMA user_version;").fetchone()
    if version >= SCHEMA_VERSION:
        return
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS spans (
            id INTEGER PRIMARY KEY,
            app_name TEXT NOT NULL,
            window_title TEXT NOT NULL,
            start_at INTEGER NOT NULL,
            end_at INTEGER NOT NULL,
            CHECK (end_at >= start_at)
        );

        CREATE INDEX IF NOT EXISTS idx_spans_start_at ON spans(start_at);
        CREATE INDEX IF NOT EXISTS idx_spans_end_at ON spans(end_at);

        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS projects (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT ''
        );

        CREATE TABLE IF NOT EXISTS category_rules (
            id INTEGER PRIMARY KEY,
            pattern TEXT NOT NULL,
            category_id INTEGER NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1
        );

        CREATE TABLE IF NOT EXISTS project_rules (
            id INTEGER PRIMARY KEY,
            pattern TEXT NOT NULL,
            project_id INTEGER NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1
        );
        """
    )
    conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION};")


def latest_span(conn: sqlite3.Connection) -> Optional[Span]:
    """Return the most recently created span, or ``None`` for an empty store."""
    with store_errors("select latest span"):
        row = conn.execute(
            """
            SELECT id, app_name, window_title, start_at, end_at
            FROM spans
            ORDER BY id DESC
            LIMIT 1
            """
        ).fetchone()
    return _row_to_span(row) if row else None


def insert_span(
    conn: sqlite3.Connection,
    app_name: str,
    window_title: str,
    start_at: int,
    end_at: int,
) -> Span:
    with store_errors("insert span"):
        cur = conn.execute(
            """
            INSERT INTO spans (app_name, window_title, start_at, end_at)
            VALUES (?, ?, ?, ?)
            """,
            (app_name, window_title, start_at, end_at),
        )
    return Span(
        id=cur.lastrowid,
        app_name=app_name,
        window_title=window_title,
        start_at=start_at,
        end_at=end_at,
    )


def update_span_end(conn: sqlite3.Connection, span_id: int, end_at: int) -> Span:
    """Advance the heartbeat of a single span."""
    with store_errors("update span"):
        cur = conn.execute(
            "UPDATE spans SET end_at = ? WHERE id = ?",
            (end_at, span_id),
        )
        if cur.rowcount == 0:
            raise NotFoundError(f"No span found for id={span_id}")
        row = conn.execute(
            """
            SELECT id, app_name, window_title, start_at, end_at
            FROM spans
            WHERE id = ?
            """,
            (span_id,),
        ).fetchone()
    return _row_to_span(row)


def select_spans(conn: sqlite3.Connection, start: int, end: int) -> list[Span]:
    """Return spans overlapping the half-open range ``[start, end)``."""
    with store_errors("select spans"):
        rows = conn.execute(
            """
            SELECT id, app_name, window_title, start_at, end_at
            FROM spans
            WHERE start_at < ? AND end_at > ?
            ORDER BY start_at, id
            """,
            (end, start),
        ).fetchall()
    return [_row_to_span(row) for row in rows]


def _row_to_span(row: sqlite3.Row) -> Span:
    return Span(
        id=row["id"],
        app_name=row["app_name"],
        window_title=row["window_title"],
        start_at=row["start_at"],
        end_at=row["end_at"],
    )
