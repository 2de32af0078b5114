"""Pipeline infrastructure tables.

Centralizes creation and persistence for pipeline-internal tables:
- _trace (+ _trace_seq)
- _run_meta
- _parse_errors
"""

from __future__ import annotations

import datetime
import importlib.metadata
import json
import platform
import sys
import time
from typing import Any, Iterable

import duckdb

from .schema import SCHEMA_VERSION
from .sql_utils import get_column_schema


def init_infra(conn: duckdb.DuckDBPyConnection) -> None:
    """Ensure all pipeline infra tables exist."""
    ensure_trace(conn)
    ensure_run_meta(conn)
    ensure_parse_errors(conn)


# ---------------------------------------------------------------------------
# Trace
# ---------------------------------------------------------------------------


def ensure_trace(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute("CREATE SEQUENCE IF NOT EXISTS _trace_seq")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _trace (
            id INTEGER DEFAULT nextval('_trace_seq'),
            timestamp TIMESTAMP DEFAULT current_timestamp,
            report VARCHAR,
            query VARCHAR NOT NULL,
            success BOOLEAN NOT NULL,
            error VARCHAR,
            row_count INTEGER,
            elapsed_ms DOUBLE
        )
        """
    )


def log_trace(
    conn: duckdb.DuckDBPyConnection,
    query: str,
    success: bool,
    *,
    error: str | None = None,
    row_count: int | None = None,
    elapsed_ms: float | None = None,
    report_name: str | None = None,
) -> None:
    """Log a SQL query execution to the _trace table."""
    conn.execute(
        """
        INSERT INTO _trace (report, query, success, error, row_count, elapsed_ms)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        [report_name, query, success, error, row_count, elapsed_ms],
    )


# ---------------------------------------------------------------------------
# Run metadata
# ---------------------------------------------------------------------------


def ensure_run_meta(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _run_meta (
            key VARCHAR PRIMARY KEY,
            value VARCHAR
        )
        """
    )


def persist_run_meta(
    conn: duckdb.DuckDBPyConnection,
    reference_date: datetime.date,
    *,
    source: str | None = None,
    source_row_counts: dict[str, int] | None = None,
) -> None:
    """Write run-level metadata to _run_meta."""
    ensure_run_meta(conn)
    conn.execute("DELETE FROM _run_meta")

    try:
        pkg_version = importlib.metadata.version("hr-analytics")
    except importlib.metadata.PackageNotFoundError:
        pkg_version = "unknown"

    rows: list[tuple[str, str]] = [
        ("meta_version", "1"),
        ("created_at_utc", time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())),
        ("hr_analytics_version", pkg_version),
        ("python_version", sys.version.split()[0]),
        ("platform", platform.platform()),
        ("schema_version", str(SCHEMA_VERSION)),
        ("reference_date", reference_date.isoformat()),
    ]

    if source:
        rows.append(("source", json.dumps({"input": source}, sort_keys=True)))

    if source_row_counts:
        source_schemas = {
            table: [
                {"name": r[0], "type": r[1]} for r in get_column_schema(conn, table)
            ]
            for table in sorted(source_row_counts)
        }
        rows.append(
            ("inputs_row_counts", json.dumps(source_row_counts, sort_keys=True))
        )
        rows.append(("inputs_schema", json.dumps(source_schemas, sort_keys=True)))

    conn.executemany("INSERT INTO _run_meta (key, value) VALUES (?, ?)", rows)


def read_run_meta(conn: duckdb.DuckDBPyConnection) -> dict[str, str]:
    """Read run metadata. Returns empty dict if table doesn't exist."""
    try:
        return dict(conn.execute("SELECT key, value FROM _run_meta").fetchall())
    except duckdb.Error:
        return {}


def upsert_run_meta(
    conn: duckdb.DuckDBPyConnection, rows: list[tuple[str, str]]
) -> None:
    """Upsert additional run metadata rows."""
    ensure_run_meta(conn)
    conn.executemany(
        """
        INSERT INTO _run_meta (key, value)
        VALUES (?, ?)
        ON CONFLICT(key) DO UPDATE SET value = excluded.value
        """,
        rows,
    )


# ---------------------------------------------------------------------------
# Parse errors
# ---------------------------------------------------------------------------


def ensure_parse_errors(conn: duckdb.DuckDBPyConnection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS _parse_errors (
            row_id  INTEGER NOT NULL,
            emp_id  INTEGER,
            field   VARCHAR NOT NULL,
            value   VARCHAR,
            message VARCHAR NOT NULL
        )
        """
    )


def persist_parse_errors(
    conn: duckdb.DuckDBPyConnection, errors: Iterable[Any]
) -> None:
    """Replace _parse_errors with the errors of the latest clean pass."""
    ensure_parse_errors(conn)
    conn.execute("DELETE FROM _parse_errors")
    rows = [
        (
            e.row_id,
            e.emp_id,
            e.field,
            None if e.value is None else str(e.value),
            e.message,
        )
        for e in errors
    ]
    if rows:
        conn.executemany("INSERT INTO _parse_errors VALUES (?, ?, ?, ?, ?)", rows)


def read_parse_errors(conn: duckdb.DuckDBPyConnection) -> list[dict[str, Any]]:
    """Read persisted parse errors ordered by row. Empty if none recorded."""
    try:
        rows = conn.execute(
            """
            SELECT row_id, emp_id, field, value, message
            FROM _parse_errors
            ORDER BY row_id, field
            """
        ).fetchall()
    except duckdb.Error:
        return []
    keys = ("row_id", "emp_id", "field", "value", "message")
    return [dict(zip(keys, r)) for r in rows]
