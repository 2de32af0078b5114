"""DuckDB catalog helpers.

Common patterns for querying DuckDB's table catalog and safely counting
rows in the pipeline database.
"""

from __future__ import annotations

from typing import Iterable

import duckdb


def quote_ident(name: str) -> str:
    """Quote an identifier for DuckDB SQL."""
    return '"' + name.replace('"', '""') + '"'


def _excluded(name: str, exclude_prefixes: Iterable[str]) -> bool:
    for p in exclude_prefixes:
        if p and name.startswith(p):
            return True
    return False


def list_tables(
    conn: duckdb.DuckDBPyConnection,
    *,
    include_internal: bool = False,
    exclude_prefixes: Iterable[str] = (),
) -> list[str]:
    """Return table names from the catalog."""
    where = "" if include_internal else "WHERE internal = false"
    rows = conn.execute(
        f"SELECT table_name FROM duckdb_tables() {where} ORDER BY table_name"
    ).fetchall()
    names = [r[0] for r in rows]
    if exclude_prefixes:
        names = [n for n in names if not _excluded(n, exclude_prefixes)]
    return names


def table_exists(conn: duckdb.DuckDBPyConnection, table_name: str) -> bool:
    """Return True if a user table exists."""
    rows = conn.execute(
        "SELECT 1 FROM duckdb_tables() WHERE table_name = ? AND internal = false",
        [table_name],
    ).fetchall()
    return bool(rows)


def count_rows(conn: duckdb.DuckDBPyConnection, relation_name: str) -> int | None:
    """Return COUNT(*) for a table/view, or None on error."""
    try:
        row = conn.execute(
            f"SELECT COUNT(*) FROM {quote_ident(relation_name)}"
        ).fetchone()
    except duckdb.Error:
        return None
    if not row:
        return 0
    return int(row[0])


def count_rows_display(conn: duckdb.DuckDBPyConnection, relation_name: str) -> str:
    """Return a display-friendly row count (or 'error')."""
    n = count_rows(conn, relation_name)
    return str(n) if n is not None else "error"
