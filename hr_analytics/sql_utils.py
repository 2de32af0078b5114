from dataclasses import dataclass

import duckdb

_parser_conn: duckdb.DuckDBPyConnection | None = None


def get_parser_conn() -> duckdb.DuckDBPyConnection:
    """Lazy singleton in-memory connection for SQL parsing."""
    global _parser_conn
    if _parser_conn is None:
        _parser_conn = duckdb.connect(":memory:")
    return _parser_conn


class SqlParseError(ValueError):
    """Raised when DuckDB cannot parse SQL text."""


@dataclass(frozen=True)
class ParsedStatement:
    """A single parsed SQL statement."""

    sql: str
    stmt_type: object


def parse_one_statement(sql_text: str) -> ParsedStatement:
    """Parse *sql_text* into exactly one statement.

    Enforces:
    - non-empty
    - exactly one statement
    """
    sql_text = (sql_text or "").strip()
    if not sql_text:
        raise SqlParseError("Empty query")

    try:
        statements = get_parser_conn().extract_statements(sql_text)
    except duckdb.Error as e:
        raise SqlParseError(f"SQL parse error: {e}") from e

    if not statements:
        raise SqlParseError("Empty query")
    if len(statements) > 1:
        raise SqlParseError("Only one statement allowed at a time")

    stmt = statements[0]
    return ParsedStatement(sql=stmt.query.strip(), stmt_type=stmt.type)


def parse_select_statement(sql_text: str) -> ParsedStatement:
    """Parse *sql_text* and require it to be a single read-only SELECT."""
    parsed = parse_one_statement(sql_text)
    if parsed.stmt_type != duckdb.StatementType.SELECT:
        raise SqlParseError(
            f"Only SELECT statements are allowed, got {parsed.stmt_type}"
        )
    return parsed


def get_column_names(conn: duckdb.DuckDBPyConnection, table_name: str) -> set[str]:
    """Get the set of column names for a table or view."""
    rows = conn.execute(
        """
        SELECT column_name
        FROM information_schema.columns
        WHERE table_name = ?
        """,
        [table_name],
    ).fetchall()
    return {row[0] for row in rows}


def get_column_schema(
    conn: duckdb.DuckDBPyConnection, table_name: str
) -> list[tuple[str, str]]:
    """Get the column names and data types for a table or view."""
    rows = conn.execute(
        """
        SELECT column_name, data_type
        FROM information_schema.columns
        WHERE table_name = ?
        ORDER BY ordinal_position
        """,
        [table_name],
    ).fetchall()
    return [(row[0], row[1]) for row in rows]
