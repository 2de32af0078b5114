"""Ingestion module: load raw employee records into DuckDB.

Accepts Polars DataFrames, list[dict] (array of structs), or dict[str, list]
(struct of arrays). All are coerced to DataFrame before writing.

Also supports file-based inputs (csv, parquet, excel).

Loading happens in two steps. The input is first staged verbatim into
``employees_raw`` (one row per record, ``_row_id`` = load order). The
fixed-schema ``employees`` table is then populated from the staged rows;
text that still needs parsing is left for the cleaner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
import polars as pl

from .catalog import count_rows, quote_ident
from .schema import (
    COLUMNS,
    EMPLOYEES_TABLE,
    RAW_TABLE,
    ROW_ID,
    SOURCE_COLUMNS,
    Column,
    create_employees_table,
)
from .sql_utils import get_column_schema

log = logging.getLogger(__name__)


# Type alias for data the user can pass as records
TableData = Any  # pl.DataFrame | list[dict] | dict[str, list]


SUPPORTED_FILE_EXTENSIONS = {
    ".csv": "csv",
    ".parquet": "parquet",
    ".xlsx": "excel",
    ".xls": "excel",
}


class SchemaError(ValueError):
    """Raised when the input cannot be mapped onto the employee schema."""


@dataclass(frozen=True)
class FileInput:
    path: Path
    format: str
    sheet: str | None = None


@dataclass
class LoadResult:
    """Outcome of loading one source into the employees table.

    Attributes:
        rows: Number of records loaded.
        columns: Schema column -> input column name it was read from.
        extra_columns: Input columns with no place in the schema. They stay
            available in ``employees_raw``.
    """

    rows: int
    columns: dict[str, str] = field(default_factory=dict)
    extra_columns: list[str] = field(default_factory=list)


def coerce_to_dataframe(data: TableData) -> pl.DataFrame:
    """Convert supported tabular formats to a Polars DataFrame.

    Accepted formats:
    - pl.DataFrame: returned as-is
    - list[dict]: array of structs, e.g. [{"a": 1, "b": 2}, ...]
    - dict[str, list]: struct of arrays, e.g. {"a": [1, 2], "b": [3, 4]}

    Raw records may mix encodings within a field (``55000`` next to
    ``"55,000"``); such columns are widened to their common supertype.

    Raises TypeError for unsupported formats.
    """
    if isinstance(data, pl.DataFrame):
        return data
    if isinstance(data, list):
        return pl.DataFrame(data, strict=False, infer_schema_length=None)
    if isinstance(data, dict):
        return pl.DataFrame(data, strict=False)
    raise TypeError(
        f"Unsupported data type: {type(data).__name__}. "
        f"Expected DataFrame, list[dict], or dict[str, list]."
    )


def is_supported_file_string(value: str) -> bool:
    """Return True if value looks like a supported file path."""
    raw = value.rsplit("#", 1)[0]
    suffix = Path(raw).suffix.lower()
    return suffix in SUPPORTED_FILE_EXTENSIONS


def _normalize_path(path: Path, base_dir: Path | None = None) -> Path:
    """Resolve path against base_dir (or cwd) and expand user/symlinks."""
    path = path.expanduser()
    if not path.is_absolute():
        if base_dir is None:
            base_dir = Path.cwd()
        path = base_dir / path
    return path.resolve()


def parse_file_string(value: str, base_dir: Path | None = None) -> FileInput:
    """Parse a file input string into a FileInput.

    Supports Excel sheet fragments: "file.xlsx#Sheet1".
    """
    if not value or not value.strip():
        raise ValueError("File path must be a non-empty string")

    raw = value.strip()
    sheet: str | None = None
    if "#" in raw:
        path_part, sheet_part = raw.rsplit("#", 1)
        if not path_part:
            raise ValueError("File path must precede '#'")
        if not sheet_part:
            raise ValueError("Excel sheet name must follow '#' fragment")
        raw = path_part
        sheet = sheet_part

    path = _normalize_path(Path(raw), base_dir=base_dir)
    suffix = path.suffix.lower()
    if suffix not in SUPPORTED_FILE_EXTENSIONS:
        raise ValueError(f"Unsupported file extension: {suffix}")
    fmt = SUPPORTED_FILE_EXTENSIONS[suffix]
    if sheet and fmt != "excel":
        raise ValueError("Sheet fragments are only supported for Excel files")
    return FileInput(path=path, format=fmt, sheet=sheet)


def parse_file_path(path: Path, base_dir: Path | None = None) -> FileInput:
    """Parse a Path into a FileInput (no sheet support)."""
    normalized = _normalize_path(path, base_dir=base_dir)
    suffix = normalized.suffix.lower()
    if suffix not in SUPPORTED_FILE_EXTENSIONS:
        raise ValueError(f"Unsupported file extension: {suffix}")
    fmt = SUPPORTED_FILE_EXTENSIONS[suffix]
    return FileInput(path=normalized, format=fmt)


def _write_table(
    conn: duckdb.DuckDBPyConnection, df: pl.DataFrame, table_name: str
) -> None:
    """Write a DataFrame to DuckDB with a _row_id INTEGER load-order column.

    Uses DuckDB's native DataFrame scan for bulk ingestion.
    """
    conn.execute(f'DROP TABLE IF EXISTS "{table_name}"')
    conn.register("_df", df)
    try:
        conn.execute(
            f'CREATE TABLE "{table_name}" AS '
            f'SELECT CAST(row_number() OVER () AS INTEGER) AS "{ROW_ID}", * '
            "FROM _df"
        )
    finally:
        conn.unregister("_df")


def _write_table_from_query(
    conn: duckdb.DuckDBPyConnection,
    table_name: str,
    query: str,
    params: list[Any],
) -> None:
    """Write the results of a parameterized query to a table with a given name."""
    conn.execute(f'DROP TABLE IF EXISTS "{table_name}"')
    conn.execute(f'CREATE TABLE "{table_name}" AS {query}', params)


def ingest_table(
    conn: duckdb.DuckDBPyConnection, data: TableData, table_name: str
) -> None:
    """Ingest tabular data into the database as a named table.

    Accepts DataFrame, list[dict], or dict[str, list].
    Creates a table with a _row_id INTEGER column numbering rows in load order.
    """
    df = coerce_to_dataframe(data)
    _write_table(conn, df, table_name)


def _ensure_file_exists(path: Path) -> None:
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")


def ingest_csv(conn: duckdb.DuckDBPyConnection, path: Path, table_name: str) -> None:
    """Ingest a CSV file with every column kept as text."""
    _ensure_file_exists(path)
    query = (
        f'SELECT CAST(row_number() OVER () AS INTEGER) AS "{ROW_ID}", * '
        "FROM read_csv(?, header = true, all_varchar = true)"
    )
    _write_table_from_query(conn, table_name, query, [str(path)])


def ingest_parquet(
    conn: duckdb.DuckDBPyConnection, path: Path, table_name: str
) -> None:
    _ensure_file_exists(path)
    query = (
        f'SELECT CAST(row_number() OVER () AS INTEGER) AS "{ROW_ID}", * '
        "FROM read_parquet(?)"
    )
    _write_table_from_query(conn, table_name, query, [str(path)])


def ingest_excel(
    conn: duckdb.DuckDBPyConnection,
    path: Path,
    table_name: str,
    sheet: str | None = None,
) -> None:
    _ensure_file_exists(path)
    try:
        conn.execute("INSTALL excel")
        conn.execute("LOAD excel")
    except duckdb.Error as e:
        raise RuntimeError(f"Failed to load DuckDB excel extension: {e}") from e

    if sheet:
        query = (
            f'SELECT CAST(row_number() OVER () AS INTEGER) AS "{ROW_ID}", * '
            "FROM read_xlsx(?, sheet = ?, header = true)"
        )
        params = [str(path), sheet]
    else:
        query = (
            f'SELECT CAST(row_number() OVER () AS INTEGER) AS "{ROW_ID}", * '
            "FROM read_xlsx(?, header = true)"
        )
        params = [str(path)]
    _write_table_from_query(conn, table_name, query, params)


def ingest_file(
    conn: duckdb.DuckDBPyConnection,
    file_input: FileInput,
    table_name: str,
) -> None:
    fmt = file_input.format
    if fmt == "csv":
        ingest_csv(conn, file_input.path, table_name)
    elif fmt == "parquet":
        ingest_parquet(conn, file_input.path, table_name)
    elif fmt == "excel":
        ingest_excel(conn, file_input.path, table_name, sheet=file_input.sheet)
    else:
        raise ValueError(f"Unsupported file format: {fmt}")


def resolve_source(source: Any, base_dir: Path | None = None) -> Any:
    """Turn file paths/strings into FileInput; pass record data through."""
    if isinstance(source, FileInput):
        return source
    if isinstance(source, Path):
        return parse_file_path(source, base_dir=base_dir)
    if isinstance(source, str):
        if not is_supported_file_string(source):
            raise ValueError(f"Unsupported file extension: {Path(source).suffix}")
        return parse_file_string(source, base_dir=base_dir)
    return source


def stage_source(conn: duckdb.DuckDBPyConnection, source: Any) -> None:
    """Stage a source (records or file) verbatim into the raw table."""
    source = resolve_source(source)
    if isinstance(source, FileInput):
        ingest_file(conn, source, RAW_TABLE)
        return
    df = coerce_to_dataframe(source)
    if not df.columns:
        raise SchemaError(f"Missing required field(s): {', '.join(SOURCE_COLUMNS)}")
    ingest_table(conn, df, RAW_TABLE)


# ---------------------------------------------------------------------------
# Employees table
# ---------------------------------------------------------------------------


def _match_columns(raw_columns: list[str]) -> tuple[dict[str, str], list[str]]:
    """Map schema columns onto input columns by case-insensitive name."""
    by_key: dict[str, str] = {}
    for name in raw_columns:
        if name == ROW_ID:
            continue
        by_key.setdefault(name.strip().lower(), name)

    mapping: dict[str, str] = {}
    for col in SOURCE_COLUMNS:
        raw_name = by_key.pop(col.lower(), None)
        if raw_name is not None:
            mapping[col] = raw_name
    return mapping, sorted(by_key.values())


def _is_temporal(sql_type: str) -> bool:
    return sql_type.upper().startswith(("DATE", "TIMESTAMP"))


def _integer_sql(ref: str) -> str:
    """SQL casting *ref* to INTEGER, NULL unless it is a whole number.

    A plain ``TRY_CAST(... AS INTEGER)`` rounds ``'1.6'`` to 2.
    """
    as_double = f"TRY_CAST({ref} AS DOUBLE)"
    return (
        f"CASE WHEN {as_double} = floor({as_double}) "
        f"THEN TRY_CAST({as_double} AS INTEGER) END"
    )


def _select_expr(column: Column, raw_name: str | None, raw_type: str | None) -> str:
    """SQL expression reading *column* from the staged raw row ``r``."""
    if raw_name is None:
        return "NULL"
    ref = f"r.{quote_ident(raw_name)}"
    if column.kind in ("key", "integer"):
        return _integer_sql(ref)
    if column.kind == "category":
        return f"CAST({ref} AS VARCHAR)"
    if column.kind == "date" and raw_type and _is_temporal(raw_type):
        return f"CAST({ref} AS DATE)"
    # Text dates, salary and derived fields belong to the cleaner.
    return "NULL"


def _check_emp_ids(conn: duckdb.DuckDBPyConnection, raw_name: str) -> None:
    emp_id = _integer_sql(quote_ident(raw_name))
    invalid = conn.execute(
        f"SELECT COUNT(*) FROM {quote_ident(RAW_TABLE)} WHERE ({emp_id}) IS NULL"
    ).fetchone()[0]
    if invalid:
        raise SchemaError(f"EmpID is missing or not an integer in {invalid} record(s)")

    dupes = conn.execute(
        f"SELECT {emp_id} AS emp_id "
        f"FROM {quote_ident(RAW_TABLE)} "
        "GROUP BY 1 HAVING COUNT(*) > 1 ORDER BY 1 LIMIT 10"
    ).fetchall()
    if dupes:
        ids = ", ".join(str(r[0]) for r in dupes)
        raise SchemaError(f"EmpID must be unique; duplicated: {ids}")


def populate_employees(conn: duckdb.DuckDBPyConnection) -> LoadResult:
    """Build the fixed-schema employees table from the staged raw table.

    Raises SchemaError if a required field is absent from every record or
    the EmpID key is not a unique integer.
    """
    raw_schema = get_column_schema(conn, RAW_TABLE)
    raw_types = dict(raw_schema)
    mapping, extras = _match_columns([name for name, _ in raw_schema])

    missing = [c for c in SOURCE_COLUMNS if c not in mapping]
    if missing:
        raise SchemaError(f"Missing required field(s): {', '.join(missing)}")

    _check_emp_ids(conn, mapping["EmpID"])

    create_employees_table(conn)
    names = [ROW_ID] + [c.name for c in COLUMNS]
    exprs = [f"r.{quote_ident(ROW_ID)}"]
    for column in COLUMNS:
        raw_name = mapping.get(column.name)
        exprs.append(_select_expr(column, raw_name, raw_types.get(raw_name or "")))

    target = ", ".join(quote_ident(n) for n in names)
    select = ",\n    ".join(exprs)
    conn.execute(
        f"INSERT INTO {quote_ident(EMPLOYEES_TABLE)} ({target})\n"
        f"SELECT\n    {select}\n"
        f"FROM {quote_ident(RAW_TABLE)} r\n"
        f"ORDER BY r.{quote_ident(ROW_ID)}"
    )

    rows = count_rows(conn, EMPLOYEES_TABLE) or 0
    if extras:
        log.info("  ignoring %d extra input column(s): %s", len(extras), ", ".join(extras))
    return LoadResult(rows=rows, columns=mapping, extra_columns=extras)


def load_employees(conn: duckdb.DuckDBPyConnection, source: Any) -> LoadResult:
    """Load raw employee records into the employees table.

    *source* is a DataFrame, list[dict], dict[str, list], a FileInput, or a
    path (str/Path) to a csv, parquet or excel file.
    """
    stage_source(conn, source)
    log.info("Staged %s raw record(s)", count_rows(conn, RAW_TABLE))
    result = populate_employees(conn)
    log.info("Loaded %d employee record(s)", result.rows)
    return result
