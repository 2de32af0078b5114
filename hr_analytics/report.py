"""Reporter: the fixed catalog of read-only HR aggregate queries.

Each catalog entry is a single SELECT over the cleaned ``employees`` table
and produces one named result set: a list of rows, each a mapping from
output column name to value.

Queries are independent. ``run_report`` can run them concurrently on
per-thread DuckDB cursors; results are identical to a sequential run and
always come back in catalog order.

Usage:

    results = await run_report(conn, reference_date, max_concurrency=4)
    results["attrition_rate"]  # [{"attrition_rate": 12.5}]
"""

from __future__ import annotations

import asyncio
import datetime
import logging
import time
from dataclasses import dataclass
from typing import Any, Iterable

import duckdb

from .catalog import quote_ident
from .infra import log_trace
from .schema import COLUMN_NAMES, EMPLOYEES_TABLE, ROW_ID
from .sql_utils import parse_select_statement

log = logging.getLogger(__name__)

Row = dict[str, Any]

# (label, lower bound inclusive, upper bound exclusive); None = unbounded.
Bucket = tuple[str, float | None, float | None]

SALARY_BUCKETS: tuple[Bucket, ...] = (
    ("<30K", None, 30000),
    ("30K-49K", 30000, 50000),
    ("50K-69K", 50000, 70000),
    ("70K-89K", 70000, 90000),
    ("90K and above", 90000, None),
)

AGE_BUCKETS: tuple[Bucket, ...] = (
    ("<20", None, 20),
    ("20-29", 20, 30),
    ("30-39", 30, 40),
    ("40-49", 40, 50),
    ("50-59", 50, 60),
    ("60 and above", 60, None),
)

SAMPLE_SIZE = 5


@dataclass(frozen=True)
class ReportQuery:
    """A named read-only query of the report catalog."""

    name: str
    sql: str
    description: str = ""
    uses_reference_date: bool = False


def bucket_for(value: Any, buckets: Iterable[Bucket]) -> str | None:
    """Return the label of the bucket holding *value* (None for None)."""
    if value is None:
        return None
    for label, lower, upper in buckets:
        if (lower is None or value >= lower) and (upper is None or value < upper):
            return label
    raise ValueError(f"No bucket covers {value!r}")


def _bucket_condition(column: str, lower: float | None, upper: float | None) -> str:
    parts = []
    if lower is not None:
        parts.append(f"{column} >= {lower}")
    if upper is not None:
        parts.append(f"{column} < {upper}")
    return " AND ".join(parts) or "TRUE"


def bucket_case_sql(column: str, buckets: Iterable[Bucket], *, index: bool = False) -> str:
    """Render a bucket table as a SQL CASE expression.

    Yields the bucket label, or its 1-based position when *index* is set.
    NULL values fall through to NULL.
    """
    whens = []
    for i, (label, lower, upper) in enumerate(buckets, start=1):
        result = str(i) if index else "'" + label.replace("'", "''") + "'"
        whens.append(f"WHEN {_bucket_condition(column, lower, upper)} THEN {result}")
    return "CASE " + " ".join(whens) + " END"


def complete_years_sql(start: str, end: str) -> str:
    """SQL for whole years elapsed from *start* to *end* (both DATE)."""
    return (
        f"(year({end}) - year({start}) - CASE "
        f"WHEN month({end}) < month({start}) "
        f"OR (month({end}) = month({start}) AND day({end}) < day({start})) "
        f"THEN 1 ELSE 0 END)"
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

_T = quote_ident(EMPLOYEES_TABLE)


def _scalar(name: str, expr: str, where: str = "", description: str = "") -> ReportQuery:
    sql = f"SELECT {expr} AS {name} FROM {_T}"
    if where:
        sql += f" WHERE {where}"
    return ReportQuery(name=name, sql=sql, description=description)


def _count_by(name: str, column: str, description: str = "") -> ReportQuery:
    col = quote_ident(column)
    return ReportQuery(
        name=name,
        sql=(
            f"SELECT {col}, COUNT(*) AS employees FROM {_T} "
            f"GROUP BY {col} ORDER BY employees DESC, {col} NULLS LAST"
        ),
        description=description or f"Employee count per {column}",
    )


def _distribution(
    name: str, column: str, label: str, buckets: tuple[Bucket, ...], description: str
) -> ReportQuery:
    col = quote_ident(column)
    return ReportQuery(
        name=name,
        sql=(
            f"SELECT {label}, COUNT(*) AS employees FROM ("
            f"SELECT {bucket_case_sql(col, buckets)} AS {label}, "
            f"{bucket_case_sql(col, buckets, index=True)} AS bucket_order "
            f"FROM {_T} WHERE {col} IS NOT NULL"
            f") GROUP BY {label}, bucket_order ORDER BY bucket_order"
        ),
        description=description,
    )


def _aggregate_by(
    name: str, key: str, expr: str, alias: str, where: str = "", description: str = ""
) -> ReportQuery:
    col = quote_ident(key)
    filter_sql = f" WHERE {where}" if where else ""
    return ReportQuery(
        name=name,
        sql=(
            f"SELECT {col}, {expr} AS {alias} FROM {_T}{filter_sql} "
            f"GROUP BY {col} ORDER BY {col} NULLS LAST"
        ),
        description=description,
    )


_RECORD_COLUMNS = ", ".join(quote_ident(c) for c in COLUMN_NAMES)

_TENURE_YEARS = complete_years_sql(
    '"DateofHire"', 'COALESCE("DateofTermination", CAST($reference_date AS DATE))'
)

CATALOG: tuple[ReportQuery, ...] = (
    # Scalars
    _scalar("total_employees", "COUNT(*)", description="Total employees"),
    _scalar(
        "terminated_employees",
        "COUNT(*)",
        '"EmployeeCurrentStatus" = 0',
        "Former employees",
    ),
    _scalar(
        "current_employees",
        "COUNT(*)",
        '"EmployeeCurrentStatus" = 1',
        "Current employees",
    ),
    _scalar(
        "average_salary",
        'CAST(AVG("Salary") AS DECIMAL(12, 2))',
        description="Average salary",
    ),
    _scalar("average_age", 'ROUND(AVG("Age"), 2)', description="Average age"),
    ReportQuery(
        name="average_tenure",
        sql=(
            f"SELECT ROUND(AVG({_TENURE_YEARS}), 2) "
            f"AS average_tenure FROM {_T} "
            'WHERE "DateofHire" IS NOT NULL '
            'AND ("DateofTermination" IS NOT NULL OR "EmployeeCurrentStatus" = 1)'
        ),
        description="Average tenure in whole years",
        uses_reference_date=True,
    ),
    _scalar(
        "attrition_rate",
        "CASE WHEN COUNT(*) = 0 THEN CAST(0 AS DOUBLE) ELSE "
        '100.0 * CAST(COUNT(*) FILTER (WHERE "EmployeeCurrentStatus" = 0) AS DOUBLE) '
        "/ COUNT(*) END",
        description="Percentage of employees who left",
    ),
    # Breakdowns
    _count_by("employees_by_marital_status", "MaritalDesc"),
    _count_by("employees_by_department", "Department"),
    _count_by("employees_by_position", "Position"),
    _count_by("employees_by_manager", "ManagerName"),
    _count_by("employees_by_state", "State"),
    _count_by("employees_by_sex", "Sex"),
    _count_by("employees_by_recruitment_source", "RecruitmentSource"),
    _count_by("employees_by_performance_score", "PerformanceScore"),
    # Distributions
    _distribution(
        "salary_distribution",
        "Salary",
        "salary_range",
        SALARY_BUCKETS,
        "Employee count per salary range",
    ),
    _distribution(
        "age_distribution",
        "Age",
        "age_range",
        AGE_BUCKETS,
        "Employee count per age range",
    ),
    # Departments
    _aggregate_by(
        "average_salary_by_department",
        "Department",
        'CAST(AVG("Salary") AS DECIMAL(12, 2))',
        "average_salary",
        description="Average salary per department",
    ),
    _aggregate_by(
        "absences_by_department",
        "Department",
        'SUM("Absences")',
        "total_absences",
        description="Total absences per department",
    ),
    # Terminations
    ReportQuery(
        name="termination_reasons",
        sql=(
            f'SELECT "TermReason", COUNT(*) AS employees FROM {_T} '
            'WHERE "TermReason" IS NOT NULL '
            'GROUP BY "TermReason" ORDER BY employees DESC, "TermReason"'
        ),
        description="Employee count per termination reason",
    ),
    _aggregate_by(
        "terminations_by_marital_status",
        "MaritalDesc",
        "COUNT(*)",
        "terminated",
        where='"Termd" = 1',
        description="Terminated employees per marital status",
    ),
    _aggregate_by(
        "average_absences_by_performance",
        "PerformanceScore",
        'ROUND(AVG("Absences"), 2)',
        "average_absences",
        description="Average absences per performance score",
    ),
    # Gender
    _aggregate_by(
        "salary_by_sex",
        "Sex",
        'SUM("Salary")',
        "total_salary",
        description="Total salary per sex",
    ),
    # Samples
    ReportQuery(
        name="first_records",
        sql=(
            f"SELECT {_RECORD_COLUMNS} FROM {_T} "
            f"ORDER BY {quote_ident(ROW_ID)} LIMIT {SAMPLE_SIZE}"
        ),
        description="First records in load order",
    ),
    ReportQuery(
        name="last_records",
        sql=(
            f"SELECT {_RECORD_COLUMNS} FROM {_T} "
            f'ORDER BY "EmpID" DESC LIMIT {SAMPLE_SIZE}'
        ),
        description="Last records by EmpID",
    ),
)


def query_names() -> list[str]:
    return [q.name for q in CATALOG]


def get_query(name: str) -> ReportQuery:
    """Return the catalog query called *name* (KeyError if unknown)."""
    for q in CATALOG:
        if q.name == name:
            return q
    raise KeyError(f"Unknown report query: {name}")


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@dataclass
class _Outcome:
    query: ReportQuery
    rows: list[Row] | None
    error: duckdb.Error | None
    elapsed_ms: float


def run_query(
    conn: duckdb.DuckDBPyConnection,
    query: ReportQuery,
    reference_date: datetime.date,
) -> list[Row]:
    """Execute one catalog query and return its rows as dicts."""
    params = {"reference_date": reference_date} if query.uses_reference_date else None
    if params is None:
        result = conn.execute(query.sql)
    else:
        result = conn.execute(query.sql, params)
    columns = [d[0] for d in result.description]
    return [dict(zip(columns, r)) for r in result.fetchall()]


def _execute(
    conn: duckdb.DuckDBPyConnection,
    query: ReportQuery,
    reference_date: datetime.date,
) -> _Outcome:
    start = time.perf_counter()
    try:
        rows = run_query(conn, query, reference_date)
    except duckdb.Error as e:
        elapsed_ms = (time.perf_counter() - start) * 1000
        return _Outcome(query=query, rows=None, error=e, elapsed_ms=elapsed_ms)
    elapsed_ms = (time.perf_counter() - start) * 1000
    log.debug("  %s: %d row(s) in %.1f ms", query.name, len(rows), elapsed_ms)
    return _Outcome(query=query, rows=rows, error=None, elapsed_ms=elapsed_ms)


async def run_report(
    conn: duckdb.DuckDBPyConnection,
    reference_date: datetime.date,
    *,
    queries: Iterable[ReportQuery] = CATALOG,
    max_concurrency: int = 1,
    trace: bool = True,
) -> dict[str, list[Row]]:
    """Run report queries and return ``{name: rows}`` in query order.

    Every query must be a single SELECT (SqlParseError otherwise). With
    ``max_concurrency > 1`` queries run in worker threads, each on its own
    cursor. Executions are appended to ``_trace`` once all queries have
    finished; a failed query is re-raised after tracing.
    """
    queries = list(queries)
    names = [q.name for q in queries]
    if len(set(names)) != len(names):
        raise ValueError("Report query names must be unique")
    for q in queries:
        parse_select_statement(q.sql)

    if max_concurrency <= 1:
        outcomes = [_execute(conn, q, reference_date) for q in queries]
    else:
        semaphore = asyncio.Semaphore(max_concurrency)

        async def _run_one(query: ReportQuery) -> _Outcome:
            async with semaphore:
                cursor = conn.cursor()
                try:
                    return await asyncio.to_thread(
                        _execute, cursor, query, reference_date
                    )
                finally:
                    cursor.close()

        outcomes = await asyncio.gather(*(_run_one(q) for q in queries))

    if trace:
        for o in outcomes:
            log_trace(
                conn,
                o.query.sql,
                o.error is None,
                error=str(o.error) if o.error else None,
                row_count=len(o.rows) if o.rows is not None else None,
                elapsed_ms=o.elapsed_ms,
                report_name=o.query.name,
            )

    failed = [o for o in outcomes if o.error is not None]
    if failed:
        for o in failed:
            log.error("Report query %s failed: %s", o.query.name, o.error)
        raise failed[0].error

    log.info("Ran %d report quer%s", len(outcomes), "y" if len(outcomes) == 1 else "ies")
    return {o.query.name: o.rows for o in outcomes}
