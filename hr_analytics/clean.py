"""Cleaner: normalize loaded employee records in place.

Parses text dates into DATE values, coerces salaries to two-decimal fixed
point, and computes the derived fields (``EmployeeCurrentStatus``, ``Age``)
against a single reference date.

A field that cannot be parsed is reported as a :class:`ParseError` and left
NULL; the record stays in the table. Values that are already canonical are
never re-parsed, so running the cleaner again with the same reference date
changes nothing.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

import duckdb
import polars as pl

from .catalog import quote_ident, table_exists
from .infra import persist_parse_errors
from .schema import DATE_COLUMNS, EMPLOYEES_TABLE, RAW_TABLE, ROW_ID
from .sql_utils import get_column_names

log = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
MAX_SALARY = Decimal("1e10")  # DECIMAL(12, 2) upper bound

# Columns the cleaner reads from the raw table and writes to employees.
CLEANED_COLUMNS = (*DATE_COLUMNS, "Salary")
WRITTEN_COLUMNS = (*CLEANED_COLUMNS, "EmployeeCurrentStatus", "Age")


class ParseError(ValueError):
    """A single field of a single record did not match its expected format."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        row_id: int | None = None,
        emp_id: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value
        self.row_id = row_id
        self.emp_id = emp_id

    def for_record(self, row_id: int, emp_id: int | None) -> "ParseError":
        """Return a copy of this error bound to a record."""
        return ParseError(
            self.message,
            field=self.field,
            value=self.value,
            row_id=row_id,
            emp_id=emp_id,
        )


@dataclass(frozen=True)
class DateFormats:
    """Accepted ``strptime`` formats per date field, tried in order."""

    dob: tuple[str, ...] = ("%d-%m-%Y",)
    hire: tuple[str, ...] = ("%d-%m-%Y",)
    termination: tuple[str, ...] = ("%d-%m-%Y",)
    review: tuple[str, ...] = ("%Y-%m-%d",)

    def for_field(self, column: str) -> tuple[str, ...]:
        return {
            "DOB": self.dob,
            "DateofHire": self.hire,
            "DateofTermination": self.termination,
            "LastPerformanceReview_Date": self.review,
        }[column]


@dataclass
class CleanReport:
    """Outcome of one clean pass."""

    reference_date: datetime.date
    rows: int = 0
    updated: int = 0
    parse_errors: list[ParseError] = field(default_factory=list)

    @property
    def flagged_rows(self) -> set[int]:
        return {e.row_id for e in self.parse_errors if e.row_id is not None}


# ---------------------------------------------------------------------------
# Field functions
# ---------------------------------------------------------------------------


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_date(
    value: Any, formats: tuple[str, ...], field: str | None = None
) -> datetime.date:
    """Parse *value* with the first matching format.

    Date values pass through unchanged (datetimes are truncated to the date).
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    if is_empty(value):
        raise ParseError(f"{field or 'date'} is empty", field=field, value=value)
    if not isinstance(value, str):
        raise ParseError(
            f"{field or 'date'} must be text, got {type(value).__name__}",
            field=field,
            value=value,
        )

    text = value.strip()
    for fmt in formats:
        try:
            return datetime.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ParseError(
        f"{field or 'date'} {text!r} does not match {' or '.join(formats)}",
        field=field,
        value=value,
    )


def coerce_salary(value: Any) -> Decimal:
    """Coerce a raw salary to a Decimal with exactly two fractional digits.

    Rounds half away from zero. Text may carry surrounding whitespace, a
    leading ``$`` and thousands separators.
    """
    if isinstance(value, bool):
        raise ParseError("Salary must be numeric, got bool", field="Salary", value=value)

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(repr(value))
    elif isinstance(value, str):
        text = value.strip().replace(",", "")
        if text.startswith("$"):
            text = text[1:].strip()
        if not text:
            raise ParseError("Salary is empty", field="Salary", value=value)
        try:
            amount = Decimal(text)
        except InvalidOperation:
            raise ParseError(
                f"Salary {value!r} is not numeric", field="Salary", value=value
            ) from None
    elif value is None:
        raise ParseError("Salary is empty", field="Salary", value=value)
    else:
        raise ParseError(
            f"Salary must be numeric, got {type(value).__name__}",
            field="Salary",
            value=value,
        )

    if not amount.is_finite():
        raise ParseError(f"Salary {value!r} is not finite", field="Salary", value=value)
    if abs(amount) >= MAX_SALARY:
        raise ParseError(f"Salary {value!r} is out of range", field="Salary", value=value)
    return amount.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def complete_years(start: datetime.date, end: datetime.date) -> int:
    """Whole years elapsed from *start* to *end*."""
    years = end.year - start.year
    if (end.month, end.day) < (start.month, start.day):
        years -= 1
    return years


def compute_age(
    dob: datetime.date | None, reference_date: datetime.date
) -> int | None:
    if dob is None:
        return None
    return complete_years(dob, reference_date)


def employee_current_status(termination: Any) -> int:
    """1 while the termination date is empty, 0 once it is set."""
    return 1 if is_empty(termination) else 0


# ---------------------------------------------------------------------------
# Table pass
# ---------------------------------------------------------------------------


def _raw_exprs(conn: duckdb.DuckDBPyConnection) -> list[str]:
    """Select expressions for the raw value of each cleaned column."""
    if not table_exists(conn, RAW_TABLE):
        return ["NULL"] * len(CLEANED_COLUMNS)
    by_key: dict[str, str] = {}
    for name in get_column_names(conn, RAW_TABLE):
        by_key.setdefault(name.strip().lower(), name)
    exprs = []
    for col in CLEANED_COLUMNS:
        raw_name = by_key.get(col.lower())
        exprs.append(f"r.{quote_ident(raw_name)}" if raw_name else "NULL")
    return exprs


def _fetch_rows(conn: duckdb.DuckDBPyConnection) -> list[tuple]:
    current = [f"e.{quote_ident(c)}" for c in WRITTEN_COLUMNS]
    raw = _raw_exprs(conn)
    join = ""
    if table_exists(conn, RAW_TABLE):
        join = f"LEFT JOIN {quote_ident(RAW_TABLE)} r USING ({quote_ident(ROW_ID)})"
    sql = (
        f"SELECT e.{quote_ident(ROW_ID)}, e.\"EmpID\", "
        f"{', '.join(raw)}, {', '.join(current)} "
        f"FROM {quote_ident(EMPLOYEES_TABLE)} e {join} "
        f"ORDER BY e.{quote_ident(ROW_ID)}"
    )
    return conn.execute(sql).fetchall()


def clean_record(
    raw: dict[str, Any],
    current: dict[str, Any],
    reference_date: datetime.date,
    formats: DateFormats,
) -> tuple[dict[str, Any], list[ParseError]]:
    """Compute the cleaned values of one record.

    *raw* holds the staged input values and *current* the values already in
    the employees table. Returns the new values for every written column and
    the errors for fields that could not be parsed.
    """
    new: dict[str, Any] = {}
    errors: list[ParseError] = []

    for column in DATE_COLUMNS:
        if current.get(column) is not None:
            new[column] = current[column]
            continue
        value = raw.get(column)
        if column == "DateofTermination" and is_empty(value):
            new[column] = None
            continue
        try:
            new[column] = parse_date(value, formats.for_field(column), column)
        except ParseError as e:
            errors.append(e)
            new[column] = None

    if current.get("Salary") is not None:
        new["Salary"] = current["Salary"]
    else:
        try:
            new["Salary"] = coerce_salary(raw.get("Salary"))
        except ParseError as e:
            errors.append(e)
            new["Salary"] = None

    termination = new["DateofTermination"]
    if termination is None:
        termination = raw.get("DateofTermination")
    new["EmployeeCurrentStatus"] = employee_current_status(termination)
    new["Age"] = compute_age(new["DOB"], reference_date)
    return new, errors


def _write_updates(
    conn: duckdb.DuckDBPyConnection, updates: list[dict[str, Any]]
) -> None:
    """Apply per-row updates with a single UPDATE ... FROM statement."""
    df = pl.DataFrame(
        [
            {**u, "Salary": None if u["Salary"] is None else str(u["Salary"])}
            for u in updates
        ],
        schema={
            ROW_ID: pl.Int32,
            **{c: pl.Date for c in DATE_COLUMNS},
            "Salary": pl.Utf8,
            "EmployeeCurrentStatus": pl.Int32,
            "Age": pl.Int32,
        },
    )
    table = quote_ident(EMPLOYEES_TABLE)
    assignments = [f"{quote_ident(c)} = u.{quote_ident(c)}" for c in DATE_COLUMNS]
    assignments.append('"Salary" = CAST(u."Salary" AS DECIMAL(12, 2))')
    assignments.append('"EmployeeCurrentStatus" = u."EmployeeCurrentStatus"')
    assignments.append('"Age" = u."Age"')

    conn.register("_updates", df)
    try:
        conn.execute(
            f"UPDATE {table} SET {', '.join(assignments)} "
            f"FROM _updates AS u "
            f"WHERE {table}.{quote_ident(ROW_ID)} = u.{quote_ident(ROW_ID)}"
        )
    finally:
        conn.unregister("_updates")


def clean_employees(
    conn: duckdb.DuckDBPyConnection,
    reference_date: datetime.date,
    formats: DateFormats | None = None,
) -> CleanReport:
    """Normalize the employees table in place and derive computed fields.

    Every derived value uses *reference_date*. Parse errors are collected in
    the returned report and persisted to ``_parse_errors``; they never abort
    the pass.
    """
    formats = formats or DateFormats()
    report = CleanReport(reference_date=reference_date)
    updates: list[dict[str, Any]] = []

    n_cleaned = len(CLEANED_COLUMNS)
    for row in _fetch_rows(conn):
        row_id, emp_id = row[0], row[1]
        raw = dict(zip(CLEANED_COLUMNS, row[2 : 2 + n_cleaned]))
        current = dict(zip(WRITTEN_COLUMNS, row[2 + n_cleaned :]))

        new, errors = clean_record(raw, current, reference_date, formats)
        report.rows += 1
        report.parse_errors.extend(e.for_record(row_id, emp_id) for e in errors)
        if any(new[c] != current[c] for c in WRITTEN_COLUMNS):
            updates.append({ROW_ID: row_id, **new})

    if updates:
        _write_updates(conn, updates)
    report.updated = len(updates)
    persist_parse_errors(conn, report.parse_errors)

    log.info(
        "Cleaned %d record(s): %d updated (reference date %s)",
        report.rows,
        report.updated,
        reference_date.isoformat(),
    )
    if report.parse_errors:
        log.warning(
            "  %d field(s) failed to parse in %d record(s)",
            len(report.parse_errors),
            len(report.flagged_rows),
        )
    return report
