"""CLI entry point for the HR analytics pipeline.

Usage:
    # Load, clean and report on an input file
    hr-analytics run data/employees.csv --reference-date 2024-03-15

    # Inspect a pipeline database
    hr-analytics show runs/employees_20240315_120000.db

    # Re-run report queries against an existing database
    hr-analytics report runs/employees_20240315_120000.db --query attrition_rate
"""

import asyncio
import dataclasses
import datetime
import decimal
import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import duckdb
from dotenv import find_dotenv, load_dotenv

# Load .env by walking upward from the CWD.
_dotenv_path = find_dotenv(usecwd=True)
if _dotenv_path:
    load_dotenv(_dotenv_path)

from hr_analytics.catalog import count_rows_display, list_tables
from hr_analytics.config import (
    ConfigError,
    load_config,
    parse_max_concurrency,
    parse_reference_date,
)
from hr_analytics.infra import read_parse_errors, read_run_meta
from hr_analytics.ingest import SchemaError, parse_file_string
from hr_analytics.pipeline import Pipeline
from hr_analytics.report import CATALOG, get_query, run_report
from hr_analytics.schema import EMPLOYEES_TABLE

log = logging.getLogger(__name__)

MAX_INLINE_MESSAGES = 20  # Cap parse errors shown inline


def _configure_logging(quiet: bool) -> None:
    level = logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )


def _slug_for_filename(text: str) -> str:
    """Convert an arbitrary string to a safe filename slug."""
    out: list[str] = []
    for ch in text:
        if ch.isalnum() or ch in ("-", "_", "."):
            out.append(ch)
        else:
            out.append("_")
    slug = "".join(out).strip("._-")
    return slug or "employees"


def _default_output_db_path(
    input_path: Path, now: datetime.datetime | None = None
) -> Path:
    """Generate a default output .db path from input name + timestamp."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    ts = now.strftime("%Y%m%d_%H%M%S")
    return Path("runs") / f"{_slug_for_filename(input_path.stem)}_{ts}.db"


def _json_default(value: Any) -> Any:
    if isinstance(value, decimal.Decimal):
        return str(value)
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _write_json(path: Path, reports: dict[str, list[dict[str, Any]]]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(reports, indent=2, default=_json_default) + "\n")


def _format_value(value: Any) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    return str(value)


def _echo_scalars(reports: dict[str, list[dict[str, Any]]]) -> None:
    """Print single-value result sets as ``name: value`` lines."""
    for name, rows in reports.items():
        if len(rows) == 1 and len(rows[0]) == 1:
            (value,) = rows[0].values()
            click.echo(f"  {name}: {_format_value(value)}")


def _echo_result_set(name: str, rows: list[dict[str, Any]]) -> None:
    click.echo(f"\n{name} ({len(rows)} row{'s' if len(rows) != 1 else ''}):")
    for row in rows:
        click.echo(
            "  " + ", ".join(f"{k}={_format_value(v)}" for k, v in row.items())
        )


def _open_db(target: Path) -> duckdb.DuckDBPyConnection:
    if target.suffix != ".db":
        raise click.ClickException(f"{target} is not a .db file.")
    if not target.exists():
        raise click.ClickException(f"{target} does not exist.")
    try:
        return duckdb.connect(str(target), read_only=True)
    except duckdb.Error as e:
        raise click.ClickException(f"Cannot open {target} as a DuckDB database: {e}")


@click.group()
def main():
    """HR analytics: load, clean and report on employee records."""


@main.command()
@click.argument("input_path", metavar="INPUT")
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output database path (default: runs/<input>_<timestamp>.db)",
)
@click.option(
    "--reference-date",
    default=None,
    help="Date ages and tenure are computed against (YYYY-MM-DD, default: today)",
)
@click.option(
    "--max-concurrency",
    type=int,
    default=None,
    help="Maximum report queries running at once (default: 1)",
)
@click.option(
    "--json",
    "json_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Also write every result set to this JSON file",
)
@click.option("--quiet", "-q", is_flag=True, help="Suppress verbose output")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite output file without prompting",
)
def run(
    input_path: str,
    output: Path | None,
    reference_date: str | None,
    max_concurrency: int | None,
    json_path: Path | None,
    quiet: bool,
    force: bool,
):
    """Run the pipeline on INPUT (csv, parquet or xlsx[#sheet])."""
    _configure_logging(quiet)

    try:
        config = load_config()
        if reference_date is not None:
            config = dataclasses.replace(
                config, reference_date=parse_reference_date(reference_date)
            )
        if max_concurrency is not None:
            config = dataclasses.replace(
                config, max_concurrency=parse_max_concurrency(max_concurrency)
            )
    except ConfigError as e:
        raise click.ClickException(str(e))

    try:
        source = parse_file_string(input_path)
    except ValueError as e:
        raise click.ClickException(str(e))
    if not source.path.exists():
        raise click.ClickException(f"{source.path} does not exist.")

    if output is None:
        output = _default_output_db_path(source.path)
        output.parent.mkdir(parents=True, exist_ok=True)
    else:
        output = Path(output)
        if output.suffix != ".db":
            output = output.with_suffix(".db")
            log.warning("Output path adjusted to %s (added .db suffix)", output)

    if output.exists():
        if not force:
            click.confirm(
                f"{output} already exists and will be overwritten. Continue?",
                abort=True,
            )
        output.unlink()

    log.info("Input: %s", source.path)
    log.info("Output: %s", output)

    pipeline = Pipeline(source, db_path=output, config=config)
    try:
        result = asyncio.run(pipeline.run())
    except (SchemaError, FileNotFoundError) as e:
        raise click.ClickException(str(e))

    log.info("Saved to: %s", output)
    log.info("Parse errors: SELECT * FROM _parse_errors")
    log.info("Query trace: SELECT * FROM _trace")

    if json_path is not None:
        _write_json(json_path, result.reports)
        log.info("Result sets written to %s", json_path)

    if not quiet:
        click.echo(f"\nReference date: {result.reference_date.isoformat()}")
        click.echo(f"Records: {result.loaded_rows}")
        click.echo(f"Parse errors: {len(result.parse_errors)}")
        click.echo("\nSummary:")
        _echo_scalars(result.reports)


@main.command()
@click.argument("target", type=click.Path(path_type=Path))
def show(target: Path):
    """Show run metadata, tables and parse errors of a pipeline database."""
    conn = _open_db(target)
    try:
        meta = read_run_meta(conn)
        if not meta:
            raise click.ClickException(
                f"{target} has no run metadata; not an HR analytics database."
            )

        click.echo(f"Database: {target}\n")
        click.echo(f"Created: {meta.get('created_at_utc', '(unknown)')}")
        click.echo(f"Reference date: {meta.get('reference_date', '(unknown)')}")
        click.echo(f"Schema version: {meta.get('schema_version', '(unknown)')}")
        source = meta.get("source")
        if source:
            click.echo(f"Source: {json.loads(source).get('input', '(unknown)')}")

        tables = list_tables(conn, exclude_prefixes=("_",))
        click.echo(f"\nTables ({len(tables)}):")
        for name in tables:
            click.echo(f"  {name}: {count_rows_display(conn, name)} rows")

        errors = read_parse_errors(conn)
        click.echo(f"\nParse errors: {len(errors)}")
        for err in errors[:MAX_INLINE_MESSAGES]:
            click.echo(f"  - EmpID {err['emp_id']} {err['field']}: {err['message']}")
        if len(errors) > MAX_INLINE_MESSAGES:
            click.echo(f"  ... and {len(errors) - MAX_INLINE_MESSAGES} more")
    finally:
        conn.close()


@main.command()
@click.argument("target", type=click.Path(path_type=Path), required=False)
@click.option(
    "--query",
    "-q",
    "query_names",
    multiple=True,
    help="Report query to run (repeatable, default: all)",
)
@click.option("--list", "list_only", is_flag=True, help="List report queries and exit")
@click.option(
    "--json",
    "json_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Write the result sets to this JSON file instead of printing them",
)
def report(
    target: Path | None,
    query_names: tuple[str, ...],
    list_only: bool,
    json_path: Path | None,
):
    """Run report queries against an existing pipeline database."""
    if list_only:
        for q in CATALOG:
            click.echo(f"  {q.name:<34}{q.description}")
        return

    if target is None:
        raise click.ClickException("TARGET database is required (or pass --list).")

    try:
        names = list(dict.fromkeys(query_names))
        queries = [get_query(n) for n in names] if names else list(CATALOG)
    except KeyError as e:
        raise click.ClickException(str(e.args[0]))

    conn = _open_db(target)
    try:
        meta = read_run_meta(conn)
        if not meta.get("reference_date"):
            raise click.ClickException(
                f"{target} has no reference date; not an HR analytics database."
            )
        if EMPLOYEES_TABLE not in list_tables(conn):
            raise click.ClickException(f"{target} has no {EMPLOYEES_TABLE} table.")
        reference_date = parse_reference_date(meta["reference_date"])
        reports = asyncio.run(
            run_report(conn, reference_date, queries=queries, trace=False)
        )
    finally:
        conn.close()

    if json_path is not None:
        _write_json(json_path, reports)
        click.echo(f"Wrote {len(reports)} result set(s) to {json_path}")
        return

    for name, rows in reports.items():
        _echo_result_set(name, rows)


if __name__ == "__main__":
    main()
