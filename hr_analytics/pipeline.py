"""Pipeline orchestrator: load, clean, then report.

A pipeline run is a single DuckDB database containing:
- The staged input (``employees_raw``) and the cleaned ``employees`` table
- Run metadata, parse errors and the report query trace

Stages run strictly in order. The cleaner finishes before the first report
query starts; the reporter only reads.

Usage:

    pipeline = Pipeline(
        source="data/employees.csv",
        db_path="runs/employees.db",
        config=PipelineConfig(reference_date=datetime.date(2024, 3, 15)),
    )

    result = await pipeline.run()
    result.reports["attrition_rate"]
"""

import datetime
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb

from .clean import ParseError, clean_employees
from .config import PipelineConfig
from .infra import init_infra, persist_run_meta, upsert_run_meta
from .ingest import FileInput, load_employees
from .report import CATALOG, ReportQuery, run_report
from .schema import RAW_TABLE

log = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    reference_date: datetime.date
    loaded_rows: int = 0
    parse_errors: list[ParseError] = field(default_factory=list)
    reports: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    elapsed_s: float = 0.0
    db_path: Path | None = None


def _describe_source(source: Any) -> str:
    if isinstance(source, FileInput):
        return str(source.path)
    if isinstance(source, (str, Path)):
        return str(source)
    return f"<{type(source).__name__}>"


class Pipeline:
    def __init__(
        self,
        source: Any,
        *,
        db_path: str | Path = ":memory:",
        config: PipelineConfig | None = None,
        queries: tuple[ReportQuery, ...] = CATALOG,
    ):
        self.source = source
        self.db_path = db_path
        self.config = config or PipelineConfig()
        self.queries = queries

    async def run(self) -> PipelineResult:
        """Run Loader -> Cleaner -> Reporter against ``db_path``.

        SchemaError from the loader aborts the run. Parse errors are
        collected on the result and never abort it.
        """
        start = time.time()
        reference_date = self.config.resolve_reference_date()
        db_path = None if str(self.db_path) == ":memory:" else Path(self.db_path)

        conn = duckdb.connect(str(self.db_path))
        try:
            init_infra(conn)

            log.info("Loading %s", _describe_source(self.source))
            loaded = load_employees(conn, self.source)

            cleaned = clean_employees(
                conn, reference_date, formats=self.config.date_formats
            )
            persist_run_meta(
                conn,
                reference_date,
                source=_describe_source(self.source),
                source_row_counts={RAW_TABLE: loaded.rows},
            )

            reports = await run_report(
                conn,
                reference_date,
                queries=self.queries,
                max_concurrency=self.config.max_concurrency,
            )

            elapsed = time.time() - start
            upsert_run_meta(
                conn,
                [
                    ("parse_error_count", str(len(cleaned.parse_errors))),
                    ("elapsed_s", f"{elapsed:.3f}"),
                ],
            )
        finally:
            conn.close()

        log.info("Pipeline finished in %.2fs", elapsed)
        return PipelineResult(
            reference_date=reference_date,
            loaded_rows=loaded.rows,
            parse_errors=cleaned.parse_errors,
            reports=reports,
            elapsed_s=elapsed,
            db_path=db_path,
        )
