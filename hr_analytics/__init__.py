"""HR analytics pipeline: core modules."""

from .clean import (
    CleanReport,
    DateFormats,
    ParseError,
    clean_employees,
    coerce_salary,
    complete_years,
    compute_age,
    employee_current_status,
    parse_date,
)
from .config import ConfigError, PipelineConfig, load_config
from .ingest import LoadResult, SchemaError, coerce_to_dataframe, load_employees
from .pipeline import Pipeline, PipelineResult
from .report import (
    AGE_BUCKETS,
    CATALOG,
    SALARY_BUCKETS,
    ReportQuery,
    bucket_for,
    get_query,
    run_query,
    run_report,
)

__all__ = [
    # Loader
    "load_employees",
    "coerce_to_dataframe",
    "LoadResult",
    "SchemaError",
    # Cleaner
    "clean_employees",
    "CleanReport",
    "DateFormats",
    "ParseError",
    "parse_date",
    "coerce_salary",
    "complete_years",
    "compute_age",
    "employee_current_status",
    # Reporter
    "run_report",
    "run_query",
    "get_query",
    "bucket_for",
    "ReportQuery",
    "CATALOG",
    "SALARY_BUCKETS",
    "AGE_BUCKETS",
    # Pipeline
    "Pipeline",
    "PipelineResult",
    "PipelineConfig",
    "load_config",
    "ConfigError",
]
