"""Shared fixtures and helpers for the HR analytics test suite."""

import datetime

import duckdb
import pytest

from hr_analytics.clean import clean_employees
from hr_analytics.infra import init_infra
from hr_analytics.ingest import load_employees

REFERENCE_DATE = datetime.date(2024, 3, 15)


@pytest.fixture
def conn():
    """In-memory DuckDB connection for each test."""
    c = duckdb.connect(":memory:")
    init_infra(c)
    yield c
    c.close()


def _record(emp_id: int, **overrides) -> dict:
    """Build a raw employee record with sensible defaults."""
    record = {
        "EmpID": emp_id,
        "DOB": "15-03-1990",
        "DateofHire": "01-06-2015",
        "DateofTermination": "",
        "LastPerformanceReview_Date": "2023-02-01",
        "Salary": "55000",
        "Department": "Production",
        "Position": "Production Technician I",
        "ManagerName": "Kelley Spirea",
        "MaritalDesc": "Single",
        "Sex": "F",
        "State": "MA",
        "RecruitmentSource": "Indeed",
        "TermReason": "N/A-StillEmployed",
        "PerformanceScore": "Fully Meets",
        "Absences": 3,
        "Termd": 0,
    }
    record.update(overrides)
    return record


def _terminated(emp_id: int, **overrides) -> dict:
    """Raw record of a former employee."""
    defaults = {
        "DateofTermination": "31-12-2014",
        "DateofHire": "01-01-2010",
        "TermReason": "career change",
        "Termd": 1,
    }
    defaults.update(overrides)
    return _record(emp_id, **defaults)


def _load_and_clean(
    conn: duckdb.DuckDBPyConnection,
    records: list[dict],
    reference_date: datetime.date = REFERENCE_DATE,
):
    """Run the loader and cleaner over *records*; return the clean report."""
    load_employees(conn, records)
    return clean_employees(conn, reference_date)
