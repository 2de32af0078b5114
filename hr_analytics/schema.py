"""Employee record schema.

The ``employees`` table is declared once, here. Derived columns are part of
the declaration and filled in by the cleaner; nothing alters the table
after it is created.
"""

from __future__ import annotations

from dataclasses import dataclass

import duckdb

SCHEMA_VERSION = 1

EMPLOYEES_TABLE = "employees"
RAW_TABLE = "employees_raw"
ROW_ID = "_row_id"


@dataclass(frozen=True)
class Column:
    name: str
    sql_type: str
    kind: str  # 'key' | 'date' | 'decimal' | 'category' | 'integer' | 'derived'


COLUMNS: tuple[Column, ...] = (
    Column("EmpID", "INTEGER PRIMARY KEY", "key"),
    Column("DOB", "DATE", "date"),
    Column("DateofHire", "DATE", "date"),
    Column("DateofTermination", "DATE", "date"),
    Column("LastPerformanceReview_Date", "DATE", "date"),
    Column("Salary", "DECIMAL(12, 2)", "decimal"),
    Column("Department", "VARCHAR", "category"),
    Column("Position", "VARCHAR", "category"),
    Column("ManagerName", "VARCHAR", "category"),
    Column("MaritalDesc", "VARCHAR", "category"),
    Column("Sex", "VARCHAR", "category"),
    Column("State", "VARCHAR", "category"),
    Column("RecruitmentSource", "VARCHAR", "category"),
    Column("TermReason", "VARCHAR", "category"),
    Column("PerformanceScore", "VARCHAR", "category"),
    Column("Absences", "INTEGER", "integer"),
    Column("Termd", "INTEGER", "integer"),
    Column("EmployeeCurrentStatus", "INTEGER", "derived"),
    Column("Age", "INTEGER", "derived"),
)

COLUMN_NAMES: tuple[str, ...] = tuple(c.name for c in COLUMNS)
SOURCE_COLUMNS: tuple[str, ...] = tuple(c.name for c in COLUMNS if c.kind != "derived")
DATE_COLUMNS: tuple[str, ...] = tuple(c.name for c in COLUMNS if c.kind == "date")


def employees_ddl(table_name: str = EMPLOYEES_TABLE) -> str:
    """Return the CREATE TABLE statement for the employee record schema."""
    lines = [f'    "{ROW_ID}" INTEGER NOT NULL']
    lines.extend(f'    "{c.name}" {c.sql_type}' for c in COLUMNS)
    body = ",\n".join(lines)
    return f'CREATE TABLE "{table_name}" (\n{body}\n)'


def create_employees_table(
    conn: duckdb.DuckDBPyConnection, table_name: str = EMPLOYEES_TABLE
) -> None:
    """Drop and recreate the empty employees table."""
    conn.execute(f'DROP TABLE IF EXISTS "{table_name}"')
    conn.execute(employees_ddl(table_name))
