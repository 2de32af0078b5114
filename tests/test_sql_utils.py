"""Tests for hr_analytics/sql_utils.py: statement parsing, column queries."""

import pytest

from hr_analytics.schema import COLUMN_NAMES, EMPLOYEES_TABLE, create_employees_table
from hr_analytics.sql_utils import (
    SqlParseError,
    get_column_names,
    get_column_schema,
    parse_one_statement,
    parse_select_statement,
)


class TestParseOneStatement:
    def test_valid_select(self):
        parsed = parse_one_statement("SELECT 1")
        assert "SELECT" in parsed.sql.upper()

    def test_empty_raises(self):
        with pytest.raises(SqlParseError, match="Empty"):
            parse_one_statement("")

    def test_none_raises(self):
        with pytest.raises(SqlParseError, match="Empty"):
            parse_one_statement(None)

    def test_multiple_raises(self):
        with pytest.raises(SqlParseError, match="one statement"):
            parse_one_statement("SELECT 1; SELECT 2")

    def test_syntax_error(self):
        with pytest.raises(SqlParseError, match="parse error"):
            parse_one_statement("SELEC FROM WHERE")


class TestParseSelectStatement:
    def test_select(self):
        parse_select_statement('SELECT COUNT(*) FROM "employees"')

    def test_select_with_named_parameter(self):
        parse_select_statement("SELECT CAST($reference_date AS DATE) AS d")

    @pytest.mark.parametrize(
        "sql",
        [
            "DELETE FROM employees",
            "UPDATE employees SET \"Age\" = 1",
            "CREATE TABLE x AS SELECT 1",
            "DROP TABLE employees",
        ],
    )
    def test_rejects_writes(self, sql):
        with pytest.raises(SqlParseError, match="Only SELECT"):
            parse_select_statement(sql)


class TestColumnQueries:
    def test_employees_columns(self, conn):
        create_employees_table(conn)
        assert get_column_names(conn, EMPLOYEES_TABLE) == {"_row_id", *COLUMN_NAMES}

    def test_employees_schema(self, conn):
        create_employees_table(conn)
        schema = dict(get_column_schema(conn, EMPLOYEES_TABLE))
        assert schema["EmpID"] == "INTEGER"
        assert schema["Salary"] == "DECIMAL(12,2)"
        assert schema["DOB"] == "DATE"
        assert schema["Department"] == "VARCHAR"

    def test_unknown_table(self, conn):
        assert get_column_names(conn, "nope") == set()
