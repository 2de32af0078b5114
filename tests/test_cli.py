import datetime
import json

import polars as pl
import pytest
from click.testing import CliRunner

from tests.conftest import _record, _terminated
from scripts.cli import _default_output_db_path, _slug_for_filename, main


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    """Isolated CWD without configuration from the environment."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("HR_ANALYTICS_REFERENCE_DATE", raising=False)
    monkeypatch.delenv("HR_ANALYTICS_MAX_CONCURRENCY", raising=False)
    return tmp_path


@pytest.fixture
def employees_csv(workdir):
    path = workdir / "employees.csv"
    records = [_record(1), _record(2, DOB="1990/03/15"), _terminated(3)]
    pl.DataFrame(records).write_csv(path)
    return path


def _run(runner, csv_path, out_db, *extra):
    return runner.invoke(
        main,
        ["run", str(csv_path), "-o", str(out_db), "--reference-date", "2024-03-15", *extra],
    )


class TestRunCommand:
    def test_run_writes_database(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        result = _run(CliRunner(), employees_csv, out_db)

        assert result.exit_code == 0, result.output
        assert out_db.exists()
        assert "Reference date: 2024-03-15" in result.output
        assert "Records: 3" in result.output
        assert "Parse errors: 1" in result.output
        assert "  total_employees: 3" in result.output
        assert "  attrition_rate: 33.33" in result.output

    def test_run_adds_db_suffix(self, workdir, employees_csv):
        result = _run(CliRunner(), employees_csv, workdir / "out")
        assert result.exit_code == 0, result.output
        assert (workdir / "out.db").exists()

    def test_run_default_output_path(self, workdir, employees_csv):
        result = CliRunner().invoke(
            main, ["run", str(employees_csv), "--reference-date", "2024-03-15", "-q"]
        )
        assert result.exit_code == 0, result.output
        created = list((workdir / "runs").glob("employees_*.db"))
        assert len(created) == 1

    def test_run_writes_json(self, workdir, employees_csv):
        json_path = workdir / "reports.json"
        result = _run(
            CliRunner(), employees_csv, workdir / "out.db", "--json", str(json_path), "-q"
        )
        assert result.exit_code == 0, result.output

        reports = json.loads(json_path.read_text())
        assert reports["total_employees"] == [{"total_employees": 3}]
        assert reports["average_salary"] == [{"average_salary": "55000.00"}]
        assert reports["first_records"][0]["DOB"] == "1990-03-15"

    def test_existing_output_requires_force(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db).exit_code == 0

        declined = runner.invoke(
            main,
            ["run", str(employees_csv), "-o", str(out_db), "--reference-date", "2024-03-15"],
            input="n\n",
        )
        assert declined.exit_code != 0

        forced = _run(runner, employees_csv, out_db, "-f")
        assert forced.exit_code == 0, forced.output

    def test_missing_column_fails(self, workdir):
        path = workdir / "employees.csv"
        record = _record(1)
        del record["Salary"]
        pl.DataFrame([record]).write_csv(path)

        result = _run(CliRunner(), path, workdir / "out.db")
        assert result.exit_code == 1
        assert "Missing required field(s): Salary" in result.output

    def test_missing_input_file(self, workdir):
        result = _run(CliRunner(), workdir / "nope.csv", workdir / "out.db")
        assert result.exit_code == 1
        assert "does not exist" in result.output

    def test_unsupported_input(self, workdir):
        result = _run(CliRunner(), workdir / "employees.json", workdir / "out.db")
        assert result.exit_code == 1
        assert "Unsupported" in result.output

    def test_invalid_reference_date(self, workdir, employees_csv):
        result = CliRunner().invoke(
            main, ["run", str(employees_csv), "--reference-date", "15/03/2024"]
        )
        assert result.exit_code == 1
        assert "ISO date" in result.output

    def test_reference_date_from_environment(self, workdir, employees_csv):
        result = CliRunner().invoke(
            main,
            ["run", str(employees_csv), "-o", str(workdir / "out.db")],
            env={"HR_ANALYTICS_REFERENCE_DATE": "2030-03-15"},
        )
        assert result.exit_code == 0, result.output
        assert "Reference date: 2030-03-15" in result.output
        assert "  average_age: 40.00" in result.output


class TestShowCommand:
    def test_show(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db, "-q").exit_code == 0

        result = runner.invoke(main, ["show", str(out_db)])
        assert result.exit_code == 0, result.output
        assert "Reference date: 2024-03-15" in result.output
        assert "employees: 3 rows" in result.output
        assert "employees_raw: 3 rows" in result.output
        assert "Parse errors: 1" in result.output
        assert "- EmpID 2 DOB:" in result.output

    def test_show_rejects_non_db(self, workdir):
        result = CliRunner().invoke(main, ["show", str(workdir / "out.txt")])
        assert result.exit_code == 1
        assert "not a .db file" in result.output


class TestReportCommand:
    def test_list(self):
        result = CliRunner().invoke(main, ["report", "--list"])
        assert result.exit_code == 0
        assert "attrition_rate" in result.output
        assert "salary_distribution" in result.output

    def test_report_selected_queries(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db, "-q").exit_code == 0

        result = runner.invoke(
            main, ["report", str(out_db), "-q", "total_employees", "-q", "employees_by_sex"]
        )
        assert result.exit_code == 0, result.output
        assert "total_employees (1 row):" in result.output
        assert "total_employees=3" in result.output
        assert "Sex=F, employees=3" in result.output
        assert "attrition_rate" not in result.output

    def test_report_repeated_query_runs_once(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db, "-q").exit_code == 0

        result = runner.invoke(
            main, ["report", str(out_db), "-q", "total_employees", "-q", "total_employees"]
        )
        assert result.exit_code == 0, result.output
        assert result.output.count("total_employees (1 row):") == 1

    def test_report_json(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        json_path = workdir / "report.json"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db, "-q").exit_code == 0

        result = runner.invoke(
            main, ["report", str(out_db), "--query", "attrition_rate", "--json", str(json_path)]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(json_path.read_text())
        assert list(data) == ["attrition_rate"]
        assert data["attrition_rate"][0]["attrition_rate"] == pytest.approx(100 / 3)

    def test_report_unknown_query(self, workdir, employees_csv):
        out_db = workdir / "out.db"
        runner = CliRunner()
        assert _run(runner, employees_csv, out_db, "-q").exit_code == 0

        result = runner.invoke(main, ["report", str(out_db), "-q", "nope"])
        assert result.exit_code == 1
        assert "Unknown report query: nope" in result.output

    def test_report_requires_target(self):
        result = CliRunner().invoke(main, ["report"])
        assert result.exit_code == 1
        assert "TARGET" in result.output


class TestHelpers:
    def test_slug_for_filename(self):
        assert _slug_for_filename("HR data (2024)") == "HR_data__2024"
        assert _slug_for_filename("...") == "employees"

    def test_default_output_db_path(self, tmp_path):
        now = datetime.datetime(2024, 3, 15, 12, 0, 0)
        path = _default_output_db_path(tmp_path / "employees.csv", now=now)
        assert str(path) == "runs/employees_20240315_120000.db"
