"""Tests for hr_analytics/config.py: layered settings."""

import datetime
from pathlib import Path

import pytest

from hr_analytics.clean import DateFormats
from hr_analytics.config import (
    ConfigError,
    PipelineConfig,
    load_config,
    parse_max_concurrency,
    parse_reference_date,
)


def _write_pyproject(root: Path, body: str) -> None:
    (root / "pyproject.toml").write_text(body)


class TestParsers:
    def test_reference_date_iso(self):
        assert parse_reference_date("2024-03-15") == datetime.date(2024, 3, 15)

    def test_reference_date_passthrough(self):
        assert parse_reference_date(datetime.date(2024, 3, 15)) == datetime.date(2024, 3, 15)
        assert parse_reference_date(datetime.datetime(2024, 3, 15, 9)) == datetime.date(
            2024, 3, 15
        )

    def test_reference_date_invalid(self):
        with pytest.raises(ConfigError, match="ISO date"):
            parse_reference_date("15-03-2024")

    def test_max_concurrency(self):
        assert parse_max_concurrency("4") == 4

    @pytest.mark.parametrize("value", ["0", -1, "many", None])
    def test_max_concurrency_invalid(self, value):
        with pytest.raises(ConfigError):
            parse_max_concurrency(value)


class TestLoadConfig:
    def test_defaults(self, tmp_path: Path):
        config = load_config(tmp_path, environ={})
        assert config == PipelineConfig()
        assert config.reference_date is None
        assert config.max_concurrency == 1
        assert config.date_formats == DateFormats()

    def test_default_reference_date_is_today(self):
        assert PipelineConfig().resolve_reference_date() == datetime.date.today()

    def test_pyproject_settings(self, tmp_path: Path):
        _write_pyproject(
            tmp_path,
            '[tool.hr_analytics]\n'
            'reference_date = "2024-03-15"\n'
            "max_concurrency = 3\n"
            "\n"
            "[tool.hr_analytics.date_formats]\n"
            'dob = ["%d-%m-%Y", "%d/%m/%Y"]\n'
            'review = "%d.%m.%Y"\n',
        )
        config = load_config(tmp_path, environ={})
        assert config.reference_date == datetime.date(2024, 3, 15)
        assert config.max_concurrency == 3
        assert config.date_formats.dob == ("%d-%m-%Y", "%d/%m/%Y")
        assert config.date_formats.review == ("%d.%m.%Y",)
        assert config.date_formats.hire == DateFormats().hire

    def test_pyproject_toml_date_value(self, tmp_path: Path):
        _write_pyproject(tmp_path, "[tool.hr_analytics]\nreference_date = 2024-03-15\n")
        config = load_config(tmp_path, environ={})
        assert config.reference_date == datetime.date(2024, 3, 15)

    def test_environment_overrides_pyproject(self, tmp_path: Path):
        _write_pyproject(
            tmp_path,
            '[tool.hr_analytics]\nreference_date = "2024-03-15"\nmax_concurrency = 3\n',
        )
        environ = {
            "HR_ANALYTICS_REFERENCE_DATE": "2025-01-01",
            "HR_ANALYTICS_MAX_CONCURRENCY": "8",
        }
        config = load_config(tmp_path, environ=environ)
        assert config.reference_date == datetime.date(2025, 1, 1)
        assert config.max_concurrency == 8

    def test_empty_environment_value_is_ignored(self, tmp_path: Path):
        config = load_config(tmp_path, environ={"HR_ANALYTICS_REFERENCE_DATE": ""})
        assert config.reference_date is None

    def test_other_tool_sections_ignored(self, tmp_path: Path):
        _write_pyproject(tmp_path, '[project]\nname = "x"\n\n[tool.pytest.ini_options]\n')
        assert load_config(tmp_path, environ={}) == PipelineConfig()

    def test_invalid_toml(self, tmp_path: Path):
        _write_pyproject(tmp_path, "[tool.hr_analytics\n")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(tmp_path, environ={})

    def test_unknown_date_format_key(self, tmp_path: Path):
        _write_pyproject(
            tmp_path, '[tool.hr_analytics.date_formats]\nbirthday = "%d-%m-%Y"\n'
        )
        with pytest.raises(ConfigError, match="birthday"):
            load_config(tmp_path, environ={})

    def test_invalid_environment_value(self, tmp_path: Path):
        with pytest.raises(ConfigError):
            load_config(tmp_path, environ={"HR_ANALYTICS_MAX_CONCURRENCY": "zero"})
