"""Pipeline configuration.

Settings are layered, lowest precedence first:

1. Defaults on :class:`PipelineConfig`.
2. ``[tool.hr_analytics]`` in ``pyproject.toml``::

       [tool.hr_analytics]
       reference_date = "2024-03-15"
       max_concurrency = 4

       [tool.hr_analytics.date_formats]
       dob = ["%d-%m-%Y", "%d/%m/%Y"]

3. Environment variables ``HR_ANALYTICS_REFERENCE_DATE`` and
   ``HR_ANALYTICS_MAX_CONCURRENCY`` (the CLI loads a ``.env`` first).
4. Command line options (applied by the CLI via ``dataclasses.replace``).
"""

from __future__ import annotations

import datetime
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from .clean import DateFormats

ENV_REFERENCE_DATE = "HR_ANALYTICS_REFERENCE_DATE"
ENV_MAX_CONCURRENCY = "HR_ANALYTICS_MAX_CONCURRENCY"

_DATE_FORMAT_KEYS = ("dob", "hire", "termination", "review")


class ConfigError(ValueError):
    """Raised for invalid configuration values."""


@dataclass(frozen=True)
class PipelineConfig:
    """Settings for one pipeline run.

    Attributes:
        reference_date: The "now" every derived value of a run is computed
            against. None means today, resolved once per run.
        date_formats: Accepted text formats per date field.
        max_concurrency: Report queries allowed to run at once (1 = sequential).
    """

    reference_date: datetime.date | None = None
    date_formats: DateFormats = field(default_factory=DateFormats)
    max_concurrency: int = 1

    def resolve_reference_date(self) -> datetime.date:
        return self.reference_date or datetime.date.today()


def parse_reference_date(value: Any) -> datetime.date:
    """Parse an ISO ``YYYY-MM-DD`` reference date."""
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    try:
        return datetime.date.fromisoformat(str(value).strip())
    except ValueError:
        raise ConfigError(
            f"reference_date must be an ISO date (YYYY-MM-DD), got {value!r}"
        ) from None


def parse_max_concurrency(value: Any) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"max_concurrency must be an integer, got {value!r}") from None
    if n < 1:
        raise ConfigError(f"max_concurrency must be >= 1, got {n}")
    return n


def _parse_date_formats(raw: Any) -> DateFormats:
    if not isinstance(raw, dict):
        raise ConfigError("[tool.hr_analytics.date_formats] must be a table")
    unknown = sorted(set(raw) - set(_DATE_FORMAT_KEYS))
    if unknown:
        raise ConfigError(f"Unknown date_formats key(s): {', '.join(unknown)}")
    values: dict[str, tuple[str, ...]] = {}
    for key, formats in raw.items():
        if isinstance(formats, str):
            formats = [formats]
        if not isinstance(formats, list) or not formats or not all(
            isinstance(f, str) and f for f in formats
        ):
            raise ConfigError(
                f"date_formats.{key} must be a format string or a non-empty list of them"
            )
        values[key] = tuple(formats)
    return DateFormats(**values)


def read_pyproject_settings(root: Path) -> dict[str, Any]:
    """Return ``[tool.hr_analytics]`` from ``root/pyproject.toml`` (or {})."""
    pyproject_path = root / "pyproject.toml"
    if not pyproject_path.exists():
        return {}
    try:
        data = tomllib.loads(pyproject_path.read_text())
    except OSError as e:
        raise ConfigError(f"Failed to read {pyproject_path}: {e}") from e
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML in {pyproject_path}: {e}") from e
    settings = data.get("tool", {}).get("hr_analytics", {})
    if not isinstance(settings, dict):
        raise ConfigError("[tool.hr_analytics] must be a table")
    return settings


def load_config(
    root: Path | None = None, environ: Mapping[str, str] | None = None
) -> PipelineConfig:
    """Build a PipelineConfig from pyproject settings and the environment."""
    if root is None:
        root = Path.cwd()
    if environ is None:
        environ = os.environ

    settings = read_pyproject_settings(root)
    kwargs: dict[str, Any] = {}

    if "reference_date" in settings:
        kwargs["reference_date"] = parse_reference_date(settings["reference_date"])
    if "max_concurrency" in settings:
        kwargs["max_concurrency"] = parse_max_concurrency(settings["max_concurrency"])
    if "date_formats" in settings:
        kwargs["date_formats"] = _parse_date_formats(settings["date_formats"])

    if environ.get(ENV_REFERENCE_DATE):
        kwargs["reference_date"] = parse_reference_date(environ[ENV_REFERENCE_DATE])
    if environ.get(ENV_MAX_CONCURRENCY):
        kwargs["max_concurrency"] = parse_max_concurrency(environ[ENV_MAX_CONCURRENCY])

    return PipelineConfig(**kwargs)
