"""Tests for JobConfig."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from browser_test_runner.models.config import JobConfig


def test_resolves_paths_against_cwd(tmp_path: Path) -> None:
    """Default and given relative paths are made absolute using cwd."""
    config = JobConfig(browser=["driver"], cwd=tmp_path, report_dir="out")

    assert config.webapp == tmp_path / "webapp"
    assert config.report_dir == tmp_path / "out"
    assert config.coverage_temp_dir == tmp_path / ".nyc_output"
    assert config.coverage_report_dir == tmp_path / "coverage"


def test_optional_paths_stay_unset(tmp_path: Path) -> None:
    """Optional paths are only resolved when given."""
    config = JobConfig(browser=["driver"], cwd=tmp_path, inject_dir="inject")

    assert config.inject_dir == tmp_path / "inject"
    assert config.cache is None
    assert config.coverage_settings is None


def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    """Absolute paths are not joined with cwd."""
    webapp = tmp_path / "elsewhere"

    config = JobConfig(browser=["driver"], cwd=tmp_path / "cwd", webapp=str(webapp))

    assert config.webapp == webapp


def test_defaults(tmp_path: Path) -> None:
    """Defaults match a conservative run."""
    config = JobConfig(browser=["driver"], cwd=tmp_path)

    assert config.browser_retry == 1
    assert config.endpoint_prefix == "/_/QUnit"
    assert config.allow_empty_pages is True
    assert config.screenshot is True
    assert config.strict is False
    assert config.coverage is False
    assert config.mode == "legacy"


def test_browser_is_required(tmp_path: Path) -> None:
    """A driver command is mandatory."""
    with pytest.raises(ValidationError):
        JobConfig(browser=[], cwd=tmp_path)


def test_no_thresholds_by_default(tmp_path: Path) -> None:
    """Thresholds are empty when none is configured."""
    config = JobConfig(browser=["driver"], cwd=tmp_path)

    assert config.coverage_thresholds == {}


def test_thresholds_when_one_is_configured(tmp_path: Path) -> None:
    """All four thresholds are passed once one of them is set."""
    config = JobConfig(browser=["driver"], cwd=tmp_path, coverage_check_lines=80)

    assert config.coverage_thresholds == {
        "branches": 0,
        "functions": 0,
        "lines": 80,
        "statements": 0,
    }


def test_threshold_bounds(tmp_path: Path) -> None:
    """Thresholds are percentages."""
    with pytest.raises(ValidationError):
        JobConfig(browser=["driver"], cwd=tmp_path, coverage_check_lines=101)
