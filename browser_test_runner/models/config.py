"""Run configuration."""

from collections.abc import Sequence
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

PATH_DEFAULTS: dict[str, str] = {
    "webapp": "webapp",
    "report_dir": "report",
    "coverage_temp_dir": ".nyc_output",
    "coverage_report_dir": "coverage",
}

OPTIONAL_PATHS = ("cache", "inject_dir", "coverage_settings")


class JobConfig(BaseModel):
    """Configuration of one test run.

    Relative paths are resolved against ``cwd``.
    """

    browser: Sequence[str] = Field(
        ..., min_length=1, description="Command launching the browser driver"
    )
    browser_args: Sequence[str] = Field(
        default_factory=list, description="Extra arguments passed to the driver"
    )
    browser_retry: int = Field(default=1, ge=0, description="Retries per page")
    url: Sequence[str] = Field(default_factory=list, description="Test page URLs")
    mode: Literal["legacy", "url"] = "legacy"
    cwd: Path = Field(default_factory=Path.cwd)
    webapp: Path = Path(PATH_DEFAULTS["webapp"])
    report_dir: Path = Path(PATH_DEFAULTS["report_dir"])
    cache: Path | None = None
    inject_dir: Path | None = Field(
        default=None, description="Directory of injected '.js' scripts (cwd if unset)"
    )
    scripts: Sequence[str] = Field(
        default_factory=list, description="Scripts injected into every page"
    )
    endpoint_prefix: str = "/_/QUnit"
    port: int = 0

    parallel: int = Field(default=2, ge=1)
    page_timeout: float = Field(default=0, ge=0, description="Seconds, 0 disables")
    global_timeout: float = Field(default=0, ge=0, description="Seconds, 0 disables")
    screenshot_timeout: float = Field(default=5, ge=0)
    stop_grace: float = Field(
        default=5, ge=0, description="Seconds before a stopped driver is killed"
    )
    fail_fast: bool = False
    fail_opa_fast: bool = False
    strict: bool = False
    allow_empty_pages: bool = True
    screenshot: bool = True
    opa_step_screenshots: bool = True

    coverage: bool = False
    coverage_settings: Path | None = None
    coverage_temp_dir: Path = Path(PATH_DEFAULTS["coverage_temp_dir"])
    coverage_report_dir: Path = Path(PATH_DEFAULTS["coverage_report_dir"])
    coverage_reporters: Sequence[str] = ("lcov", "cobertura")
    coverage_check_branches: int = Field(default=0, ge=0, le=100)
    coverage_check_functions: int = Field(default=0, ge=0, le=100)
    coverage_check_lines: int = Field(default=0, ge=0, le=100)
    coverage_check_statements: int = Field(default=0, ge=0, le=100)
    coverage_proxy: bool = False
    coverage_proxy_include: str = ".*"
    coverage_proxy_exclude: str = r"/((test-)?resources|tests?)/"
    remote_on_legacy: bool = False
    nyc_command: Sequence[str] | None = Field(
        default=None, description="Overrides the npm-resolved nyc command"
    )
    debug_coverage: bool = False
    debug_coverage_no_custom_fs: bool = False

    @model_validator(mode="before")
    @classmethod
    def resolve_paths(cls, data: Any) -> Any:
        """Make every path absolute using cwd."""
        if not isinstance(data, dict):
            return data
        cwd = Path(data.get("cwd") or Path.cwd())
        resolved = {**data, "cwd": cwd}
        for key, default in PATH_DEFAULTS.items():
            resolved[key] = cwd / (data.get(key) or default)
        for key in OPTIONAL_PATHS:
            if data.get(key) is not None:
                resolved[key] = cwd / data[key]
        return resolved

    @property
    def coverage_thresholds(self) -> dict[str, int]:
        """Coverage checks to enforce, empty when none is configured."""
        thresholds = {
            "branches": self.coverage_check_branches,
            "functions": self.coverage_check_functions,
            "lines": self.coverage_check_lines,
            "statements": self.coverage_check_statements,
        }
        if not any(thresholds.values()):
            return {}
        return thresholds
