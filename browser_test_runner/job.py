"""Run context shared by the supervisor, the protocol and the coverage."""

import itertools
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from browser_test_runner.models.capabilities import BrowserCapabilities
from browser_test_runner.models.config import JobConfig
from browser_test_runner.models.pages import TestPage

if TYPE_CHECKING:
    from browser_test_runner.browsers import PageSession


@dataclass(kw_only=True)
class Job:
    """State of one run.

    Sessions are owned by the browser supervisor and pages by the protocol,
    both mutate them only between suspension points of the event loop.
    """

    config: JobConfig
    status: str = "Initializing"
    capabilities: BrowserCapabilities | None = None
    modules: dict[str, Path] = field(default_factory=dict)
    sessions: dict[str, "PageSession"] = field(default_factory=dict)
    pages: dict[str, TestPage] = field(default_factory=dict)
    port: int = 0
    timed_out: bool = False
    failed: bool = field(default=False, init=False)
    _screenshot_ids: Iterator[int] = field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )
    _coverage_indexes: Iterator[int] = field(
        default_factory=lambda: itertools.count(1), init=False, repr=False
    )

    @property
    def base_host(self) -> str:
        """Address pages use to reach the runner."""
        return f"http://127.0.0.1:{self.port}"

    def mark_failed(self) -> None:
        """Flag the run as failed, this is never undone."""
        self.failed = True

    def next_screenshot_id(self) -> int:
        """Return a screenshot request id unique to this run."""
        return next(self._screenshot_ids)

    def next_coverage_index(self) -> int:
        """Return a coverage snapshot index unique to this run."""
        return next(self._coverage_indexes)
