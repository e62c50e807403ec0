"""Shared fixtures."""

from collections.abc import Iterator
from pathlib import Path

import pytest
from aioresponses import aioresponses as aioresponses_cls

from browser_test_runner.job import Job
from browser_test_runner.models.config import JobConfig
from browser_test_runner.testing.factories import BrowserCapabilitiesFactory


@pytest.fixture
def aioresponses() -> Iterator[aioresponses_cls]:
    """Mock outbound HTTP, requests to local test servers go through."""
    with aioresponses_cls(passthrough=["http://127.0.0.1"]) as mocked:
        yield mocked


@pytest.fixture
def config(tmp_path: Path) -> JobConfig:
    """Minimal configuration rooted in a temporary directory."""
    return JobConfig(browser=["driver"], cwd=tmp_path, stop_grace=0)


@pytest.fixture
def job(config: JobConfig) -> Job:
    """Run context with screenshot capable capabilities."""
    return Job(config=config, capabilities=BrowserCapabilitiesFactory.build())
