"""Tests for npm package resolution."""

from pathlib import Path
from unittest.mock import AsyncMock, call, patch

import pytest

from browser_test_runner.errors import NpmFailed
from browser_test_runner.job import Job
from browser_test_runner.npm import npm, resolve_package, resolve_packages
from browser_test_runner.process import CommandResult


def ok(stdout: str = "") -> CommandResult:
    """Successful command result."""
    return CommandResult(returncode=0, stdout=stdout, stderr="")


@pytest.fixture
def roots(tmp_path: Path) -> tuple[Path, Path]:
    """Local and global npm roots."""
    local_root = tmp_path / "local"
    global_root = tmp_path / "global"
    local_root.mkdir()
    global_root.mkdir()
    return local_root, global_root


def npm_mock(local_root: Path, global_root: Path) -> AsyncMock:
    """Mock run_command answering npm root queries."""

    async def run(*args: str, cwd: Path | None = None) -> CommandResult:
        if args == ("npm", "root"):
            return ok(f"{local_root}\n")
        if args == ("npm", "root", "--global"):
            return ok(f"{global_root}\n")
        return ok()

    return AsyncMock(side_effect=run)


async def test_npm_returns_trimmed_output() -> None:
    """Output is stripped."""
    with patch(
        "browser_test_runner.npm.run_command",
        AsyncMock(return_value=ok(" 10.2.0\n")),
    ):
        assert await npm("--version") == "10.2.0"


async def test_npm_raises_on_failure() -> None:
    """Non-zero exit raises NpmFailed with stderr."""
    result = CommandResult(returncode=1, stdout="", stderr="E404 not found\n")
    with (
        patch("browser_test_runner.npm.run_command", AsyncMock(return_value=result)),
        pytest.raises(NpmFailed, match="E404 not found"),
    ):
        await npm("install", "nope")


async def test_npm_raises_when_missing() -> None:
    """A missing npm executable raises NpmFailed."""
    with (
        patch(
            "browser_test_runner.npm.run_command",
            AsyncMock(side_effect=FileNotFoundError("npm")),
        ),
        pytest.raises(NpmFailed, match="Unable to run npm"),
    ):
        await npm("root")


async def test_no_package_means_no_npm_call(job: Job) -> None:
    """Nothing to resolve does not run npm."""
    with patch("browser_test_runner.npm.run_command") as run_command:
        assert await resolve_packages(job, []) == {}

    run_command.assert_not_called()


async def test_prefers_local_package(job: Job, roots: tuple[Path, Path]) -> None:
    """A package under the local root wins."""
    local_root, global_root = roots
    (local_root / "puppeteer").mkdir()
    (global_root / "puppeteer").mkdir()

    with patch(
        "browser_test_runner.npm.run_command", npm_mock(local_root, global_root)
    ):
        resolved = await resolve_packages(job, ["puppeteer"])

    assert resolved == {"puppeteer": local_root / "puppeteer"}


async def test_falls_back_to_global_package(
    job: Job, roots: tuple[Path, Path]
) -> None:
    """A package only under the global root is used from there."""
    local_root, global_root = roots
    (global_root / "nyc").mkdir()

    with patch(
        "browser_test_runner.npm.run_command", npm_mock(local_root, global_root)
    ):
        assert await resolve_package(job, "nyc") == global_root / "nyc"


async def test_installs_missing_package(job: Job, roots: tuple[Path, Path]) -> None:
    """A missing package is installed globally."""
    local_root, global_root = roots
    run_command = npm_mock(local_root, global_root)

    with patch("browser_test_runner.npm.run_command", run_command):
        resolved = await resolve_packages(job, ["playwright"])

    assert resolved == {"playwright": global_root / "playwright"}
    install = call("npm", "install", "playwright", "--global")
    assert install in run_command.call_args_list
    assert job.status == "Installing playwright..."
