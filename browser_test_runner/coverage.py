"""Code coverage: instrumentation, on the fly instrumentation proxy and report."""

import asyncio
import json
import logging
import os
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import aiohttp
from yarl import URL

from browser_test_runner.errors import (
    CoverageToolFailed,
    DownloadFailed,
    GenericError,
)
from browser_test_runner.job import Job
from browser_test_runner.mappings import (
    CustomMapping,
    FileMapping,
    GlobalContextFileSystem,
    LocalFileSystem,
    Mapping,
    UrlMapping,
)
from browser_test_runner.npm import resolve_package
from browser_test_runner.process import run_command
from browser_test_runner.tools import download, filename, recreate_dir

log = logging.getLogger(__name__)

JS_PATTERN = re.compile(r"(.*\.js)(\?.*)?$")
ANY_PATTERN = re.compile(r"(.*)$")


class Instrumenter(Protocol):
    """Source to source transformation adding coverage probes."""

    async def instrument(self, source_path: Path) -> str:
        """Return the instrumented code of a source file."""


@dataclass(frozen=True)
class NycInstrumenter:
    """Pipe one file through ``nyc instrument``."""

    coverage: "Coverage"

    async def instrument(self, source_path: Path) -> str:
        return await self.coverage.nyc(
            "instrument",
            str(source_path),
            "--nycrc-path",
            str(self.coverage.settings_path),
        )


@dataclass(kw_only=True)
class _CoverageState:
    remote: bool = False
    nyc_command: Sequence[str] | None = None
    instrumentations: int = 0
    sources: dict[str, asyncio.Future[None]] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class Coverage:
    """Coverage collection of a run, everything is a no-op when disabled."""

    job: Job
    session: aiohttp.ClientSession = field(repr=False)
    instrumenter: Instrumenter | None = None
    _state: _CoverageState = field(
        default_factory=_CoverageState, init=False, repr=False
    )

    @property
    def temp_dir(self) -> Path:
        return self.job.config.coverage_temp_dir

    @property
    def instrumented_dir(self) -> Path:
        return self.temp_dir / "instrumented"

    @property
    def sources_dir(self) -> Path:
        return self.temp_dir / "sources"

    @property
    def settings_path(self) -> Path:
        return self.temp_dir / "settings" / "nyc.json"

    @property
    def instrumentations(self) -> int:
        """Number of sources instrumented on demand."""
        return self._state.instrumentations

    async def instrument(self) -> None:
        """Prepare the coverage settings and instrument the local application.

        Remote pages are not instrumented upfront, the proxy does it on demand
        unless they are served through the legacy mappings.
        """
        config = self.job.config
        if not config.coverage:
            return
        await recreate_dir(self.temp_dir)
        await self._write_settings()
        if config.mode == "url" and not config.remote_on_legacy:
            self._state.remote = True
            log.info("Remote pages, instrumentation skipped")
            return
        self.job.status = "Instrumenting"
        await self.nyc(
            "instrument",
            str(config.webapp),
            str(self.instrumented_dir),
            "--nycrc-path",
            str(self.settings_path),
        )

    async def collect(self, url: str, coverage: dict[str, Any]) -> Path:
        """Store the raw coverage of one page run."""
        index = self.job.next_coverage_index()
        path = self.temp_dir / f"{filename(url)}_{index}.json"
        if self.job.config.debug_coverage:
            log.info("coverage %s %s", url, path)
        await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, json.dumps(coverage))
        return path

    def mappings(self) -> Sequence[Mapping]:
        """Rules serving instrumented sources to the pages."""
        config = self.job.config
        if not config.coverage:
            return []
        instrumented = FileMapping(
            pattern=JS_PATTERN,
            base_dir=self.instrumented_dir,
            ignore_if_not_found=True,
        )
        if config.mode == "legacy" or config.remote_on_legacy:
            file_system = (
                LocalFileSystem()
                if config.debug_coverage_no_custom_fs
                else GlobalContextFileSystem()
            )
            return [
                FileMapping(
                    pattern=JS_PATTERN,
                    base_dir=self.instrumented_dir,
                    ignore_if_not_found=True,
                    file_system=file_system,
                )
            ]
        if config.mode == "url" and config.coverage_proxy:
            return [
                CustomMapping(pattern=JS_PATTERN, handler=self.instrument_on_demand),
                instrumented,
                UrlMapping(
                    pattern=ANY_PATTERN, origin=self._origin(), session=self.session
                ),
            ]
        return []

    async def instrument_on_demand(self, path: str) -> int | None:
        """Download and instrument a remote source the first time it is asked.

        Concurrent requests for the same path share one instrumentation.
        Returns the status of the failed download, if any.
        """
        config = self.job.config
        if not re.search(config.coverage_proxy_include, path) or re.search(
            config.coverage_proxy_exclude, path
        ):
            if config.debug_coverage:
                log.info("coverage_proxy ignore %s", path)
            return None

        pending = self._state.sources.get(path)
        if pending is None:
            if config.debug_coverage:
                log.info("coverage_proxy instrument %s", path)
            pending = asyncio.ensure_future(self._download_and_instrument(path))
            self._state.sources[path] = pending
        try:
            await asyncio.shield(pending)
        except DownloadFailed as error:
            if self._state.sources.get(path) is pending:
                del self._state.sources[path]
            log.warning("Unable to instrument %s: %s", path, error)
            return error.status
        except CoverageToolFailed as error:
            if self._state.sources.get(path) is pending:
                del self._state.sources[path]
            log.error("Unable to instrument %s, serving original: %s", path, error)
        return None

    async def generate_report(self) -> None:
        """Merge the collected coverage and produce the reports.

        Raises:
            CoverageToolFailed: If nyc fails, or if thresholds are configured
                and no coverage was extracted

        """
        config = self.job.config
        if not config.coverage:
            return
        self.job.status = "Generating coverage report"
        await recreate_dir(config.coverage_report_dir)
        merged_dir = self.temp_dir / "merged"
        await asyncio.to_thread(merged_dir.mkdir, parents=True, exist_ok=True)
        coverage_file = merged_dir / "coverage.json"
        await self.nyc("merge", str(self.temp_dir), str(coverage_file))
        if self._state.remote and not config.coverage_proxy:
            await self._download_sources(coverage_file)

        reporters = list(config.coverage_reporters)
        if "text" not in reporters:
            reporters.append("text")
        checks: list[str] = []
        if thresholds := config.coverage_thresholds:
            if "lcov" not in reporters:
                reporters.append("lcov")
            checks = [f"--{name}={value}" for name, value in thresholds.items()]
            checks.append("--check-coverage")
        await self.nyc(
            "report",
            *(f"--reporter={reporter}" for reporter in reporters),
            *checks,
            "--temp-dir",
            str(merged_dir),
            "--report-dir",
            str(config.coverage_report_dir),
            "--nycrc-path",
            str(self.settings_path),
        )
        if checks:
            # nyc skips its checks when there is no coverage at all
            lcov = config.coverage_report_dir / "lcov.info"
            if not lcov.is_file() or lcov.stat().st_size == 0:
                raise CoverageToolFailed("No coverage information extracted")

    def _origin(self) -> str:
        if not self.job.config.url:
            raise GenericError("Remote coverage needs at least one page URL")
        # All sources are expected to come from the server of the first page
        return str(URL(self.job.config.url[0]).origin())

    async def _write_settings(self) -> None:
        config = self.job.config
        settings: dict[str, Any] = {}
        if config.coverage_settings is not None:
            settings = json.loads(
                await asyncio.to_thread(config.coverage_settings.read_text)
            )
        settings["cwd"] = str(config.cwd)
        excluded = [self.temp_dir, config.report_dir, config.coverage_report_dir]
        if config.cache is not None:
            excluded.append(config.cache)
        settings["exclude"] = [
            *settings.get("exclude", []),
            *(str(path / "**") for path in excluded),
        ]
        settings.setdefault("produceSourceMap", True)
        settings.setdefault("coverageGlobalScope", "window.top")
        settings.setdefault("coverageGlobalScopeFunc", False)
        await asyncio.to_thread(
            self.settings_path.parent.mkdir, parents=True, exist_ok=True
        )
        await asyncio.to_thread(self.settings_path.write_text, json.dumps(settings))

    async def _download_and_instrument(self, path: str) -> None:
        relative = path.lstrip("/")
        source_path = self.sources_dir / relative
        await download(self.session, f"{self._origin()}{path}", source_path)
        instrumenter = self.instrumenter or NycInstrumenter(self)
        code = await instrumenter.instrument(source_path)
        self._state.instrumentations += 1
        instrumented_path = self.instrumented_dir / relative
        await asyncio.to_thread(
            instrumented_path.parent.mkdir, parents=True, exist_ok=True
        )
        await asyncio.to_thread(instrumented_path.write_text, code)

    async def _download_sources(self, coverage_file: Path) -> None:
        """Download the sources missing locally and point the merged map to them."""
        self.job.status = "Checking remote source files"
        origin = self._origin()
        coverage = json.loads(await asyncio.to_thread(coverage_file.read_text))
        changes = 0
        for file_coverage in coverage.values():
            path = file_coverage["path"]
            if os.path.isabs(path) and os.access(path, os.R_OK):
                continue
            local_path = self.sources_dir / path.lstrip("/")
            await download(self.session, f"{origin}{path}", local_path)
            file_coverage["path"] = str(local_path)
            changes += 1
        if changes:
            log.info("%d remote source file(s) downloaded", changes)
            await asyncio.to_thread(coverage_file.write_text, json.dumps(coverage))

    async def nyc(self, *args: str) -> str:
        """Run nyc in the working directory and return its output."""
        command = await self._nyc_command()
        log.info("nyc %s", " ".join(args))
        try:
            result = await run_command(*command, *args, cwd=self.job.config.cwd)
        except OSError as error:
            raise CoverageToolFailed(f"Unable to run nyc: {error}") from error
        if result.stderr.strip():
            log.debug("nyc stderr: %s", result.stderr.strip())
        if result.returncode != 0:
            raise CoverageToolFailed(
                f"Return code {result.returncode}: {result.stderr.strip()}"
            )
        return result.stdout

    async def _nyc_command(self) -> Sequence[str]:
        if self.job.config.nyc_command:
            return self.job.config.nyc_command
        if self._state.nyc_command is None:
            nyc = await resolve_package(self.job, "nyc")
            self._state.nyc_command = ("node", str(nyc / "bin" / "nyc.js"))
        return self._state.nyc_command
