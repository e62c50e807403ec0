"""Run coordinator: executes the test pages of a job and collects results."""

import asyncio
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

import aiohttp

from browser_test_runner.browsers import Browsers, SessionOutcome
from browser_test_runner.coverage import Coverage, Instrumenter
from browser_test_runner.errors import BrowserFailed
from browser_test_runner.job import Job
from browser_test_runner.mappings import FileMapping, Mapping
from browser_test_runner.models.result import PageResult
from browser_test_runner.protocol import Protocol
from browser_test_runner.server import create_app, serve

log = logging.getLogger(__name__)

STATIC_PATTERN = re.compile(r"([^?]*)(\?.*)?$")


@dataclass(frozen=True, kw_only=True)
class TestRunner:
    """Runs the pages of a job with bounded parallelism."""

    __test__ = False

    job: Job
    browsers: Browsers

    async def run_pages(self, urls: Sequence[str]) -> Sequence[PageResult]:
        """Run every page and wait for all of them to settle.

        Args:
            urls: Absolute URLs of the test pages

        Returns:
            One result per page, in the order of urls

        """
        if not urls:
            log.info("No test page to run")
            return []

        config = self.job.config
        parallel = config.parallel
        capabilities = self.job.capabilities
        if capabilities is not None and not capabilities.parallel:
            log.info("Browser does not support parallel pages")
            parallel = 1
        semaphore = asyncio.Semaphore(parallel)

        self.job.status = "Executing pages"
        log.info("Running %d page(s), %d at a time...", len(urls), parallel)
        watchdog = (
            asyncio.ensure_future(self._expire(config.global_timeout))
            if config.global_timeout
            else None
        )
        try:
            results = await asyncio.gather(
                *(self._run_page(url, semaphore) for url in urls),
                return_exceptions=True,
            )
        finally:
            if watchdog is not None:
                watchdog.cancel()
        log.info("Page execution completed")

        return self._process_results(urls, results)

    def _process_results(
        self,
        urls: Sequence[str],
        results: Sequence[PageResult | BaseException],
    ) -> Sequence[PageResult]:
        """Turn page failures into results."""
        final_results: list[PageResult] = []

        for url, result in zip(urls, results, strict=True):
            if isinstance(result, PageResult):
                log.info(
                    "Page completed: url=%s status=%s duration=%.1fs",
                    url,
                    result.status,
                    result.duration,
                )
                final_results.append(result)
            elif isinstance(result, Exception):
                log.error("Page execution failed: %s", result, exc_info=result)
                self.job.mark_failed()
                final_results.append(
                    PageResult(
                        url=url, status="error", duration=0.0, message=str(result)
                    )
                )
            else:
                raise result

        return final_results

    async def _run_page(self, url: str, semaphore: asyncio.Semaphore) -> PageResult:
        """Run one page once a slot is free."""
        async with semaphore:
            if self.job.timed_out:
                return PageResult(
                    url=url, status="timeout", duration=0.0, message="Not started"
                )
            if self.job.config.fail_fast and self.job.failed:
                log.info("Skipping %s, the run already failed", url)
                return PageResult(url=url, status="skipped", duration=0.0)

            loop = asyncio.get_running_loop()
            start = loop.time()
            outcome = await self.browsers.start(url, self._scripts())
            duration = loop.time() - start

        if outcome is SessionOutcome.RETRIES_EXHAUSTED:
            raise BrowserFailed(
                f"{url} did not complete after {self.job.config.browser_retry} retries"
            )

        page = self.job.pages.get(url)
        if page is None or not page.completed:
            self.job.mark_failed()
            return PageResult(
                url=url,
                status="timeout" if self.job.timed_out else "error",
                duration=duration,
                passed=page.passed if page else 0,
                failed=page.failed if page else 0,
                message="Page did not complete",
            )
        return PageResult(
            url=url,
            status="failure" if page.failed else "success",
            duration=duration,
            passed=page.passed,
            failed=page.failed,
        )

    def _scripts(self) -> Sequence[str]:
        scripts = self.job.config.scripts
        capabilities = self.job.capabilities
        if scripts and capabilities is not None and not capabilities.scripts:
            log.warning("Browser does not support script injection, scripts ignored")
            return ()
        return scripts

    async def _expire(self, timeout: float) -> None:
        await asyncio.sleep(timeout)
        log.warning("!! GLOBAL TIMEOUT after %ss", timeout)
        self.job.timed_out = True
        self.job.mark_failed()
        for url in self.browsers.live_urls():
            await self.browsers.stop(url)


def page_urls(job: Job) -> Sequence[str]:
    """Absolute URLs of the pages, relative ones are served by the runner."""
    return [
        url if "://" in url else f"{job.base_host}/{url.lstrip('/')}"
        for url in job.config.url
    ]


def static_mappings(job: Job) -> Sequence[Mapping]:
    """Serve the application directory in legacy mode."""
    if job.config.mode != "legacy":
        return []
    return [FileMapping(pattern=STATIC_PATTERN, base_dir=job.config.webapp)]


async def execute(
    job: Job, instrumenter: Instrumenter | None = None
) -> Sequence[PageResult]:
    """Run a whole job: probe, instrument, serve, run the pages and report.

    Raises:
        RunnerError: On failures fatal to the run (probe, npm, coverage tool)

    """
    async with aiohttp.ClientSession() as session:
        browsers = Browsers(job=job)
        coverage = Coverage(job=job, session=session, instrumenter=instrumenter)
        protocol = Protocol(job=job, browsers=browsers, coverage=coverage)

        await browsers.probe()
        await coverage.instrument()

        app = create_app(job, protocol, [*coverage.mappings(), *static_mappings(job)])
        async with serve(app, job):
            runner = TestRunner(job=job, browsers=browsers)
            results = await runner.run_pages(page_urls(job))

        await coverage.generate_report()
    job.status = "Done"
    return results
