"""Supervision of the browser driver processes, one session per test page."""

import asyncio
import json
import logging
from collections.abc import Coroutine, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from browser_test_runner.errors import (
    BrowserProbeFailed,
    BrowserScreenshotFailed,
    BrowserScreenshotTimeout,
    GenericError,
    MissingOrInvalidBrowserCapabilities,
)
from browser_test_runner.job import Job
from browser_test_runner.models.capabilities import BrowserCapabilities
from browser_test_runner.models.messages import (
    BrowserConfig,
    ScreenshotAck,
    ScreenshotCommand,
)
from browser_test_runner.npm import resolve_packages
from browser_test_runner.process import DriverProcess, run_command
from browser_test_runner.tools import filename, recreate_dir

log = logging.getLogger(__name__)

BASE_HOST_VARIABLE = "browser-test-runner/base-host"


class SessionOutcome(StrEnum):
    """How a page session ended."""

    COMPLETED = "completed"
    RETRIES_EXHAUSTED = "retries-exhausted"


@dataclass(frozen=True, kw_only=True)
class Attempt:
    """One launch of the driver for a page."""

    retry: int
    process: DriverProcess | None = None
    timer: asyncio.TimerHandle | None = None


@dataclass(kw_only=True)
class PageSession:
    """Driver supervision state of a page, keyed by URL across attempts."""

    url: str
    report_dir: Path
    scripts: Sequence[str]
    done: asyncio.Future[SessionOutcome] = field(repr=False)
    retry_count: int = 0
    attempt: Attempt | None = None
    stopped: bool = False

    @property
    def process(self) -> DriverProcess | None:
        """Driver of the current attempt."""
        return self.attempt.process if self.attempt else None


@dataclass(frozen=True, kw_only=True)
class Browsers:
    """Launches, watches, retries and stops browser drivers."""

    job: Job
    _screenshots: dict[int, asyncio.Future[ScreenshotAck]] = field(
        default_factory=dict, init=False, repr=False
    )
    _tasks: set[asyncio.Task[None]] = field(
        default_factory=set, init=False, repr=False
    )

    async def probe(self) -> BrowserCapabilities:
        """Query the driver capabilities and resolve the modules it needs.

        Raises:
            BrowserProbeFailed: If the driver cannot be run or answers garbage
            MissingOrInvalidBrowserCapabilities: If the descriptor is invalid
            NpmFailed: If a required module cannot be resolved

        """
        self.job.status = "Probing browser instantiation command"
        command = self.job.config.browser
        try:
            result = await run_command(*command, "capabilities")
        except OSError as error:
            raise BrowserProbeFailed(f"Unable to run {command}: {error}") from error
        if result.returncode != 0:
            raise BrowserProbeFailed(
                f"Exit code {result.returncode}: {result.stderr.strip()}"
            )
        try:
            descriptor = json.loads(result.stdout)
        except json.JSONDecodeError as error:
            raise BrowserProbeFailed(f"Unexpected output: {result.stdout}") from error

        try:
            capabilities = BrowserCapabilities.model_validate(descriptor)
        except ValidationError as error:
            raise MissingOrInvalidBrowserCapabilities(str(error)) from error

        log.info("Browser capabilities: %s", capabilities)
        self.job.modules = dict(await resolve_packages(self.job, capabilities.modules))
        self.job.capabilities = capabilities
        return capabilities

    async def start(self, url: str, scripts: Sequence[str] = ()) -> SessionOutcome:
        """Run the page in a driver until it is stopped or retries run out."""
        if url in self.job.sessions:
            raise GenericError(f"A browser is already running {url}")
        log.info(">> %s", url)
        resolved = [await self._resolve_script(script) for script in scripts]
        if resolved:
            resolved.insert(
                0, f"window['{BASE_HOST_VARIABLE}'] = '{self.job.base_host}'\n"
            )
        session = PageSession(
            url=url,
            report_dir=self.job.config.report_dir / filename(url),
            scripts=tuple(resolved),
            done=asyncio.get_running_loop().create_future(),
        )
        self.job.sessions[url] = session
        try:
            await self._run(session)
        except BaseException:
            del self.job.sessions[url]
            raise
        outcome = await session.done
        log.info("<< %s (%s)", url, outcome)
        return outcome

    async def screenshot(self, url: str, label: str) -> Path | None:
        """Take a screenshot of a running page.

        Returns None when screenshots are disabled or unsupported, or when the
        page has no live driver.

        Raises:
            BrowserScreenshotTimeout: If the driver does not answer in time
            BrowserScreenshotFailed: If the driver reports an error

        """
        capabilities = self.job.capabilities
        if not self.job.config.screenshot or not capabilities:
            return None
        if not capabilities.screenshot:
            return None
        session = self.job.sessions.get(url)
        if session is None or session.stopped:
            return None
        process = session.process
        if process is None or not process.connected:
            return None

        screenshot_id = self.job.next_screenshot_id()
        path = session.report_dir / f"{label}{capabilities.screenshot}"
        acknowledged = asyncio.get_running_loop().create_future()
        self._screenshots[screenshot_id] = acknowledged
        try:
            if not process.send(
                ScreenshotCommand(id=screenshot_id, filename=str(path))
            ):
                raise BrowserScreenshotFailed(f"Browser of {url} is gone")
            timeout = self.job.config.screenshot_timeout or None
            ack = await asyncio.wait_for(acknowledged, timeout)
        except TimeoutError:
            raise BrowserScreenshotTimeout(f"{label} of {url}") from None
        finally:
            self._screenshots.pop(screenshot_id, None)
        if ack.error:
            raise BrowserScreenshotFailed(ack.error)
        return path

    async def stop(self, url: str, retry: bool = False) -> None:
        """Stop the driver of a page, relaunching it when retry is allowed."""
        session = self.job.sessions.get(url)
        if session is not None:
            await self._stop(session, retry)

    def live_urls(self) -> Sequence[str]:
        """URLs of the pages having a driver that was not stopped."""
        return [
            url for url, session in self.job.sessions.items() if not session.stopped
        ]

    async def _resolve_script(self, script: str) -> str:
        if not script.endswith(".js"):
            return script
        inject_dir = self.job.config.inject_dir or self.job.config.cwd
        return await asyncio.to_thread((inject_dir / script).read_text)

    async def _run(self, session: PageSession) -> None:
        retry = session.retry_count
        # Watchers of the previous attempt must not see this one as theirs
        session.attempt = Attempt(retry=retry)
        session.stopped = False
        if retry:
            log.warning(">> RETRY %d %s", retry, session.url)
        await recreate_dir(session.report_dir)

        config = self.job.config
        browser_config = BrowserConfig(
            modules={name: str(path) for name, path in self.job.modules.items()},
            url=session.url,
            retry=retry,
            scripts=session.scripts,
            args=config.browser_args,
        )
        config_path = session.report_dir / "browser.json"
        await asyncio.to_thread(
            config_path.write_text, browser_config.model_dump_json()
        )

        try:
            process = await DriverProcess.spawn(
                config.browser,
                str(config_path),
                label=session.url,
                on_message=self._on_message,
            )
        except OSError as error:
            log.error("Unable to start browser for %s: %s", session.url, error)
            session.attempt = Attempt(retry=retry)
            await self._stop(session, retry=True)
            return

        if session.stopped or session.retry_count != retry:
            # Stopped while the attempt was being prepared
            process.kill()
            return

        timer = None
        if config.page_timeout:
            timer = asyncio.get_running_loop().call_later(
                config.page_timeout, self._on_timeout, session, process
            )
        attempt = Attempt(retry=retry, process=process, timer=timer)
        session.attempt = attempt
        self._spawn(self._watch(session, attempt, process))

    async def _stop(self, session: PageSession, retry: bool) -> None:
        if session.stopped:
            return
        session.stopped = True
        if (attempt := session.attempt) is not None:
            if attempt.timer is not None:
                attempt.timer.cancel()
            if attempt.process is not None:
                attempt.process.stop(self.job.config.stop_grace)

        if retry and session.retry_count < self.job.config.browser_retry:
            session.retry_count += 1
            await self._run(session)
            return

        if self.job.sessions.get(session.url) is session:
            del self.job.sessions[session.url]
        if not session.done.done():
            outcome = (
                SessionOutcome.RETRIES_EXHAUSTED if retry else SessionOutcome.COMPLETED
            )
            session.done.set_result(outcome)

    def _on_timeout(self, session: PageSession, process: DriverProcess) -> None:
        if session.process is process and not session.stopped:
            log.warning("!! TIMEOUT %s", session.url)
            self._spawn(self._stop(session, retry=True))

    async def _watch(
        self, session: PageSession, attempt: Attempt, process: DriverProcess
    ) -> None:
        try:
            returncode: int | str = await process.wait()
        except Exception as error:
            # Output can no longer be read, the driver is handled as crashed
            log.error("Lost the output of %s: %s", session.url, error)
            returncode = "unknown"
        if session.attempt is attempt and not session.stopped:
            log.warning("!! BROWSER CLOSED %s (exit code %s)", session.url, returncode)
            await self._stop(session, retry=True)

    def _on_message(self, message: ScreenshotAck) -> None:
        acknowledged = self._screenshots.pop(message.id, None)
        if acknowledged is None or acknowledged.done():
            log.warning("Unexpected screenshot acknowledgement %d", message.id)
            return
        acknowledged.set_result(message)

    def _spawn(self, coroutine: Coroutine[Any, Any, None]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and (error := task.exception()) is not None:
            log.error("Browser supervision failed: %s", error, exc_info=error)
