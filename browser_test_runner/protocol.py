"""Interpretation of the test lifecycle events posted by the pages."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, NamedTuple, NoReturn, TypeVar

from pydantic import BaseModel, ValidationError

from browser_test_runner.browsers import Browsers
from browser_test_runner.coverage import Coverage
from browser_test_runner.errors import ProtocolError, RunnerError
from browser_test_runner.job import Job
from browser_test_runner.models.events import (
    BeginEvent,
    DoneEvent,
    LogEvent,
    TestDoneEvent,
    TestStartEvent,
)
from browser_test_runner.models.pages import PAGES, Module, Test, TestPage
from browser_test_runner.tools import filename, strip_url_hash

log = logging.getLogger(__name__)
E = TypeVar("E", bound=BaseModel)


class Lookup(NamedTuple):
    """Page, module and test targeted by an event."""

    url: str
    page: TestPage
    module: Module | None
    test: Test | None


@dataclass(frozen=True, kw_only=True)
class Protocol:
    """Builds the test tree of every page and decides when a page is over.

    Events of one page arrive in order, events of distinct pages interleave.
    Pages are identified by their URL, a ``#fragment`` only tells apart
    instances of the same page and is ignored.
    """

    job: Job
    browsers: Browsers
    coverage: Coverage

    async def begin(self, url_with_hash: str, payload: Any) -> None:
        """Declare the page and the tests it is about to run."""
        url = strip_url_hash(url_with_hash)
        event = await self._parse(url, BeginEvent, payload)
        if (page := self.job.pages.get(url)) is not None and page.completed:
            log.debug("Ignoring begin of completed page %s", url)
            return
        declared = event.total_tests is not None and event.modules is not None
        empty = declared and event.total_tests == 0
        early_start = not declared or (empty and not self.job.config.allow_empty_pages)
        if early_start:
            log.warning("Early start of %s", url)
            if self.job.config.strict:
                await self._fail(url, "Invalid begin hook details")

        self.job.pages[url] = TestPage(
            id=filename(url),
            start=datetime.now(),
            is_opa=event.is_opa,
            count=event.total_tests or 0,
            modules=[
                Module(
                    name=module.name,
                    tests=[
                        Test(name=test.name, test_id=test.test_id)
                        for test in module.tests
                    ],
                )
                for module in event.modules or ()
            ],
            early_start=early_start,
        )

    async def test_start(self, url_with_hash: str, payload: Any) -> None:
        """Stamp the start of a test, declaring it if the page did not."""
        url = strip_url_hash(url_with_hash)
        event = await self._parse(url, TestStartEvent, payload)
        lookup = await self._get(url, event.test_id)
        if lookup is None:
            return
        page, module, test = lookup.page, lookup.module, lookup.test
        if module is None:
            module = page.find_module(event.module)
            if module is None:
                module = Module(name=event.module)
                page.modules.append(module)
        if test is None:
            test = Test(name=event.name, test_id=event.test_id)
            module.tests.append(test)
            page.count += 1
        test.start = datetime.now()

    async def log(self, url_with_hash: str, payload: Any) -> None:
        """Record a step of a running test."""
        url = strip_url_hash(url_with_hash)
        event = await self._parse(url, LogEvent, payload)
        lookup = await self._get(url, event.test_id)
        if lookup is None:
            return
        test = await self._require_test(lookup, event.test_id)
        entry = event.entry()
        test.logs.append(entry)
        if lookup.page.is_opa and self.job.config.opa_step_screenshots:
            label = str(event.test_id)
            if event.runtime is not None:
                label = f"{label}-{event.runtime}"
            if (path := await self._screenshot(url, label)) is not None:
                entry["screenshot"] = path.name

    async def test_done(self, url_with_hash: str, payload: Any) -> None:
        """Record the result of a test."""
        url = strip_url_hash(url_with_hash)
        event = await self._parse(url, TestDoneEvent, payload)
        lookup = await self._get(url, event.test_id)
        if lookup is None:
            return
        test = await self._require_test(lookup, event.test_id)
        page = lookup.page
        if event.failed:
            if (path := await self._screenshot(url, str(event.test_id))) is not None:
                test.screenshot = path.name
            page.failed += 1
            self.job.mark_failed()
        else:
            page.passed += 1
        test.end = datetime.now()
        test.report = event.report()

        if self.job.config.fail_opa_fast and event.failed:
            for remaining in page.tests():
                if remaining.report is None:
                    remaining.skip = True
            log.info("Skipping remaining tests of %s", url)
            await self.done(
                url_with_hash,
                {
                    "failed": page.failed,
                    "passed": page.passed,
                    "total": page.count,
                    "runtime": 0,
                },
            )

    async def done(self, url_with_hash: str, payload: Any) -> None:
        """Complete the page and stop its browser."""
        url = strip_url_hash(url_with_hash)
        event = await self._parse(url, DoneEvent, payload)
        lookup = await self._get(url)
        if lookup is None:
            return
        page = lookup.page
        if page.early_start and page.count == 0:
            # The harness is still bootstrapping
            log.debug("Ignoring premature done of %s", url)
            return
        await self._screenshot(url, "done")
        page.end = datetime.now()
        if event.coverage is not None:
            await self.coverage.collect(url, event.coverage)
        page.report = event.report()
        log.info(
            "Page %s completed: %d passed, %d failed", url, page.passed, page.failed
        )
        await self.browsers.stop(url)

    def progress(self) -> dict[str, Any]:
        """Snapshot of the run for polling clients."""
        return {
            "status": self.job.status,
            "failed": self.job.failed,
            "pages": PAGES.dump_python(self.job.pages, mode="json"),
        }

    async def _parse(self, url: str, model: type[E], payload: Any) -> E:
        try:
            return model.model_validate(payload)
        except ValidationError as error:
            await self._fail(url, f"Invalid {model.__name__}: {error}")

    async def _get(self, url: str, test_id: str | None = None) -> Lookup | None:
        """Find the page of an event, None once the page is completed."""
        page = self.job.pages.get(url)
        if page is None:
            await self._fail(url, f"No test page found for {url}")
        if page.completed:
            log.debug("Ignoring event of completed page %s", url)
            return None
        module, test = (None, None) if test_id is None else page.find_test(test_id)
        if test_id is not None and test is None and self.job.config.strict:
            if not page.early_start:
                await self._fail(url, f"invalid test id {test_id}")
        return Lookup(url=url, page=page, module=module, test=test)

    async def _require_test(self, lookup: Lookup, test_id: str | None) -> Test:
        if lookup.test is None:
            await self._fail(lookup.url, f"invalid test id {test_id}")
        return lookup.test

    async def _screenshot(self, url: str, label: str) -> Path | None:
        try:
            return await self.browsers.screenshot(url, label)
        except RunnerError as error:
            log.error("Screenshot %s of %s failed: %s", label, url, error)
            return None

    async def _fail(self, url: str, details: str) -> NoReturn:
        await self.browsers.stop(url)
        self.job.mark_failed()
        raise ProtocolError(details)
