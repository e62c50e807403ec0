"""Test tree built from the protocol events of each page."""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter


@dataclass(kw_only=True)
class Test:
    """A single test of a page."""

    __test__ = False

    name: str | None = None
    test_id: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    logs: list[dict[str, Any]] = field(default_factory=list)
    screenshot: str | None = None
    report: dict[str, Any] | None = None
    skip: bool = False


@dataclass(kw_only=True)
class Module:
    """Group of tests."""

    name: str | None = None
    tests: list[Test] = field(default_factory=list)


@dataclass(kw_only=True)
class TestPage:
    """Progress and results of one test page."""

    __test__ = False

    id: str
    start: datetime
    is_opa: bool = False
    count: int = 0
    modules: list[Module] = field(default_factory=list)
    early_start: bool = False
    passed: int = 0
    failed: int = 0
    end: datetime | None = None
    report: dict[str, Any] | None = None

    @property
    def completed(self) -> bool:
        """Whether the page received its final report."""
        return self.report is not None

    def tests(self) -> Iterator[Test]:
        """Iterate over all tests of all modules."""
        for module in self.modules:
            yield from module.tests

    def find_test(self, test_id: str) -> tuple[Module | None, Test | None]:
        """Find a test and its module by id."""
        for module in self.modules:
            for test in module.tests:
                if test.test_id == test_id:
                    return module, test
        return None, None

    def find_module(self, name: str | None) -> Module | None:
        """Find a module by name."""
        return next((m for m in self.modules if m.name == name), None)


PAGES: TypeAdapter[dict[str, TestPage]] = TypeAdapter(dict[str, TestPage])
