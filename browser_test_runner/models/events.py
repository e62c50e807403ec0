"""Protocol events posted by the scripts injected in test pages."""

from collections.abc import Sequence
from typing import Any

from pydantic import Field

from browser_test_runner.models.base import Event


class DeclaredTest(Event):
    """Test announced by the page before running it."""

    __test__ = False

    test_id: str
    name: str | None = None


class DeclaredModule(Event):
    """Module announced by the page before running it."""

    name: str | None = None
    tests: Sequence[DeclaredTest] = ()


class BeginEvent(Event):
    """The page starts running its tests."""

    total_tests: int | None = None
    modules: Sequence[DeclaredModule] | None = None
    is_opa: bool = False


class TestStartEvent(Event):
    """A test starts."""

    __test__ = False

    module: str | None = None
    name: str | None = None
    test_id: str | None = None


class LogEvent(TestStartEvent):
    """An assertion or step was logged by a running test."""

    runtime: int | float | None = None

    def entry(self) -> dict[str, Any]:
        """Log entry stored on the test."""
        return self.model_dump(
            by_alias=True, exclude_unset=True, exclude={"module", "name", "test_id"}
        )


class TestDoneEvent(TestStartEvent):
    """A test ended."""

    assertions: Sequence[Any] = ()
    failed: int = 0
    passed: int = 0

    def report(self) -> dict[str, Any]:
        """Test report, everything but the identification and assertions."""
        return self.model_dump(
            by_alias=True, exclude={"module", "name", "test_id", "assertions"}
        )


class DoneEvent(Event):
    """The page finished running its tests."""

    failed: int = 0
    coverage: dict[str, Any] | None = Field(default=None, alias="__coverage__")

    def report(self) -> dict[str, Any]:
        """Page report without the coverage payload."""
        return self.model_dump(by_alias=True, exclude={"coverage"})
