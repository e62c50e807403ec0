"""Models for page execution results."""

from dataclasses import dataclass
from typing import Literal

PageStatus = Literal["success", "failure", "error", "timeout", "skipped"]


@dataclass(frozen=True, kw_only=True)
class PageResult:
    """Result of running one test page."""

    url: str
    status: PageStatus
    duration: float
    passed: int = 0
    failed: int = 0
    message: str | None = None
