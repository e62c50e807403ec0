"""Coded failure kinds raised across the runner."""


class RunnerError(Exception):
    """Base error carrying a stable numeric code and free-text details."""

    code: int = -1
    name: str = "GENERIC"

    def __init__(self, details: str = "") -> None:
        super().__init__(f"{self.name}: {details}" if details else self.name)
        self.details = details


class GenericError(RunnerError):
    """Unclassified failure."""


class NpmFailed(RunnerError):
    """An npm command failed."""

    code = -2
    name = "NPM_FAILED"


class MissingOrInvalidBrowserCapabilities(RunnerError):
    """The driver capability descriptor does not match the expected schema."""

    code = -3
    name = "MISSING_OR_INVALID_BROWSER_CAPABILITIES"


class BrowserProbeFailed(RunnerError):
    """The driver could not be probed for its capabilities."""

    code = -4
    name = "BROWSER_PROBE_FAILED"


class BrowserFailed(RunnerError):
    """The driver kept crashing or timing out after all retries."""

    code = -5
    name = "BROWSER_FAILED"


class BrowserScreenshotFailed(RunnerError):
    """The driver failed to take a screenshot."""

    code = -6
    name = "BROWSER_SCREENSHOT_FAILED"


class BrowserScreenshotTimeout(RunnerError):
    """The driver did not acknowledge a screenshot in time."""

    code = -7
    name = "BROWSER_SCREENSHOT_TIMEOUT"


class BrowserScreenshotNotSupported(RunnerError):
    """The driver does not support screenshots."""

    code = -8
    name = "BROWSER_SCREENSHOT_NOT_SUPPORTED"


class ProtocolError(RunnerError):
    """A page sent an event that does not fit its test tree."""

    code = -9
    name = "PROTOCOL_ERROR"


class CoverageToolFailed(RunnerError):
    """The coverage tool failed or produced no coverage."""

    code = -10
    name = "COVERAGE_TOOL_FAILED"


class DownloadFailed(RunnerError):
    """A remote resource could not be downloaded."""

    code = -11
    name = "DOWNLOAD_FAILED"

    def __init__(self, status: int, details: str = "") -> None:
        super().__init__(details or f"HTTP status {status}")
        self.status = status
