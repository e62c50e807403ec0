"""Messages exchanged with a driver process, one JSON object per line.

Parent to child commands go through the driver's stdin, acknowledgements come
back on its stdout mixed with regular output.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Annotated, Literal

from pydantic import Field, ValidationError

from browser_test_runner.models.base import Model

log = logging.getLogger(__name__)


class StopCommand(Model):
    """Ask the driver to close the browser and exit."""

    command: Literal["stop"] = "stop"


class ScreenshotCommand(Model):
    """Ask the driver to write a screenshot of the page."""

    command: Literal["screenshot"] = "screenshot"
    id: int
    filename: str


DriverCommand = Annotated[
    StopCommand | ScreenshotCommand, Field(discriminator="command")
]


class ScreenshotAck(Model):
    """Driver reply once a screenshot request has been handled."""

    command: Literal["screenshot"]
    id: int
    error: str | None = None


class BrowserConfig(Model):
    """Per-attempt configuration file handed to the driver."""

    modules: Mapping[str, str]
    url: str
    retry: int
    scripts: Sequence[str]
    args: Sequence[str]


def parse_driver_message(line: str) -> ScreenshotAck | None:
    """Return the acknowledgement carried by an output line, if any."""
    if not line.startswith("{"):
        return None
    try:
        return ScreenshotAck.model_validate_json(line)
    except ValidationError:
        log.debug("Output line is not a driver message: %s", line)
        return None
