"""Tests for driver messages and capabilities."""

import pytest
from pydantic import ValidationError

from browser_test_runner.models.capabilities import BrowserCapabilities
from browser_test_runner.models.messages import (
    ScreenshotAck,
    ScreenshotCommand,
    StopCommand,
    parse_driver_message,
)


def test_commands_serialize_with_their_tag() -> None:
    """Commands carry their discriminator."""
    assert StopCommand().model_dump() == {"command": "stop"}
    assert ScreenshotCommand(id=3, filename="/r/done.png").model_dump() == {
        "command": "screenshot",
        "id": 3,
        "filename": "/r/done.png",
    }


def test_parses_screenshot_acknowledgement() -> None:
    """Acknowledgement lines are recognized."""
    message = parse_driver_message('{"command": "screenshot", "id": 4}')

    assert message == ScreenshotAck(command="screenshot", id=4)


@pytest.mark.parametrize(
    "line",
    [
        "Browser started",
        "",
        '{"command": "unknown", "id": 1}',
        '{"console": "log"}',
        "{not json",
    ],
)
def test_ignores_other_lines(line: str) -> None:
    """Regular output is not a message."""
    assert parse_driver_message(line) is None


def test_capabilities_defaults() -> None:
    """Missing capabilities get conservative defaults."""
    capabilities = BrowserCapabilities.model_validate({})

    assert capabilities.modules == ()
    assert capabilities.screenshot is None
    assert capabilities.console is False
    assert capabilities.scripts is False
    assert capabilities.parallel is True


def test_capabilities_reject_unknown_keys() -> None:
    """Unknown keys reveal a driver speaking another protocol."""
    with pytest.raises(ValidationError):
        BrowserCapabilities.model_validate({"screenshots": ".png"})


def test_capabilities_reject_wrong_types() -> None:
    """Types are enforced."""
    with pytest.raises(ValidationError):
        BrowserCapabilities.model_validate({"modules": "puppeteer"})
