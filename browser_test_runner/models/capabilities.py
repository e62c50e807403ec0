"""Capability descriptor printed by a browser driver when probed."""

from collections.abc import Sequence

from pydantic import ConfigDict, Field

from browser_test_runner.models.base import Model


class BrowserCapabilities(Model):
    """What a driver can do, as reported by ``<driver> capabilities``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    modules: Sequence[str] = Field(
        default=(), description="npm modules the driver needs resolved"
    )
    screenshot: str | None = Field(
        default=None,
        description="Screenshot file extension (e.g. '.png'), None if unsupported",
    )
    console: bool = Field(
        default=False, description="Driver forwards page console output"
    )
    scripts: bool = Field(default=False, description="Driver can inject scripts")
    parallel: bool = Field(
        default=True, description="Several driver instances can run at once"
    )
