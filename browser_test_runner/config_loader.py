"""Load the run configuration from a YAML (or JSON) file."""

import asyncio
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from browser_test_runner.models.config import JobConfig


async def load_config_file(path: Path) -> dict[str, Any]:
    """Read a configuration file.

    Relative paths of the file are resolved against its directory unless it
    sets ``cwd``.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty or is not a YAML mapping

    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    content = await asyncio.to_thread(path.read_text)
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise ValueError(f"Empty config file: {path}")
    if not isinstance(data, dict):
        raise ValueError(f"Invalid config file {path}: expected a mapping")

    data.setdefault("cwd", str(path.parent.resolve()))
    return data


async def load_job_config(
    path: Path | None = None, overrides: Mapping[str, Any] | None = None
) -> JobConfig:
    """Build the run configuration from an optional file and overrides.

    Overrides set to None are ignored.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file or the resulting configuration is invalid

    """
    data = await load_config_file(path) if path is not None else {}
    if overrides:
        data.update(
            {key: value for key, value in overrides.items() if value is not None}
        )
    try:
        return JobConfig.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e
