"""Resolution of npm packages needed by the driver and the coverage tool."""

import asyncio
import logging
from collections.abc import Iterable, Mapping
from pathlib import Path

from browser_test_runner.errors import NpmFailed
from browser_test_runner.job import Job
from browser_test_runner.process import run_command

log = logging.getLogger(__name__)


async def npm(*args: str) -> str:
    """Run an npm command and return its trimmed output."""
    log.debug("npm %s", " ".join(args))
    try:
        result = await run_command("npm", *args)
    except OSError as error:
        raise NpmFailed(f"Unable to run npm: {error}") from error
    if result.returncode != 0:
        raise NpmFailed(result.stderr.strip())
    return result.stdout.strip()


async def resolve_packages(job: Job, names: Iterable[str]) -> Mapping[str, Path]:
    """Locate packages, installing missing ones globally.

    A package found under the local npm root wins over the global one.
    """
    names = list(names)
    if not names:
        return {}
    log.info("Getting NPM roots")
    local_root, global_root = await asyncio.gather(
        npm("root"), npm("root", "--global")
    )
    resolved: dict[str, Path] = {}
    for name in names:
        local_module = Path(local_root) / name
        if local_module.is_dir():
            resolved[name] = local_module
            continue
        global_module = Path(global_root) / name
        if not global_module.is_dir():
            job.status = f"Installing {name}..."
            log.info("Installing %s globally", name)
            await npm("install", name, "--global")
        resolved[name] = global_module
    return resolved


async def resolve_package(job: Job, name: str) -> Path:
    """Locate a single package."""
    return (await resolve_packages(job, [name]))[name]
