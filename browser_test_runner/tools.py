"""File and URL helpers."""

import asyncio
import hashlib
import logging
import shutil
from pathlib import Path

import aiohttp

from browser_test_runner.errors import DownloadFailed

log = logging.getLogger(__name__)


def filename(url: str) -> str:
    """Derive a stable file name from a URL."""
    return hashlib.shake_256(url.encode()).hexdigest(8)


def strip_url_hash(url: str) -> str:
    """Remove the fragment that distinguishes concurrent instances of a page."""
    return url.split("#", 1)[0]


async def recreate_dir(path: Path) -> None:
    """Delete a directory with its content and create it again empty."""
    await asyncio.to_thread(shutil.rmtree, path, ignore_errors=True)
    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)


async def download(session: aiohttp.ClientSession, url: str, path: Path) -> None:
    """Download url into path.

    Raises:
        DownloadFailed: When the server does not answer 200, or with status 502
            when it cannot be reached

    """
    try:
        async with session.get(url) as response:
            if response.status != 200:
                raise DownloadFailed(response.status, f"Unable to download {url}")
            content = await response.read()
    except aiohttp.ClientError as error:
        raise DownloadFailed(502, f"Unable to download {url}: {error}") from error
    log.debug("Downloaded %s (%d bytes)", url, len(content))
    await asyncio.to_thread(path.parent.mkdir, parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_bytes, content)
