"""HTTP interception rules applied to the requests of the pages under test."""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import aiohttp
from aiohttp import web
from multidict import CIMultiDict

log = logging.getLogger(__name__)

GLOBAL_CONTEXT_SEARCH = 'var global=new Function("return this")();'
GLOBAL_CONTEXT_REPLACE = "var global=window.top;"
GLOBAL_CONTEXT_DELTA = len(GLOBAL_CONTEXT_SEARCH) - len(GLOBAL_CONTEXT_REPLACE)

# Not forwarded by the reverse proxy, aiohttp recomputes them
HOP_BY_HOP_HEADERS = frozenset(
    [
        "connection",
        "content-encoding",
        "content-length",
        "host",
        "keep-alive",
        "transfer-encoding",
    ]
)


class FileSystem(Protocol):
    """Access to the files served by a FileMapping."""

    async def size(self, path: Path) -> int:
        """Size of the content served for path."""

    async def read(self, path: Path) -> bytes:
        """Content served for path."""


class LocalFileSystem:
    """Serve files as they are on disk."""

    async def size(self, path: Path) -> int:
        stat = await asyncio.to_thread(path.stat)
        return stat.st_size

    async def read(self, path: Path) -> bytes:
        return await asyncio.to_thread(path.read_bytes)


class GlobalContextFileSystem(LocalFileSystem):
    """Serve instrumented sources so that they run inside a nested frame.

    The global context detection of the instrumented code is rewritten to use
    the top window, where the coverage is collected.
    """

    async def size(self, path: Path) -> int:
        size = await super().size(path)
        if GLOBAL_CONTEXT_SEARCH.encode() in await super().read(path):
            size -= GLOBAL_CONTEXT_DELTA
        return size

    async def read(self, path: Path) -> bytes:
        content = await super().read(path)
        return content.replace(
            GLOBAL_CONTEXT_SEARCH.encode(), GLOBAL_CONTEXT_REPLACE.encode(), 1
        )


@dataclass(frozen=True, kw_only=True)
class Mapping(ABC):
    """A rule matched against the path and query of a request."""

    pattern: re.Pattern[str]

    def match(self, request: web.Request) -> re.Match[str] | None:
        """Check whether the rule applies to the request."""
        return self.pattern.match(request.path_qs)

    @abstractmethod
    async def handle(
        self, request: web.Request, match: re.Match[str]
    ) -> web.StreamResponse | None:
        """Answer the request, or return None to let the next rule try."""


@dataclass(frozen=True, kw_only=True)
class FileMapping(Mapping):
    """Serve ``base_dir / <first group>`` from a file system."""

    base_dir: Path
    ignore_if_not_found: bool = False
    file_system: FileSystem = field(default_factory=LocalFileSystem)

    def resolve(self, match: re.Match[str]) -> Path:
        """File targeted by a match."""
        return self.base_dir / match.group(1).lstrip("/")

    async def handle(
        self, request: web.Request, match: re.Match[str]
    ) -> web.StreamResponse | None:
        path = self.resolve(match)
        if not path.resolve().is_relative_to(self.base_dir.resolve()):
            return web.Response(status=403)
        if not path.is_file():
            if self.ignore_if_not_found:
                return None
            return web.Response(status=404)
        content = await self.file_system.read(path)
        response = web.StreamResponse(status=200)
        response.content_type = (
            "application/javascript" if path.suffix == ".js" else "text/plain"
        )
        response.content_length = await self.file_system.size(path)
        await response.prepare(request)
        await response.write(content)
        await response.write_eof()
        return response


@dataclass(frozen=True, kw_only=True)
class CustomMapping(Mapping):
    """Delegate to a callback receiving the first group of the match.

    The callback returns an HTTP status to end the request with, or None to
    let the next rule serve it.
    """

    handler: Callable[[str], Awaitable[int | None]]

    async def handle(
        self, request: web.Request, match: re.Match[str]
    ) -> web.StreamResponse | None:
        status = await self.handler(match.group(1))
        if status is None:
            return None
        return web.Response(status=status)


@dataclass(frozen=True, kw_only=True)
class UrlMapping(Mapping):
    """Reverse proxy the request to ``origin``."""

    origin: str
    session: aiohttp.ClientSession = field(repr=False)

    async def handle(
        self, request: web.Request, match: re.Match[str]
    ) -> web.StreamResponse | None:
        headers = CIMultiDict(
            (name, value)
            for name, value in request.headers.items()
            if name.lower() not in HOP_BY_HOP_HEADERS
        )
        body = await request.read() if request.can_read_body else None
        url = f"{self.origin}{match.group(0)}"
        log.debug("Proxying %s %s", request.method, url)
        async with self.session.request(
            request.method, url, headers=headers, data=body, allow_redirects=False
        ) as upstream:
            content = await upstream.read()
            response_headers = CIMultiDict(
                (name, value)
                for name, value in upstream.headers.items()
                if name.lower() not in HOP_BY_HOP_HEADERS
            )
            return web.Response(
                status=upstream.status, headers=response_headers, body=content
            )
