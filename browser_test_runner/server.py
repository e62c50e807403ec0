"""Embedded HTTP server receiving the protocol events and serving mappings."""

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from aiohttp import web

from browser_test_runner.errors import ProtocolError, RunnerError
from browser_test_runner.job import Job
from browser_test_runner.mappings import Mapping
from browser_test_runner.protocol import Protocol

log = logging.getLogger(__name__)

PAGE_URL_HEADER = "x-page-url"
# A single address, "localhost" may bind IPv4 and IPv6 on distinct ports
LOOPBACK = "127.0.0.1"

EventHandler = Callable[[str, Any], Awaitable[None]]


def _event_route(
    handler: EventHandler,
) -> Callable[[web.Request], Awaitable[web.Response]]:
    async def route(request: web.Request) -> web.Response:
        url = request.headers.get(PAGE_URL_HEADER)
        if not url:
            raise ProtocolError(f"Missing {PAGE_URL_HEADER} header")
        try:
            payload = await request.json()
        except json.JSONDecodeError as error:
            raise ProtocolError(f"Invalid JSON body: {error}") from error
        await handler(url, payload)
        return web.Response(status=200)

    return route


@web.middleware
async def error_middleware(
    request: web.Request,
    handler: Callable[[web.Request], Awaitable[web.StreamResponse]],
) -> web.StreamResponse:
    """Answer runner errors with their code and details."""
    try:
        return await handler(request)
    except RunnerError as error:
        log.error("%s %s failed: %s", request.method, request.path, error)
        return web.json_response(
            {"code": error.code, "message": error.name, "details": error.details},
            status=500,
        )


def create_app(
    job: Job, protocol: Protocol, mappings: Sequence[Mapping] = ()
) -> web.Application:
    """Build the application serving the pages of a run."""
    prefix = job.config.endpoint_prefix.rstrip("/")

    async def progress(request: web.Request) -> web.Response:
        return web.json_response(protocol.progress())

    async def mapped(request: web.Request) -> web.StreamResponse:
        for mapping in mappings:
            if (match := mapping.match(request)) is None:
                continue
            if (response := await mapping.handle(request, match)) is not None:
                return response
        log.debug("No mapping for %s %s", request.method, request.path_qs)
        return web.Response(status=404)

    app = web.Application(middlewares=[error_middleware])
    app.add_routes(
        [
            web.post(f"{prefix}/begin", _event_route(protocol.begin)),
            web.post(f"{prefix}/testStart", _event_route(protocol.test_start)),
            web.post(f"{prefix}/log", _event_route(protocol.log)),
            web.post(f"{prefix}/testDone", _event_route(protocol.test_done)),
            web.post(f"{prefix}/done", _event_route(protocol.done)),
            web.get(f"{prefix}/progress", progress),
            web.route("*", "/{tail:.*}", mapped),
        ]
    )
    return app


@asynccontextmanager
async def serve(app: web.Application, job: Job) -> AsyncIterator[None]:
    """Listen on the loopback interface, recording the bound port in the job."""
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, LOOPBACK, job.config.port)
    try:
        await site.start()
        job.port = runner.addresses[0][1]
        log.info("Server listening on %s", job.base_host)
        yield
    finally:
        await runner.cleanup()
