"""Tests for the embedded HTTP server."""

import re
from collections.abc import AsyncIterator
from unittest.mock import Mock

import aiohttp
import pytest
from aiohttp.test_utils import TestClient, TestServer

from browser_test_runner.browsers import Browsers
from browser_test_runner.coverage import Coverage
from browser_test_runner.job import Job
from browser_test_runner.mappings import CustomMapping
from browser_test_runner.protocol import Protocol
from browser_test_runner.server import PAGE_URL_HEADER, create_app, serve
from browser_test_runner.testing import payloads

URL = "http://localhost:8080/test/unit/unitTests.qunit.html"
HEADERS = {PAGE_URL_HEADER: URL}


@pytest.fixture
def browsers_mock() -> Mock:
    """Create mock supervisor taking no screenshot."""
    browsers = Mock(spec=Browsers)
    browsers.screenshot.return_value = None
    return browsers


@pytest.fixture
def protocol(job: Job, browsers_mock: Mock) -> Protocol:
    """Create protocol with mock collaborators."""
    return Protocol(job=job, browsers=browsers_mock, coverage=Mock(spec=Coverage))


@pytest.fixture
async def client(job: Job, protocol: Protocol) -> AsyncIterator[TestClient]:
    """Create started test client of the application."""
    async with TestClient(TestServer(create_app(job, protocol))) as client:
        yield client


class TestEvents:
    """Tests for the event endpoints."""

    async def test_page_lifecycle(
        self, client: TestClient, job: Job, browsers_mock: Mock
    ) -> None:
        """Events are routed to the page named by the header."""
        for endpoint, payload in [
            ("begin", payloads.begin(tests={"module": ["1"]})),
            ("testStart", payloads.started(test_id="1")),
            ("log", payloads.log(test_id="1")),
            ("testDone", payloads.finished(test_id="1")),
            ("done", payloads.done()),
        ]:
            response = await client.post(
                f"/_/QUnit/{endpoint}", json=payload, headers=HEADERS
            )
            assert response.status == 200, endpoint

        page = job.pages[URL]
        assert page.completed
        assert page.passed == 1
        browsers_mock.stop.assert_awaited_once_with(URL)

    async def test_missing_header(self, client: TestClient, job: Job) -> None:
        """Events without the page header are protocol errors."""
        response = await client.post(
            "/_/QUnit/begin", json=payloads.begin(tests={"module": ["1"]})
        )
        body = await response.json()

        assert response.status == 500
        assert body["code"] == -9
        assert body["message"] == "PROTOCOL_ERROR"
        assert PAGE_URL_HEADER in body["details"]
        assert job.pages == {}

    async def test_invalid_json(self, client: TestClient) -> None:
        """Unparsable bodies are protocol errors."""
        response = await client.post(
            "/_/QUnit/begin", data="{not json", headers=HEADERS
        )
        body = await response.json()

        assert response.status == 500
        assert body["code"] == -9

    async def test_unknown_page(self, client: TestClient, job: Job) -> None:
        """Events for a page that never began fail the run."""
        response = await client.post(
            "/_/QUnit/testDone", json=payloads.finished(), headers=HEADERS
        )
        body = await response.json()

        assert response.status == 500
        assert "No test page found" in body["details"]
        assert job.failed is True

    async def test_custom_prefix(self, job: Job, protocol: Protocol) -> None:
        """Endpoints follow the configured prefix."""
        job.config = job.config.model_copy(update={"endpoint_prefix": "/_/runner/"})

        async with TestClient(TestServer(create_app(job, protocol))) as client:
            response = await client.post(
                "/_/runner/begin",
                json=payloads.begin(tests={"module": ["1"]}),
                headers=HEADERS,
            )

        assert response.status == 200
        assert URL in job.pages


async def test_progress(client: TestClient, job: Job) -> None:
    """Progress reports the run status and the pages."""
    job.status = "Executing pages"

    await client.post(
        "/_/QUnit/begin",
        json=payloads.begin(tests={"module": ["1", "2"]}),
        headers=HEADERS,
    )
    response = await client.get("/_/QUnit/progress")
    body = await response.json()

    assert response.status == 200
    assert body["status"] == "Executing pages"
    assert body["failed"] is False
    assert body["pages"][URL]["count"] == 2


class TestMappings:
    """Tests for the request interception."""

    async def test_unmatched_request(self, client: TestClient) -> None:
        """Requests no rule answers are not found."""
        response = await client.get("/app/Component.js")

        assert response.status == 404

    async def test_first_answering_rule_wins(
        self, job: Job, protocol: Protocol
    ) -> None:
        """Rules are tried in order until one answers."""
        calls: list[str] = []

        async def passing(path: str) -> int | None:
            calls.append(f"passing {path}")
            return None

        async def answering(path: str) -> int | None:
            calls.append(f"answering {path}")
            return 410

        mappings = [
            CustomMapping(pattern=re.compile(r"(.*\.js)$"), handler=passing),
            CustomMapping(pattern=re.compile(r"(.*\.css)$"), handler=answering),
            CustomMapping(pattern=re.compile(r"(.*)$"), handler=answering),
        ]

        app = create_app(job, protocol, mappings)
        async with TestClient(TestServer(app)) as client:
            response = await client.get("/app/Component.js")

        assert response.status == 410
        assert calls == ["passing /app/Component.js", "answering /app/Component.js"]


async def test_serve_binds_loopback(job: Job, protocol: Protocol) -> None:
    """The bound port is recorded and reachable through the base host."""
    app = create_app(job, protocol)

    async with serve(app, job), aiohttp.ClientSession() as session:
        assert job.port > 0
        async with session.get(f"{job.base_host}/_/QUnit/progress") as response:
            body = await response.json()

    assert body["status"] == job.status
