"""Shared test fixtures for all test modules."""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any, Optional

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer, unused_port

from kubevision.agent.collectors.prometheus import QueryResult, Row


def vector(*rows: tuple[dict, Any], ts: float = 1700000000.0) -> dict:
    """Build a successful Prometheus instant-vector response body."""
    return {
        "status": "success",
        "data": {
            "resultType": "vector",
            "result": [{"metric": labels, "value": [ts, value]} for labels, value in rows],
        },
    }


def result(name: str, *rows: tuple[dict, float]) -> QueryResult:
    """Build a QueryResult directly from (labels, value) pairs."""
    return QueryResult(name=name, rows=[Row(labels=labels, value=value) for labels, value in rows])


def pod(namespace: str, name: str) -> dict:
    return {"namespace": namespace, "pod": name}


class FakePrometheus:
    """In-process stand-in for the Prometheus query API."""

    def __init__(self):
        self.url = ""
        self.requests: list[web.Request] = []
        self.queries: list[str] = []
        self._responses: dict[str, dict] = {}
        self.delay = 0.0

    def respond(
        self,
        expression_contains: str,
        body: Any = None,
        status: int = 200,
        text: Optional[str] = None,
    ) -> None:
        """Register the response for queries containing a substring."""
        self._responses[expression_contains] = {"body": body, "status": status, "text": text}

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append(request)
        query = request.query.get("query", "")
        self.queries.append(query)
        if self.delay:
            await asyncio.sleep(self.delay)

        for needle, canned in self._responses.items():
            if needle in query:
                if canned["text"] is not None:
                    return web.Response(status=canned["status"], text=canned["text"])
                return web.json_response(canned["body"], status=canned["status"])
        return web.json_response(vector())


class FakeBackend:
    """In-process stand-in for the ingestion backend."""

    def __init__(self):
        self.url = ""
        self.status = 200
        self.bodies: list[Any] = []
        self.headers: list[dict] = []
        self.delay = 0.0

    @property
    def calls(self) -> int:
        return len(self.bodies)

    async def handle(self, request: web.Request) -> web.Response:
        self.headers.append(dict(request.headers))
        self.bodies.append(await request.json())
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status in (200, 201):
            return web.json_response({"accepted": len(self.bodies[-1])}, status=self.status)
        return web.Response(status=self.status, text="ingest unavailable")


async def _serve(app: web.Application) -> TestServer:
    server = TestServer(app)
    await server.start_server()
    return server


@pytest.fixture
async def prometheus() -> AsyncGenerator[FakePrometheus, None]:
    """A running fake Prometheus server."""
    fake = FakePrometheus()
    app = web.Application()
    app.router.add_get("/api/v1/query", fake.handle)
    server = await _serve(app)
    fake.url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
async def backend() -> AsyncGenerator[FakeBackend, None]:
    """A running fake ingestion backend."""
    fake = FakeBackend()
    app = web.Application()
    app.router.add_post("/ingest/metrics", fake.handle)
    server = await _serve(app)
    fake.url = str(server.make_url("/")).rstrip("/")
    yield fake
    await server.close()


@pytest.fixture
async def session() -> AsyncGenerator[aiohttp.ClientSession, None]:
    """Shared HTTP session, as the agent would inject it."""
    async with aiohttp.ClientSession() as client_session:
        yield client_session


@pytest.fixture
def dead_url() -> str:
    """Address where nothing is listening."""
    return f"http://127.0.0.1:{unused_port()}"
