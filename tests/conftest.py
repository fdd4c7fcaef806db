"""Shared fixtures for campaign_load tests"""
import asyncio
import contextlib
import json

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from campaign_load.errors import NetworkError
from campaign_load.http import Response, encode_body
from campaign_load.metrics import MetricKind, MetricsAggregator
from campaign_load.scenario import BUILTIN_METRICS, Scenario


class FakeHttpClient:
    """
    In-process stand-in for AiohttpClient.

    ``responder(url, payload)`` returns a Response, a (status, body) tuple or
    raises NetworkError. Every call is kept in ``calls``.
    """

    def __init__(self, responder=None, delay: float = 0.0):
        self.responder = responder or (lambda url, payload: (201, {"ok": True}))
        self.delay = delay
        self.calls = []

    async def post(self, url, body=None, headers=None):
        payload = json.loads(encode_body(body) or b"null")
        self.calls.append((url, payload, dict(headers or {})))
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.responder(url, payload)
        if isinstance(result, Response):
            return result
        status, content = result
        if not isinstance(content, (bytes, str)):
            content = json.dumps(content)
        if isinstance(content, str):
            content = content.encode()
        return Response(status=status, body=content, duration_ms=1.5)


def created_echo(url, payload):
    """Mimics the attribution API: 201 with the generated id."""
    if url.endswith("/api/clicks"):
        return 201, {"click_id": "c-1", "message": "Click event created", "status": "success"}
    return 201, {"conversion_id": payload.get("conversion_id", "v-1"), "message": "ok", "status": "success"}


def server_error(url, payload):
    return 500, "internal error"


def refused(url, payload):
    raise NetworkError(url, "ConnectionError: ClientConnectorError", 0.7)


@pytest.fixture
def aggregator():
    agg = MetricsAggregator()
    for name, kind in BUILTIN_METRICS.items():
        agg.declare(name, kind)
    return agg


@pytest.fixture
def ok_client():
    return FakeHttpClient(created_echo)


@pytest.fixture
def failing_client():
    return FakeHttpClient(server_error)


@pytest.fixture
def refused_client():
    return FakeHttpClient(refused)


@pytest.fixture
def noop_scenario():
    async def noop(ctx):
        return None
    return Scenario(name="noop", fn=noop)


@pytest.fixture
def posting_scenario():
    """Posts once, checks for 201 and records into its own 'errors' rate."""
    async def post_once(ctx):
        await ctx.post("/api/clicks", {"campaign_id": "x"})
        ok = ctx.check("status is 201", lambda r: r.status == 201)
        ctx.record("errors", not ok)
    return Scenario(name="post_once", fn=post_once, metrics={"errors": MetricKind.RATE})


@contextlib.asynccontextmanager
async def running_api(status=201, delay=0.0):
    """Real aiohttp server exposing the click and conversion endpoints."""
    async def clicks(request):
        payload = await request.json()
        if delay:
            await asyncio.sleep(delay)
        return web.json_response(
            {"click_id": "c-" + payload["user_id"][:8], "message": "Click event created", "status": "success"},
            status=status,
        )

    async def conversions(request):
        payload = await request.json()
        return web.json_response(
            {"conversion_id": payload["conversion_id"], "message": "Conversion created", "status": "success"},
            status=status,
        )

    app = web.Application()
    app.router.add_post("/api/clicks", clicks)
    app.router.add_post("/api/conversions", conversions)
    server = TestServer(app)
    await server.start_server()
    try:
        yield str(server.make_url("")).rstrip("/")
    finally:
        await server.close()
