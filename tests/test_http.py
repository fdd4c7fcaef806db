"""Tests for the aiohttp-backed HTTP client"""
import socket

import pytest

from campaign_load.errors import NetworkError, ResponseParseError
from campaign_load.http import AiohttpClient, Response, encode_body
from tests.conftest import running_api


def unused_port():
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def test_encode_body():
    assert encode_body(None) == b""
    assert encode_body(b"raw") == b"raw"
    assert encode_body("text") == b"text"
    assert encode_body({"a": 1}) == b'{"a": 1}'


def test_response_json_and_ok():
    assert Response(status=201, body=b'{"click_id": "x"}').json() == {"click_id": "x"}
    assert Response(status=201).ok
    assert Response(status=302).ok
    assert not Response(status=500).ok
    assert not Response(status=0, error="Timeout").ok


def test_response_json_parse_error():
    with pytest.raises(ResponseParseError):
        Response(status=201, body=b"<html>").json()
    with pytest.raises(ValueError):
        Response(status=201, body=b"").json()


@pytest.mark.asyncio
async def test_post_against_real_server():
    async with running_api() as base_url:
        async with AiohttpClient(timeout=5) as client:
            response = await client.post(
                base_url + "/api/clicks",
                {"user_id": "12345678-aaaa", "campaign_id": "c"},
            )

    assert response.status == 201
    assert response.json()["click_id"] == "c-12345678"
    assert response.duration_ms > 0


@pytest.mark.asyncio
async def test_connection_refused_raises_network_error():
    url = f"http://127.0.0.1:{unused_port()}/api/clicks"

    async with AiohttpClient(timeout=2) as client:
        with pytest.raises(NetworkError) as info:
            await client.post(url, {})

    assert info.value.url == url
    assert "Connection" in info.value.reason


@pytest.mark.asyncio
async def test_timeout_raises_network_error():
    async with running_api(delay=1.0) as base_url:
        async with AiohttpClient(timeout=0.1) as client:
            with pytest.raises(NetworkError) as info:
                await client.post(base_url + "/api/clicks", {"user_id": "u", "campaign_id": "c"})

    assert info.value.reason == "Timeout"
    assert info.value.duration_ms >= 100 * 0.5


@pytest.mark.asyncio
async def test_post_outside_context_manager_is_an_error():
    with pytest.raises(RuntimeError):
        await AiohttpClient().post("http://127.0.0.1:1/", {})
