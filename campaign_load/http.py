"""
HTTP capability handed to scenarios.

The core only depends on the ``HttpClient`` protocol. ``AiohttpClient`` is the
real implementation: one pooled ``aiohttp.ClientSession`` shared by every
virtual user, with a bounded per-request timeout so a stalled request cannot
keep a virtual user from noticing a stop signal forever.
"""

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Protocol, Union

import aiohttp

from .errors import NetworkError, ResponseParseError

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "User-Agent": "campaign-load/1.0",
}

Body = Union[str, bytes, Mapping[str, Any], None]


@dataclass(frozen=True)
class Response:
    """Outcome of one request. ``status`` is 0 when no response arrived."""
    status: int
    body: bytes = b""
    duration_ms: float = 0.0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 400

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON, raising ResponseParseError on any failure."""
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ResponseParseError(f"response body is not JSON: {e}") from e


class HttpClient(Protocol):
    async def post(self, url: str, body: Body = None, headers: Optional[Mapping[str, str]] = None) -> Response:
        ...


def encode_body(body: Body) -> bytes:
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


class AiohttpClient:
    """
    Pooled aiohttp client. Use as an async context manager:

        async with AiohttpClient(timeout=60, limit=1000) as client:
            response = await client.post(url, {"a": 1})

    Transport failures raise NetworkError carrying the elapsed time.
    """

    def __init__(
        self,
        timeout: float = 60.0,
        connect_timeout: float = 10.0,
        limit: int = 1000,
        headers: Optional[Dict[str, str]] = None,
        verify_ssl: bool = True,
    ):
        self.timeout = aiohttp.ClientTimeout(total=timeout, connect=min(connect_timeout, timeout))
        self.limit = limit
        self.headers = dict(DEFAULT_HEADERS if headers is None else headers)
        self.verify_ssl = verify_ssl
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "AiohttpClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is not None:
            return
        connector = aiohttp.TCPConnector(
            limit=self.limit,
            limit_per_host=self.limit,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        self._session = aiohttp.ClientSession(timeout=self.timeout, connector=connector)

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def post(self, url: str, body: Body = None, headers: Optional[Mapping[str, str]] = None) -> Response:
        if self._session is None:
            raise RuntimeError("AiohttpClient used outside of 'async with'")

        merged = dict(self.headers)
        if headers:
            merged.update(headers)

        start = time.perf_counter()
        try:
            async with self._session.post(
                url,
                data=encode_body(body),
                headers=merged,
                ssl=self.verify_ssl,
            ) as response:
                payload = await response.read()
                latency = (time.perf_counter() - start) * 1000
                return Response(status=response.status, body=payload, duration_ms=latency)
        except asyncio.TimeoutError as e:
            raise NetworkError(url, "Timeout", (time.perf_counter() - start) * 1000) from e
        except aiohttp.ClientConnectorError as e:
            raise NetworkError(
                url, f"ConnectionError: {type(e).__name__}", (time.perf_counter() - start) * 1000,
            ) from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, type(e).__name__, (time.perf_counter() - start) * 1000) from e
