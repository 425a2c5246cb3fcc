"""Shared fixtures: an in-memory HTTP server behind httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest


class ChunkedBody(httpx.AsyncByteStream):
    """Response body delivered in fixed-size chunks, optionally cut short."""

    def __init__(self, data: bytes, chunk_size: int, fail_after: int | None = None) -> None:
        self._data = data
        self._chunk_size = chunk_size
        self._fail_after = fail_after
        self.closed = False

    async def __aiter__(self):
        sent = 0
        for i in range(0, len(self._data), self._chunk_size):
            chunk = self._data[i : i + self._chunk_size]
            if self._fail_after is not None and sent + len(chunk) > self._fail_after:
                head = chunk[: self._fail_after - sent]
                if head:
                    yield head
                raise httpx.ReadError("Connection reset by peer")
            sent += len(chunk)
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


class FakeServer:
    """Serves one resource with byte-range support and scripted faults.

    Faults are consumed one per GET request, in order.
    """

    def __init__(
        self,
        body: bytes = b"",
        *,
        accept_ranges: bool = True,
        honor_ranges: bool | None = None,
        chunk_size: int = 4,
        content_type: str = "application/x-ndjson",
        head_status: int = 200,
        content_encoding: str | None = None,
    ) -> None:
        self.body = body
        self.accept_ranges = accept_ranges
        self.honor_ranges = accept_ranges if honor_ranges is None else honor_ranges
        self.chunk_size = chunk_size
        self.content_type = content_type
        self.head_status = head_status
        self.content_encoding = content_encoding
        self.requests: list[httpx.Request] = []
        self.bodies: list[ChunkedBody] = []
        self._faults: list[tuple[str, object, dict]] = []

    def fail_with(self, status: int, headers: dict | None = None) -> "FakeServer":
        self._faults.append(("status", status, headers or {}))
        return self

    def reset_after(self, nbytes: int) -> "FakeServer":
        self._faults.append(("reset", nbytes, {}))
        return self

    def raise_error(self, exc: Exception) -> "FakeServer":
        self._faults.append(("raise", exc, {}))
        return self

    @property
    def gets(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET"]

    @property
    def heads(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "HEAD"]

    @property
    def ranges(self) -> list[str | None]:
        """Range header of every GET, None where absent."""
        return [r.headers.get("Range") for r in self.gets]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "HEAD":
            headers = {
                "Content-Length": str(len(self.body)),
                "Content-Type": self.content_type,
            }
            if self.accept_ranges:
                headers["Accept-Ranges"] = "bytes"
            if self.content_encoding:
                headers["Content-Encoding"] = self.content_encoding
            return httpx.Response(self.head_status, headers=headers)

        fail_after = None
        if self._faults:
            kind, arg, headers = self._faults.pop(0)
            if kind == "status":
                return httpx.Response(arg, headers=headers)
            if kind == "raise":
                raise arg
            fail_after = arg

        start = 0
        status = 200
        headers = {"Content-Type": self.content_type}
        range_header = request.headers.get("Range")
        if range_header and self.honor_ranges:
            start = int(range_header.removeprefix("bytes=").rstrip("-"))
            total = len(self.body)
            if start >= total:
                return httpx.Response(416, headers={"Content-Range": f"bytes */{total}"})
            status = 206
            headers["Content-Range"] = f"bytes {start}-{total - 1}/{total}"

        body = ChunkedBody(self.body[start:], self.chunk_size, fail_after)
        self.bodies.append(body)
        return httpx.Response(status, headers=headers, stream=body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeClock:
    """Monotonic clock that only moves when the code under test sleeps."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, delay: float) -> None:
        self.sleeps.append(delay)
        self.now += delay


def make_body(count: int) -> bytes:
    """JSONL body with ``count`` records."""
    return b"".join(
        json.dumps({"line": i, "data": f"content_{i}"}).encode() + b"\n"
        for i in range(count)
    )


# ─────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_server():
    """Factory for FakeServer instances."""
    return FakeServer


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_body() -> bytes:
    """JSONL body with 100 records."""
    return make_body(100)


@pytest.fixture
async def client_for():
    """Factory building an httpx client for a FakeServer, closed after the test."""
    clients: list[httpx.AsyncClient] = []

    def factory(server: FakeServer) -> httpx.AsyncClient:
        client = server.client()
        clients.append(client)
        return client

    yield factory

    for client in clients:
        await client.aclose()
