"""HTTP byte source with retries and Range resumption."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import AsyncIterator, Awaitable, Callable

import httpx

from .backoff import Backoff, BackoffState
from .exceptions import FetchError
from .models import StreamState

logger = logging.getLogger(__name__)

# Transport bytes must equal resource bytes for Range offsets to line up
IDENTITY_HEADERS = {"Accept-Encoding": "identity"}

RETRYABLE_STATUSES = frozenset({408, 425, 429})


def is_retryable_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in RETRYABLE_STATUSES


def is_retryable_error(exc: BaseException) -> bool:
    """Return True when ``exc`` is a transient failure worth retrying."""
    if isinstance(exc, httpx.HTTPStatusError):
        return is_retryable_status(exc.response.status_code)
    if isinstance(exc, (httpx.UnsupportedProtocol, httpx.LocalProtocolError)):
        return False
    return isinstance(exc, httpx.TransportError)


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait according to a Retry-After header, if it has one."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def parse_content_range_start(value: str | None) -> int | None:
    """First byte position of a ``bytes <start>-<end>/<total>`` header."""
    if not value:
        return None
    unit, _, byte_range = value.strip().partition(" ")
    if unit.lower() != "bytes":
        return None
    start, _, _ = byte_range.partition("-")
    try:
        return int(start)
    except ValueError:
        return None


@dataclass(frozen=True)
class RangeSupport:
    """Result of the HEAD request made before resuming.

    Attributes:
        accepts_ranges: Server advertises ``Accept-Ranges: bytes``
        content_type: Content-Type of the resource, if reported
        content_length: Size in bytes, if reported
        content_encoding: Content-Encoding of the stored bytes, if reported
    """

    accepts_ranges: bool
    content_type: str | None = None
    content_length: int | None = None
    content_encoding: str | None = None


class RangeFetcher:
    """Stream the bytes of one URL, retrying transient failures.

    A retry re-requests the resource from the last byte handed downstream
    with a ``Range`` header, or from byte 0 when ``byte_resumable`` is False
    (compressed resources). Servers that answer a ranged request with the
    whole body get the already-delivered prefix discarded locally.

    Transient failures (transport errors, 5xx, 408, 425, 429) wait on the
    backoff schedule; everything else, and running out of retry time,
    raises :class:`FetchError`.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        backoff: Backoff,
        *,
        start_offset: int = 0,
        byte_resumable: bool = True,
        chunk_size: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_state: Callable[[StreamState], None] | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._backoff = backoff
        self._position = start_offset
        self.byte_resumable = byte_resumable
        self._chunk_size = chunk_size
        self._sleep = sleep
        self._clock = clock
        self._on_state = on_state
        self._requests = 0

    @property
    def url(self) -> str:
        return self._url

    @property
    def position(self) -> int:
        """Transport offset right after the last byte handed downstream."""
        return self._position

    @property
    def requests(self) -> int:
        """Number of requests issued so far, HEAD requests included."""
        return self._requests

    def seek(self, offset: int) -> None:
        """Make the next request start at ``offset``."""
        if offset < 0:
            raise ValueError(f"Cannot seek to negative offset {offset}")
        self._position = offset

    async def check_ranges(self) -> RangeSupport:
        """Ask the server (HEAD) whether it serves byte ranges.

        An error status other than a transient one counts as "no range
        support" rather than a failure, since plenty of servers reject HEAD.

        Raises:
            FetchError: On invalid URLs, non-retryable transport errors,
                or when transient failures exhaust the retry budget
        """
        state: BackoffState | None = None
        while True:
            self._set_state(StreamState.FETCHING)
            self._requests += 1
            try:
                response = await self._client.head(self._url, headers=IDENTITY_HEADERS)
                if is_retryable_status(response.status_code):
                    response.raise_for_status()
            except httpx.InvalidURL as exc:
                raise FetchError(f"Invalid URL {self._url!r}: {exc}", self._url) from exc
            except httpx.HTTPError as exc:
                if state is None:
                    state = BackoffState(started_at=self._clock())
                delay = self._retry_delay(exc, state)
                await self._wait(delay, state, exc)
                continue

            if response.is_error:
                logger.warning(
                    "HEAD %s returned %d; assuming no range support",
                    self._url,
                    response.status_code,
                )
                return RangeSupport(accepts_ranges=False)

            accept_ranges = response.headers.get("Accept-Ranges", "")
            length = response.headers.get("Content-Length")
            support = RangeSupport(
                accepts_ranges="bytes" in accept_ranges.lower().replace(" ", "").split(","),
                content_type=response.headers.get("Content-Type"),
                content_length=int(length) if length and length.isdigit() else None,
                content_encoding=response.headers.get("Content-Encoding"),
            )
            logger.debug("Range support for %s: %s", self._url, support)
            return support

    async def chunks(self) -> AsyncIterator[tuple[int, bytes]]:
        """Yield ``(offset, chunk)`` pairs until the body is complete.

        ``offset`` is the transport offset of the chunk's first byte. It only
        goes back (to 0) when a non-byte-resumable fetch is retried.

        Raises:
            FetchError: On fatal failures or an exhausted retry budget
        """
        state: BackoffState | None = None
        while True:
            if not self.byte_resumable:
                self._position = 0
            offset = self._position
            headers = dict(IDENTITY_HEADERS)
            if offset:
                headers["Range"] = f"bytes={offset}-"

            self._set_state(StreamState.FETCHING)
            self._requests += 1
            logger.debug("GET %s from offset %d", self._url, offset)
            try:
                async with self._client.stream("GET", self._url, headers=headers) as response:
                    if offset and response.status_code == 416:
                        logger.info("Nothing left at offset %d of %s", offset, self._url)
                        return
                    response.raise_for_status()
                    skip = self._bytes_to_skip(response, offset)

                    async for chunk in response.aiter_raw(self._chunk_size):
                        if skip:
                            dropped = min(skip, len(chunk))
                            chunk = chunk[dropped:]
                            skip -= dropped
                        if not chunk:
                            continue
                        start = self._position
                        self._position += len(chunk)
                        state = None
                        yield start, chunk

                    if skip:
                        raise FetchError(
                            f"{self._url} is shorter than the {offset} bytes already read",
                            self._url,
                            status_code=response.status_code,
                        )
                return
            except httpx.InvalidURL as exc:
                raise FetchError(f"Invalid URL {self._url!r}: {exc}", self._url) from exc
            except httpx.HTTPError as exc:
                if state is None:
                    state = BackoffState(started_at=self._clock())
                delay = self._retry_delay(exc, state)
                await self._wait(delay, state, exc)

    def _bytes_to_skip(self, response: httpx.Response, offset: int) -> int:
        if not offset:
            return 0
        if response.status_code == 206:
            start = parse_content_range_start(response.headers.get("Content-Range"))
            if start != offset:
                raise FetchError(
                    f"{self._url} answered Range bytes={offset}- with "
                    f"Content-Range {response.headers.get('Content-Range')!r}",
                    self._url,
                    status_code=206,
                )
            return 0
        logger.warning(
            "%s ignored the Range header; discarding %d bytes already read",
            self._url,
            offset,
        )
        return offset

    def _retry_delay(self, exc: httpx.HTTPError, state: BackoffState) -> float:
        """Delay before the next attempt, or raise if retrying is pointless."""
        status_code = None
        retry_after = None
        if isinstance(exc, httpx.HTTPStatusError):
            status_code = exc.response.status_code
            retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))

        if not is_retryable_error(exc):
            raise FetchError(
                f"Request to {self._url} failed: {exc}",
                self._url,
                status_code=status_code,
                attempts=state.attempt + 1,
            ) from exc

        delay = self._backoff.next_delay(state.attempt)
        if retry_after is not None:
            delay = min(max(delay, retry_after), self._backoff.max_delay)

        if self._backoff.is_exhausted(state.started_at, self._clock() + delay):
            raise FetchError(
                f"Giving up on {self._url} after {state.attempt + 1} attempts: {exc}",
                self._url,
                status_code=status_code,
                exhausted=True,
                attempts=state.attempt + 1,
            ) from exc
        return delay

    async def _wait(self, delay: float, state: BackoffState, exc: BaseException) -> None:
        logger.warning(
            "Retrying %s in %.1fs (attempt %d): %s",
            self._url,
            delay,
            state.attempt + 1,
            exc,
        )
        self._set_state(StreamState.BACKOFF)
        await self._sleep(delay)
        state.attempt += 1

    def _set_state(self, state: StreamState) -> None:
        if self._on_state is not None:
            self._on_state(state)
