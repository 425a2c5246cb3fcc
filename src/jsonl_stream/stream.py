"""Resumable JSONL stream over HTTP."""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import aclosing
from itertools import chain
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Union

import httpx

from .backoff import Backoff
from .decoder import decode_record, is_blank
from .decompress import StreamDecoder, looks_gzipped
from .exceptions import DecompressionError, FetchError, RecordDecodeError, StreamError
from .fetcher import RangeFetcher
from .framer import FramedLine, LineFramer
from .models import FileLocation, Record, StreamConfig, StreamState
from .tracker import LocationTracker

logger = logging.getLogger(__name__)


class JsonlStream:
    """Async iterator of :class:`Record` with scoped resource management.

    Pulling a record drives the pipeline one step: fetch bytes (retrying
    transient failures), inflate gzip, frame lines, decode JSON. Any fatal
    failure ends the stream with :class:`StreamError`, whose ``location``
    is a safe point to resume from with a new stream.

    A stream is single-use. Leaving the ``async with`` block (or calling
    ``aclose()``) releases the HTTP connection even mid-body.

    Example:
        >>> config = StreamConfig("https://example.com/events.jsonl.gz")
        >>> async with stream_jsonl(config) as stream:
        ...     async for record in stream:
        ...         await process(record.value)
        ...         save(record.location.to_json())
    """

    def __init__(
        self,
        config: StreamConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the stream; nothing is fetched until iteration starts.

        Args:
            config: What to fetch and how to retry
            client: HTTP client to use. When omitted, the stream creates one
                and closes it when the stream ends.
            sleep: Coroutine used to wait between retries
            clock: Monotonic clock measuring retry episodes
        """
        self._config = config
        self._client = client
        self._sleep = sleep
        self._clock = clock

        self._state = StreamState.IDLE
        self._location = config.start
        self._yielded_count = 0
        self._started = False
        self._closed = False
        self._iterator: AsyncGenerator[Record, None] | None = None

    async def __aenter__(self) -> "JsonlStream":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit async context, ensuring cleanup."""
        await self.aclose()

    def __aiter__(self) -> AsyncIterator[Record]:
        if self._started or self._closed:
            raise RuntimeError(
                "A JsonlStream can only be iterated once; "
                "start a new stream from .location to resume"
            )
        self._started = True
        self._iterator = self._iterate()
        return self._iterator

    async def aclose(self) -> None:
        """Stop the stream and release its connection."""
        self._closed = True
        if self._iterator is not None:
            await self._iterator.aclose()
            self._iterator = None

    @property
    def config(self) -> StreamConfig:
        return self._config

    @property
    def state(self) -> StreamState:
        """Current pipeline state."""
        return self._state

    @property
    def location(self) -> FileLocation:
        """Last safe restart point (the latest fully consumed line)."""
        return self._location

    @property
    def yielded_count(self) -> int:
        """Number of records yielded so far."""
        return self._yielded_count

    @property
    def closed(self) -> bool:
        """Whether the stream has been closed."""
        return self._closed

    def __repr__(self) -> str:
        return (
            f"JsonlStream({self._config.url!r}, state={self._state.value}, "
            f"location={self._location.to_json()})"
        )

    def _set_state(self, state: StreamState) -> None:
        self._state = state

    async def _iterate(self) -> AsyncGenerator[Record, None]:
        client = self._client
        owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                timeout=self._config.request_timeout, follow_redirects=True
            )
        try:
            async with aclosing(self._records(client)) as records:
                async for record in records:
                    self._yielded_count += 1
                    yield record
            self._state = StreamState.DONE
            logger.info(
                "Finished %s at %s (%d records)",
                self._config.url,
                self._location.to_json(),
                self._yielded_count,
            )
        except Exception:
            self._state = StreamState.FAILED
            raise
        finally:
            self._closed = True
            if self._state is not StreamState.FAILED:
                self._state = StreamState.DONE
            if owns_client:
                await client.aclose()

    async def _records(self, client: httpx.AsyncClient) -> AsyncGenerator[Record, None]:
        config = self._config
        start = config.start
        fetcher = RangeFetcher(
            client,
            config.url,
            Backoff.from_config(config),
            chunk_size=config.chunk_size,
            sleep=self._sleep,
            clock=self._clock,
            on_state=self._set_state,
        )

        try:
            compression = config.compression
            tracker = LocationTracker()
            if start.byte_offset > 0:
                support = await fetcher.check_ranges()
                if compression == "auto" and looks_gzipped(
                    config.url, support.content_type, support.content_encoding
                ):
                    compression = "gzip"
                if compression == "gzip":
                    logger.info(
                        "Resuming compressed %s from the start, skipping to line %d",
                        config.url,
                        start.line,
                    )
                elif support.accepts_ranges:
                    if compression == "auto":
                        logger.debug(
                            "No gzip headers or suffix on %s; resuming uncompressed at byte %d",
                            config.url,
                            start.byte_offset,
                        )
                    compression = "none"
                    tracker = LocationTracker(start)
                    fetcher.seek(start.byte_offset)
                else:
                    logger.warning(
                        "%s does not accept byte ranges; re-fetching from the start "
                        "and skipping to line %d",
                        config.url,
                        start.line,
                    )

            decoder = StreamDecoder(compression)
            framer = LineFramer(tracker)
            fetcher.byte_resumable = decoder.is_gzip is not True
            expected = fetcher.position

            async with aclosing(fetcher.chunks()) as chunks:
                async for offset, chunk in chunks:
                    if offset != expected:
                        # A compressed fetch was retried from byte 0
                        logger.info(
                            "Replaying %s from the start up to line %d",
                            config.url,
                            self._location.line,
                        )
                        decoder = StreamDecoder("gzip")
                        framer = LineFramer(LocationTracker())
                    expected = offset + len(chunk)

                    self._set_state(StreamState.FRAMING)
                    data = decoder.feed(chunk)
                    if decoder.is_gzip:
                        fetcher.byte_resumable = False
                    for line in framer.feed(data):
                        record = self._consume(line)
                        if record is not None:
                            yield record
                    self._set_state(StreamState.FETCHING)

            self._set_state(StreamState.FRAMING)
            tail = decoder.finish()
            for line in chain(framer.feed(tail), framer.finish()):
                record = self._consume(line)
                if record is not None:
                    yield record
        except FetchError as exc:
            raise StreamError(f"Fetching {config.url} failed", self._location, exc) from exc
        except DecompressionError as exc:
            raise StreamError(
                f"Decompressing {config.url} failed", self._location, exc
            ) from exc

    def _consume(self, line: FramedLine) -> Record | None:
        """Turn a framed line into a record, or None if it yields nothing."""
        if line.end.line <= self._location.line:
            # Replaying lines consumed before a restart
            if line.end.line == self._location.line and line.end != self._location:
                logger.warning(
                    "Line %d of %s now ends at byte %d instead of %d; "
                    "the resource may have changed",
                    line.end.line,
                    self._config.url,
                    line.end.byte_offset,
                    self._location.byte_offset,
                )
            return None

        if is_blank(line.data):
            self._location = line.end
            return None

        try:
            value = decode_record(line.data)
        except RecordDecodeError as exc:
            if self._config.on_decode_error == "skip":
                logger.warning("Skipping line %d of %s: %s", line.end.line, self._config.url, exc)
                self._location = line.end
                return None
            raise StreamError(
                f"Line {line.end.line} of {self._config.url} is not valid JSON",
                line.start,
                exc,
            ) from exc

        self._location = line.end
        return Record(value=value, location=line.end)


def stream_jsonl(
    config: Union[StreamConfig, str],
    *,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> JsonlStream:
    """Stream the JSONL resource described by ``config``.

    Args:
        config: Stream settings, or just a URL to use the defaults
        client: HTTP client to reuse (the caller keeps ownership)
        sleep: Coroutine used to wait between retries
        clock: Monotonic clock measuring retry episodes

    Returns:
        A single-use :class:`JsonlStream`

    Example:
        >>> start = FileLocation.from_json(saved)
        >>> async with stream_jsonl(StreamConfig(url, starting_location=start)) as stream:
        ...     async for record in stream:
        ...         handle(record.value)
    """
    if isinstance(config, str):
        config = StreamConfig(url=config)
    return JsonlStream(config, client=client, sleep=sleep, clock=clock)
