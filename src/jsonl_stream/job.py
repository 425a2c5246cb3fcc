"""Checkpointed stream consumption for jsonl-stream."""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator, AsyncIterator, Awaitable, Callable, Union

import httpx

from .exceptions import StaleCheckpointError
from .models import FileLocation, JobProgress, Record, StreamConfig
from .progress import delete_job_progress, read_progress, update_job_progress
from .stream import JsonlStream

logger = logging.getLogger(__name__)


class ResumableJob:
    """Resumable consumption of one URL with persistent checkpoints.

    If processing is interrupted (crash, ``StreamError``), the next run with
    the same job id resumes from the last checkpoint rather than starting over.
    Records between the checkpoint and the interruption are delivered again.

    Example:
        >>> config = StreamConfig("https://example.com/events.jsonl")
        >>> async with ResumableJob(config, "my_job", "events.progress") as job:
        ...     async for record in job:
        ...         await process(record.value)
        ...         job.checkpoint()  # Save progress periodically
    """

    def __init__(
        self,
        config: Union[StreamConfig, str],
        job_id: str,
        progress_path: Union[str, Path],
        *,
        client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a job.

        Args:
            config: Stream settings (its starting_location is replaced by the
                saved checkpoint), or just a URL
            job_id: Unique identifier for this processing job
            progress_path: JSON file holding the checkpoints of all jobs
            client: HTTP client handed to the underlying stream
            sleep: Coroutine used to wait between retries
            clock: Monotonic clock measuring retry episodes
        """
        if isinstance(config, str):
            config = StreamConfig(url=config)
        self._config = config
        self._job_id = job_id
        self._progress_path = Path(progress_path)
        self._client = client
        self._sleep = sleep
        self._clock = clock

        self._job: JobProgress | None = None
        self._location = FileLocation()
        self._stream: JsonlStream | None = None
        self._iterator: AsyncGenerator[Record, None] | None = None
        self._exhausted = False
        self._entered = False

    async def __aenter__(self) -> "ResumableJob":
        """Enter context manager: load or create job progress.

        Raises:
            StaleCheckpointError: If the saved job streams a different URL
            InvalidCheckpointError: If the progress file or a job in it is
                malformed; the file is not modified
        """
        self._entered = True

        jobs = read_progress(self._progress_path)
        if jobs and self._job_id in jobs:
            self._job = jobs[self._job_id]
            if self._job.url != self._config.url:
                raise StaleCheckpointError(
                    f"Job '{self._job_id}' was checkpointed for {self._job.url}, "
                    f"not {self._config.url}. Use reset() to restart from the beginning."
                )
            logger.info(
                "Resuming job %s from %s", self._job_id, self._job.location.to_json()
            )
        else:
            self._job = JobProgress.new(self._job_id, self._config.url)
            update_job_progress(self._progress_path, self._job)

        self._location = self._job.location
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Exit context manager: release the stream, mark complete if exhausted."""
        if self._iterator is not None:
            await self._iterator.aclose()
            self._iterator = None
        if self._stream is not None:
            await self._stream.aclose()

        if exc_type is None and self._exhausted and self._job:
            # Successfully processed all items
            now = datetime.now(timezone.utc).isoformat()
            self._job.location = self._location
            self._job.status = "completed"
            self._job.completed_at = now
            self._job.last_checkpoint_at = now
            update_job_progress(self._progress_path, self._job)

    def __aiter__(self) -> AsyncIterator[Record]:
        if not self._entered:
            raise RuntimeError(
                "ResumableJob must be used as an async context manager. "
                "Use 'async with ResumableJob(...) as job:'"
            )
        self._iterator = self._iterate()
        return self._iterator

    async def _iterate(self) -> AsyncGenerator[Record, None]:
        if self._job and self._job.status == "completed":
            # Already completed - nothing to yield
            self._exhausted = True
            return

        config = dataclasses.replace(self._config, starting_location=self._location)
        self._stream = JsonlStream(
            config, client=self._client, sleep=self._sleep, clock=self._clock
        )
        async for record in self._stream:
            self._location = record.location
            yield record

        # Trailing blank lines count as consumed too
        self._location = self._stream.location
        self._exhausted = True

    def checkpoint(self) -> None:
        """Save the location of the last yielded record to disk.

        Call this once a record is fully processed. On resume, processing
        continues with the record after it.
        """
        if not self._job:
            raise RuntimeError("Cannot checkpoint outside of context manager")

        self._job.location = self._location
        self._job.last_checkpoint_at = datetime.now(timezone.utc).isoformat()
        update_job_progress(self._progress_path, self._job)

    @property
    def location(self) -> FileLocation:
        """Location of the last yielded record (where a checkpoint resumes)."""
        return self._location

    @property
    def stream(self) -> JsonlStream | None:
        """The underlying stream, once iteration has started."""
        return self._stream

    @property
    def job_id(self) -> str:
        """The job identifier."""
        return self._job_id

    @property
    def completed(self) -> bool:
        return bool(self._job and self._job.status == "completed")

    def reset(self) -> None:
        """Reset this job to start from the beginning.

        Removes the existing checkpoint and resets the location.
        """
        delete_job_progress(self._progress_path, self._job_id)
        self._location = FileLocation()
        self._job = None
        self._exhausted = False
