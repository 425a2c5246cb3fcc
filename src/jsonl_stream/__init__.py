"""jsonl-stream: resumable streaming of remote JSONL over HTTP.

Records come with the exact location after their line, so an interrupted
stream can be restarted where it stopped. Transient network failures are
retried with exponential backoff; gzip resources are inflated on the fly.

Example:
    >>> from jsonl_stream import StreamConfig, stream_jsonl
    >>> async with stream_jsonl("https://example.com/events.jsonl") as stream:
    ...     async for record in stream:
    ...         await process(record.value)
    >>>
    >>> # Resume after a failure
    >>> try:
    ...     ...
    ... except StreamError as e:
    ...     saved = e.location.to_json()
    >>> config = StreamConfig(url, starting_location=FileLocation.from_json(saved))
    >>>
    >>> # Persistent checkpoints
    >>> async with ResumableJob(url, "my_job", "events.progress") as job:
    ...     async for record in job:
    ...         await process(record.value)
    ...         job.checkpoint()
"""

from .backoff import Backoff, BackoffState
from .exceptions import (
    DecompressionError,
    FetchError,
    InvalidCheckpointError,
    RecordDecodeError,
    StaleCheckpointError,
    StreamError,
)
from .job import ResumableJob
from .models import FileLocation, JobInfo, Record, StreamConfig, StreamState
from .stream import JsonlStream, stream_jsonl

__version__ = "0.1.0"
__all__ = [
    # Core
    "stream_jsonl",
    "JsonlStream",
    "StreamConfig",
    "StreamState",
    "FileLocation",
    "Record",
    "Backoff",
    "BackoffState",
    # Checkpointed jobs
    "ResumableJob",
    "JobInfo",
    # Exceptions
    "StreamError",
    "FetchError",
    "DecompressionError",
    "RecordDecodeError",
    "StaleCheckpointError",
    "InvalidCheckpointError",
]
