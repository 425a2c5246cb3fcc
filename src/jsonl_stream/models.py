"""Data models for jsonl-stream."""

from __future__ import annotations

import enum
import functools
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from .exceptions import InvalidCheckpointError

Compression = Literal["auto", "gzip", "none"]
DecodeErrorPolicy = Literal["raise", "skip"]


@functools.total_ordering
@dataclass(frozen=True, slots=True)
class FileLocation:
    """A restart point in a JSONL stream.

    Locations order by line first, so they compare the same way whether
    ``byte_offset`` counts plain or decompressed bytes.

    Attributes:
        byte_offset: Bytes consumed up to and including the last line terminator
        line: Number of fully consumed lines (empty lines included)
    """

    byte_offset: int = 0
    line: int = 0

    def __post_init__(self) -> None:
        if self.byte_offset < 0 or self.line < 0:
            raise ValueError(
                f"Location must be non-negative, got byte_offset={self.byte_offset}, "
                f"line={self.line}"
            )

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, FileLocation):
            return NotImplemented
        return (self.line, self.byte_offset) < (other.line, other.byte_offset)

    def to_dict(self) -> dict[str, int]:
        return {"byte_offset": self.byte_offset, "line": self.line}

    def to_json(self) -> str:
        """Serialize to the compact JSON form callers persist between runs."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Any) -> "FileLocation":
        """Rebuild a location from its stored form.

        Raises:
            InvalidCheckpointError: If keys are missing, not integers, or negative
        """
        if not isinstance(data, dict):
            raise InvalidCheckpointError(f"Location must be an object, got {data!r}")
        try:
            byte_offset = data["byte_offset"]
            line = data["line"]
        except KeyError as e:
            raise InvalidCheckpointError(f"Location is missing {e.args[0]!r}") from e

        for name, value in (("byte_offset", byte_offset), ("line", line)):
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidCheckpointError(
                    f"Location {name} must be a non-negative integer, got {value!r}"
                )
        return cls(line=line, byte_offset=byte_offset)

    @classmethod
    def from_json(cls, text: str) -> "FileLocation":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise InvalidCheckpointError(f"Location is not valid JSON: {e}") from e
        return cls.from_dict(data)


@dataclass(frozen=True, slots=True)
class Record:
    """A decoded JSONL value and the location right after its line.

    Attributes:
        value: Parsed JSON value
        location: Where to resume to skip this record and everything before it
    """

    value: Any
    location: FileLocation


class StreamState(enum.Enum):
    """Lifecycle of a single streaming call."""

    IDLE = "idle"
    FETCHING = "fetching"
    BACKOFF = "backoff"
    FRAMING = "framing"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class StreamConfig:
    """Settings for one streaming call, validated once at construction.

    Durations are in seconds.

    Attributes:
        url: HTTP(S) URL of the JSONL resource
        starting_location: Location to resume from (None = start of resource)
        initial_delay: First retry delay; doubles on each further attempt
        max_retry_time: Total time one retry episode may take before giving up
        max_delay: Upper bound for a single retry delay
        compression: "gzip", "none", or "auto" to sniff the gzip magic bytes
        on_decode_error: "raise" to fail on a malformed line, "skip" to log and go on
        request_timeout: Per-request transport timeout handed to httpx
        chunk_size: Read size hint for the response body (None = as received)
    """

    url: str
    starting_location: FileLocation | None = None
    initial_delay: float = 1.0
    max_retry_time: float = 3600.0
    max_delay: float = 30.0
    compression: Compression = "auto"
    on_decode_error: DecodeErrorPolicy = "raise"
    request_timeout: float | None = 30.0
    chunk_size: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.url, str) or not self.url.strip():
            raise ValueError("url must be a non-empty string")
        for name in ("initial_delay", "max_retry_time", "max_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if self.compression not in ("auto", "gzip", "none"):
            raise ValueError(f"Unknown compression mode: {self.compression!r}")
        if self.on_decode_error not in ("raise", "skip"):
            raise ValueError(f"Unknown on_decode_error policy: {self.on_decode_error!r}")
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.starting_location is not None and not isinstance(
            self.starting_location, FileLocation
        ):
            raise TypeError("starting_location must be a FileLocation")

    @property
    def start(self) -> FileLocation:
        """Effective starting location."""
        return self.starting_location or FileLocation()


@dataclass
class JobProgress:
    """Saved progress of a checkpointed streaming job.

    Attributes:
        job_id: Unique identifier for this job
        url: Resource the job streams
        location: Location of the last checkpointed record
        status: Current job status
        created_at: ISO timestamp when job was created
        last_checkpoint_at: ISO timestamp of last checkpoint
        completed_at: ISO timestamp when job completed (None if in progress)
    """

    job_id: str
    url: str
    location: FileLocation
    status: Literal["in_progress", "completed"]
    created_at: str
    last_checkpoint_at: str
    completed_at: str | None = None

    @classmethod
    def new(cls, job_id: str, url: str) -> "JobProgress":
        now = datetime.now(timezone.utc).isoformat()
        return cls(
            job_id=job_id,
            url=url,
            location=FileLocation(),
            status="in_progress",
            created_at=now,
            last_checkpoint_at=now,
        )


@dataclass(frozen=True)
class JobInfo:
    """Read-only job information exposed to users.

    Attributes:
        job_id: Unique identifier for this job
        url: Resource the job streams
        location: Location the job will resume from
        status: Current job status
        created_at: When job was created
        last_checkpoint_at: When last checkpoint was saved
        completed_at: When job completed (None if in progress)
    """

    job_id: str
    url: str
    location: FileLocation
    status: Literal["in_progress", "completed"]
    created_at: datetime
    last_checkpoint_at: datetime
    completed_at: datetime | None = field(default=None)

    @classmethod
    def from_progress(cls, job: JobProgress) -> "JobInfo":
        return cls(
            job_id=job.job_id,
            url=job.url,
            location=job.location,
            status=job.status,
            created_at=datetime.fromisoformat(job.created_at),
            last_checkpoint_at=datetime.fromisoformat(job.last_checkpoint_at),
            completed_at=(
                datetime.fromisoformat(job.completed_at) if job.completed_at else None
            ),
        )
