"""Custom exceptions for jsonl-stream."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import FileLocation


class StreamError(Exception):
    """Terminal failure of a JSONL stream.

    Every fatal condition (exhausted retries, non-retryable HTTP errors,
    corrupt gzip data, malformed JSON) ends the stream with this error, so
    callers have a single recovery path: persist ``location`` and start a
    new stream from it.

    Attributes:
        location: Last known safe restart point
        cause: The underlying error, also chained as ``__cause__``
    """

    def __init__(
        self,
        message: str,
        location: "FileLocation",
        cause: BaseException | None = None,
    ) -> None:
        self.location = location
        self.cause = cause
        super().__init__(f"{message} (resume from {location.to_json()})")


# ─────────────────────────────────────────────────────────────────────
# Pipeline stage errors (wrapped into StreamError by the stream)
# ─────────────────────────────────────────────────────────────────────


class FetchError(Exception):
    """The resource could not be fetched.

    Attributes:
        url: The requested URL
        status_code: HTTP status of the failing response, if any
        exhausted: True when transient failures outlasted the retry budget
        attempts: Number of failed attempts in the last retry episode
    """

    def __init__(
        self,
        message: str,
        url: str,
        *,
        status_code: int | None = None,
        exhausted: bool = False,
        attempts: int = 1,
    ) -> None:
        self.url = url
        self.status_code = status_code
        self.exhausted = exhausted
        self.attempts = attempts
        super().__init__(message)


class DecompressionError(Exception):
    """Compressed data is malformed or truncated."""


class RecordDecodeError(ValueError):
    """A line is not a valid JSON value.

    Attributes:
        line: The raw line bytes, without terminator
    """

    def __init__(self, line: bytes, reason: str) -> None:
        self.line = line
        preview = line[:80].decode("utf-8", errors="replace")
        super().__init__(f"Invalid JSON line {preview!r}: {reason}")


# ─────────────────────────────────────────────────────────────────────
# Checkpoint Exceptions
# ─────────────────────────────────────────────────────────────────────


class StaleCheckpointError(Exception):
    """Raised when a saved job belongs to a different resource.

    The checkpoint's location is meaningless for another URL. The job should
    be reset and restarted from the beginning.
    """


class InvalidCheckpointError(Exception):
    """Raised when a stored location cannot be used.

    This can happen if:
    - The stored location is missing fields or has negative values
    - The progress data is corrupted
    """
