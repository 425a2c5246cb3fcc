"""Split a chunked byte stream into lines."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from .models import FileLocation
from .tracker import LocationTracker


@dataclass(frozen=True, slots=True)
class FramedLine:
    """One line cut out of the stream.

    Attributes:
        data: Line content without ``\\n`` or ``\\r\\n``
        start: Location before the line
        end: Location after the line (terminator included)
    """

    data: bytes
    start: FileLocation
    end: FileLocation


class LineFramer:
    """Frame ``\\n``-terminated lines across arbitrary chunk boundaries.

    Bytes after the last newline of a chunk stay in a carry buffer until a
    later chunk completes them, or until ``finish()`` flushes them at a clean
    end of stream. Framing is lazy: the tracker only advances as lines are
    pulled from ``feed()``.

    Example:
        >>> framer = LineFramer(LocationTracker())
        >>> [line.data for line in framer.feed(b'{"a":1}\\n{"b"')]
        [b'{"a":1}']
        >>> [line.data for line in framer.feed(b':2}\\n')]
        [b'{"b":2}']
    """

    def __init__(self, tracker: LocationTracker) -> None:
        self._tracker = tracker
        self._carry = bytearray()
        # Length of the carry prefix already known to hold no newline
        self._scanned = 0

    @property
    def tracker(self) -> LocationTracker:
        return self._tracker

    @property
    def pending(self) -> int:
        """Bytes held in the carry buffer."""
        return len(self._carry)

    def feed(self, data: bytes) -> Iterator[FramedLine]:
        """Append ``data`` and yield every line it completes."""
        if not data:
            return
        self._carry += data
        while True:
            newline = self._carry.find(b"\n", self._scanned)
            if newline < 0:
                self._scanned = len(self._carry)
                break
            raw = bytes(self._carry[: newline + 1])
            del self._carry[: newline + 1]
            self._scanned = 0
            yield self._frame(raw)

    def finish(self) -> Iterator[FramedLine]:
        """Yield the unterminated tail, if any, at a clean end of stream."""
        if self._carry:
            raw = bytes(self._carry)
            self._carry.clear()
            self._scanned = 0
            yield self._frame(raw)

    def _frame(self, raw: bytes) -> FramedLine:
        start = self._tracker.location
        end = self._tracker.advance(len(raw))
        content = raw[:-1] if raw.endswith(b"\n") else raw
        if content.endswith(b"\r"):
            content = content[:-1]
        return FramedLine(data=content, start=start, end=end)
