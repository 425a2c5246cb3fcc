"""Cumulative byte/line position of a stream."""

from __future__ import annotations

from .models import FileLocation


class LocationTracker:
    """Monotonic (byte_offset, line) counter.

    Only the line framer advances it, once per framed line; everything else
    reads ``location``. Replaying the same bytes from a fresh tracker
    reproduces the same sequence of locations.
    """

    def __init__(self, start: FileLocation | None = None) -> None:
        start = start or FileLocation()
        self._byte_offset = start.byte_offset
        self._line = start.line

    @property
    def location(self) -> FileLocation:
        return FileLocation(line=self._line, byte_offset=self._byte_offset)

    def advance(self, nbytes: int) -> FileLocation:
        """Account for one consumed line of ``nbytes`` (terminator included)."""
        if nbytes < 0:
            raise ValueError(f"Cannot advance by {nbytes} bytes")
        self._byte_offset += nbytes
        self._line += 1
        return self.location

    def __repr__(self) -> str:
        return f"LocationTracker(byte_offset={self._byte_offset}, line={self._line})"
