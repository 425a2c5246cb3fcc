"""Exponential retry delays bounded by a per-episode time budget."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import StreamConfig


@dataclass
class BackoffState:
    """One retry episode: failures since the last successful chunk.

    Attributes:
        started_at: Clock reading at the first failure of the episode
        attempt: Number of retries already scheduled in this episode
    """

    started_at: float
    attempt: int = 0


class Backoff:
    """Retry delay policy.

    Delays double from ``initial_delay`` up to ``max_delay``; an episode is
    exhausted once ``max_retry_time`` has elapsed since it started. Pure
    functions of their arguments, so any clock can be plugged in.

    Example:
        >>> backoff = Backoff(initial_delay=1.0, max_delay=30.0, max_retry_time=3600.0)
        >>> [backoff.next_delay(n) for n in range(7)]
        [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]
    """

    def __init__(
        self,
        initial_delay: float = 1.0,
        max_delay: float = 30.0,
        max_retry_time: float = 3600.0,
    ) -> None:
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.max_retry_time = max_retry_time

    @classmethod
    def from_config(cls, config: "StreamConfig") -> "Backoff":
        return cls(
            initial_delay=config.initial_delay,
            max_delay=config.max_delay,
            max_retry_time=config.max_retry_time,
        )

    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-indexed)."""
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}")
        # 2**attempt overflows float conversion long before it matters
        if attempt >= 64:
            return float(self.max_delay)
        return float(min(self.initial_delay * 2**attempt, self.max_delay))

    def is_exhausted(self, started_at: float, now: float) -> bool:
        """True once the episode started at ``started_at`` has used its budget."""
        return now - started_at >= self.max_retry_time

    def __repr__(self) -> str:
        return (
            f"Backoff(initial_delay={self.initial_delay}, max_delay={self.max_delay}, "
            f"max_retry_time={self.max_retry_time})"
        )
