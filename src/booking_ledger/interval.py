"""Half-open time intervals."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from .errors import InvalidInstant


@dataclass(frozen=True, order=True)
class TimeInterval:
    """A half-open span ``[start, end)`` between two instants.

    Intervals order by start, then end. An interval whose start equals its
    end is empty; one whose end precedes its start cannot be built.
    """
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise InvalidInstant(
                f"Interval ends before it starts: {self.start.isoformat()} > {self.end.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def is_empty(self) -> bool:
        return self.start == self.end

    def overlaps(self, other: TimeInterval) -> bool:
        """True if both intervals share some time. Touching ends do not count."""
        return self.start < other.end and other.start < self.end

    def contains(self, item: Union[datetime, TimeInterval]) -> bool:
        """Check whether an instant or a whole interval lies within this one."""
        if isinstance(item, TimeInterval):
            return self.start <= item.start and item.end <= self.end
        return self.start <= item < self.end

    def adjacent(self, other: TimeInterval) -> bool:
        """True if one interval ends exactly where the other starts."""
        return self.end == other.start or other.end == self.start

    def intersection(self, other: TimeInterval) -> Optional[TimeInterval]:
        if not self.overlaps(other):
            return None
        return TimeInterval(max(self.start, other.start), min(self.end, other.end))

    def subtract(self, other: TimeInterval) -> tuple[Optional[TimeInterval], Optional[TimeInterval]]:
        """Cut ``other`` out of this interval.

        Returns:
            Tuple of (part before other, part after other); either may be None.
        """
        if not self.overlaps(other):
            if self.end <= other.start:
                return self, None
            return None, self

        before = None
        after = None
        if self.start < other.start:
            before = TimeInterval(self.start, other.start)
        if other.end < self.end:
            after = TimeInterval(other.end, self.end)
        return before, after

    def with_start(self, start: datetime) -> TimeInterval:
        return TimeInterval(start, self.end)

    def with_end(self, end: datetime) -> TimeInterval:
        return TimeInterval(self.start, end)

    def __str__(self) -> str:
        return f"{self.start.isoformat()}/{self.end.isoformat()}"
