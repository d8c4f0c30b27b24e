"""Normalization engine: replays an action log into booking records.

Normalization is a pure function of the action log. The log is sorted by
timestamp (stably, so same-instant actions keep the order they were received
in and act as zero-gap handoffs) and replayed through a fresh
:class:`InterruptionStack`. The resulting spans are cleaned of zero-length
pieces, merged with fixed bookings and scanned for gaps and overlaps.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Iterable, Optional

from .errors import (
    InvalidInstant,
    InvalidTransition,
    OutOfOrderAction,
    OverlapConflict,
    ZeroDurationError,
)
from .interval import TimeInterval
from .models import (
    Action,
    ActionKind,
    BookingRecord,
    Inconsistency,
    StackEntry,
    format_timestamp,
)
from .stack import ActiveTask, InterruptionStack


class OverlapPolicy(Enum):
    """What a fixed booking does to records it overlaps."""
    OVERWRITE = "overwrite"
    REJECT = "reject"


class DayState(Enum):
    """Replay state of a day.

    OPEN and CLOSED are the two flavours of idle inside a started day:
    before any task was started (or after the last one ended) and after the
    day was ended.
    """
    IDLE = "idle"
    OPEN = "open"
    WORKING = "working"
    CLOSED = "closed"


@dataclass(frozen=True)
class NormalizedDay:
    """Result of normalizing one day's action log."""
    day: Optional[date]
    records: tuple[BookingRecord, ...]
    inconsistencies: tuple[Inconsistency, ...]
    state: DayState
    active: Optional[ActiveTask] = None
    suspended: tuple[StackEntry, ...] = field(default_factory=tuple)
    day_start: Optional[datetime] = None
    day_end: Optional[datetime] = None
    fixed: tuple[BookingRecord, ...] = field(default_factory=tuple)

    @property
    def is_closed(self) -> bool:
        return self.state == DayState.CLOSED

    def provisional(self, now: datetime) -> list[BookingRecord]:
        """Records plus the still-open span of the active task up to ``now``.

        Fixed bookings keep the time they cover; the open span is cut around them.
        """
        records = list(self.records)
        if self.active is not None and now > self.active.started_at:
            running = BookingRecord(
                TimeInterval(self.active.started_at, now),
                self.active.issue.ident,
                self.active.issue.comment,
            )
            records.extend(cut_out(running, [f.interval for f in self.fixed]))
            records.sort()
        return records

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [r.to_dict() for r in self.records],
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
        }


def cut_out(record: BookingRecord, intervals: Iterable[TimeInterval]) -> list[BookingRecord]:
    """Pieces of ``record`` left after removing every interval in ``intervals``."""
    pieces = [record]
    for interval in intervals:
        remaining = []
        for piece in pieces:
            if not piece.interval.overlaps(interval):
                remaining.append(piece)
                continue
            for part in piece.interval.subtract(interval):
                if part is not None and not part.is_empty():
                    remaining.append(piece.with_interval(part))
        pieces = remaining
    return pieces


def merge_fixed(
    records: Iterable[BookingRecord],
    fixed: Iterable[BookingRecord],
    policy: OverlapPolicy = OverlapPolicy.OVERWRITE,
) -> list[BookingRecord]:
    """Merge manually fixed bookings into a record sequence.

    Fixed bookings are applied in the given order. Under OVERWRITE, the spans
    they cover are cut out of earlier records (splitting them when needed);
    under REJECT, any overlap raises.

    Raises:
        ZeroDurationError: If a fixed booking is empty.
        OverlapConflict: If a fixed booking overlaps under the REJECT policy.
    """
    result = list(records)
    for booking in fixed:
        if booking.interval.is_empty():
            raise ZeroDurationError(
                f"Fixed booking for {booking.issue} at {format_timestamp(booking.start)} has no duration"
            )

        clashing = [r for r in result if r.interval.overlaps(booking.interval)]
        if clashing and policy == OverlapPolicy.REJECT:
            names = ", ".join(f"{r.issue} {r.interval}" for r in clashing)
            raise OverlapConflict(f"Fixed booking for {booking.issue} {booking.interval} overlaps: {names}")

        for record in clashing:
            result.remove(record)
            result.extend(cut_out(record, [booking.interval]))
        result.append(booking)

    result.sort()
    return result


def scan_timeline(
    records: Iterable[BookingRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    open_from: Optional[datetime] = None,
) -> list[Inconsistency]:
    """Report gaps and overlaps in a sorted record sequence.

    Args:
        records: Records sorted by start
        start: Day start; time before the first record is a gap
        end: Day end; time after the last record is a gap
        open_from: Start of a still-running task, treated as a record without end
    """
    found: list[Inconsistency] = []
    cursor = start
    previous: Optional[BookingRecord] = None
    for record in records:
        if previous is not None and record.interval.overlaps(previous.interval):
            found.append(Inconsistency.overlap(previous, record))
        if cursor is not None and record.start > cursor:
            found.append(Inconsistency.gap(TimeInterval(cursor, record.start)))
        if cursor is None or record.end > cursor:
            cursor = record.end
            previous = record

    if open_from is not None:
        if cursor is not None and open_from > cursor:
            found.append(Inconsistency.gap(TimeInterval(cursor, open_from)))
    elif end is not None and cursor is not None and end > cursor:
        found.append(Inconsistency.gap(TimeInterval(cursor, end)))
    return found


class Normalizer:
    """Turns an action log into the ordered, non-overlapping records of a day."""

    def __init__(self, overlap_policy: OverlapPolicy = OverlapPolicy.OVERWRITE):
        self.overlap_policy = overlap_policy

    def normalize(
        self,
        actions: Iterable[Action],
        day: Optional[date] = None,
        now: Optional[datetime] = None,
        close_implicitly: bool = False,
    ) -> NormalizedDay:
        """Normalize one day's actions.

        Args:
            actions: The day's actions in received order (not modified)
            day: Date the actions must belong to; derived from the earliest action if None
            now: Resolve default-duration interruptions that ran out by this instant
            close_implicitly: Close a day that was never ended at its last known instant

        Raises:
            InvalidTransition: If an action does not fit the replay state.
            InvalidInstant: If an action belongs to another day.
            OutOfOrderAction: If an action precedes already finalized work.
            OverlapConflict: If a fixed booking overlaps under the reject policy.
            ZeroDurationError: If a fixed booking is empty.
        """
        actions = list(actions)
        ordered = sorted((a for a in actions if not a.is_fixed), key=lambda a: a.at)
        fixed = [a for a in actions if a.is_fixed]

        if day is None and actions:
            day = min(a.at for a in actions).date()
        for action in actions:
            if action.day != day:
                raise InvalidInstant(f"Action {action} does not belong to {day}")

        stack = InterruptionStack()
        started = False
        ended = False
        day_start: Optional[datetime] = None
        day_end: Optional[datetime] = None
        warnings: list[Inconsistency] = []

        for action in ordered:
            if stack.records and action.at < stack.records[-1].end:
                raise OutOfOrderAction(
                    f"Action {action} precedes booked work ending at {format_timestamp(stack.records[-1].end)}"
                )
            stack.expire(action.at)
            state = self._state(started, ended, stack)

            if action.kind == ActionKind.START_DAY:
                if state != DayState.IDLE:
                    raise InvalidTransition(f"Cannot start the day: already {state.value}")
                started = True
                day_start = action.at

            elif action.kind in (ActionKind.START_WORK, ActionKind.START_INTERRUPTION):
                if state not in (DayState.OPEN, DayState.WORKING):
                    raise InvalidTransition(f"Cannot {action.kind.value.replace('_', ' ')} while {state.value}")
                if action.kind == ActionKind.START_WORK:
                    stack.start(action.issue, action.at)
                else:
                    stack.start_interruption(action.issue, action.at, action.default_duration)

            elif action.kind == ActionKind.END_WORK:
                if stack.active is None:
                    raise InvalidTransition(f"Cannot end work while {state.value}")
                if stack.active.interruption:
                    raise InvalidTransition(
                        f"Cannot end work: interruption {stack.active.issue.ident} is active"
                    )
                stack.end(action.at)

            elif action.kind == ActionKind.END_INTERRUPTION:
                if stack.active is None or not stack.active.interruption:
                    raise InvalidTransition(f"Cannot end an interruption while {state.value} without one")
                stack.end(action.at)

            elif action.kind == ActionKind.END_DAY:
                if state not in (DayState.OPEN, DayState.WORKING):
                    raise InvalidTransition(f"Cannot end the day while {state.value}")
                warnings.extend(stack.end_day(action.at))
                ended = True
                day_end = action.at

        fixed_records = [
            BookingRecord(a.interval, a.issue.ident, a.issue.comment) for a in fixed
        ]

        if close_implicitly and started and not ended:
            close_at = max([ordered[-1].at] + [f.end for f in fixed_records])
            if stack.active is not None and stack.active.deadline is not None:
                close_at = max(close_at, stack.active.deadline)
            stack.expire(close_at)
            warnings.extend(stack.end_day(close_at))
            warnings.append(Inconsistency.missing_day_end(close_at))
            ended = True
            day_end = close_at
        elif now is not None and not ended:
            stack.expire(now)

        records: list[BookingRecord] = []
        for record in stack.records:
            if record.interval.is_empty():
                warnings.append(Inconsistency.zero_duration(record))
            else:
                records.append(record)

        records = merge_fixed(records, fixed_records, self.overlap_policy)
        if self.overlap_policy == OverlapPolicy.REJECT and stack.active is not None:
            self._reject_running_overlap(stack, fixed_records)

        open_from = stack.active.started_at if stack.active is not None else None
        timeline = scan_timeline(records, start=day_start, end=day_end, open_from=open_from)

        return NormalizedDay(
            day=day,
            records=tuple(records),
            inconsistencies=tuple(timeline + warnings),
            state=self._state(started, ended, stack),
            active=stack.active,
            suspended=stack.suspended,
            day_start=day_start,
            day_end=day_end,
            fixed=tuple(fixed_records),
        )

    @staticmethod
    def _reject_running_overlap(stack: InterruptionStack, fixed: list[BookingRecord]) -> None:
        """Raise if a fixed booking lies in time the running task still claims.

        The active task holds everything from its start on, except for an
        interruption with a default duration and nothing suspended below it,
        which only holds time up to its deadline.
        """
        active = stack.active
        until = active.deadline if active.deadline is not None and not stack.suspended else None
        for booking in fixed:
            if booking.end > active.started_at and (until is None or booking.start < until):
                raise OverlapConflict(
                    f"Fixed booking for {booking.issue} {booking.interval} overlaps "
                    f"{active.issue.ident} running since {format_timestamp(active.started_at)}"
                )

    @staticmethod
    def _state(started: bool, ended: bool, stack: InterruptionStack) -> DayState:
        if ended:
            return DayState.CLOSED
        if not started:
            return DayState.IDLE
        if stack.active is not None:
            return DayState.WORKING
        return DayState.OPEN
