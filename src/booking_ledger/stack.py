"""Interruption stack: one active task, LIFO of suspended ones."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .errors import InvalidInstant, InvalidTransition
from .interval import TimeInterval
from .models import BookingRecord, Inconsistency, IssueRef, StackEntry, format_timestamp


@dataclass(frozen=True)
class ActiveTask:
    """The task currently accumulating time."""
    issue: IssueRef
    started_at: datetime
    interruption: bool = False
    deadline: Optional[datetime] = None

    def elapsed(self, now: datetime) -> timedelta:
        return max(now - self.started_at, timedelta(0))


class InterruptionStack:
    """Tracks the active task and the tasks it suspended.

    Suspended entries live in a plain list in push order; the last element is
    resumed first. Every span that ends (by suspension, end or day end) is
    emitted as a provisional BookingRecord into :attr:`records`.
    """

    def __init__(self) -> None:
        self.active: Optional[ActiveTask] = None
        self._entries: list[StackEntry] = []
        self.records: list[BookingRecord] = []
        self.warnings: list[Inconsistency] = []

    @property
    def depth(self) -> int:
        return len(self._entries)

    @property
    def suspended(self) -> tuple[StackEntry, ...]:
        return tuple(self._entries)

    def _check_instant(self, at: datetime) -> None:
        if self.active is not None and at < self.active.started_at:
            raise InvalidInstant(
                f"{format_timestamp(at)} precedes the start of {self.active.issue.ident} "
                f"at {format_timestamp(self.active.started_at)}"
            )

    def _close(self, at: datetime) -> BookingRecord:
        assert self.active is not None
        record = BookingRecord(
            TimeInterval(self.active.started_at, at),
            self.active.issue.ident,
            self.active.issue.comment,
        )
        self.records.append(record)
        return record

    def _push(self, issue: IssueRef, at: datetime, interruption: bool, deadline: Optional[datetime]) -> None:
        self._check_instant(at)
        if self.active is not None:
            self._close(at)
            self._entries.append(StackEntry(
                issue=self.active.issue,
                started_at=self.active.started_at,
                suspended_at=at,
                interruption=self.active.interruption,
                deadline=self.active.deadline,
            ))
        self.active = ActiveTask(issue, at, interruption, deadline)

    def start(self, issue: IssueRef, at: datetime) -> None:
        """Make ``issue`` active, suspending the current task if there is one."""
        self._push(issue, at, interruption=False, deadline=None)

    def start_interruption(
        self,
        issue: IssueRef,
        at: datetime,
        default_duration: Optional[timedelta] = None,
    ) -> None:
        """Start an interruption; it ends itself after ``default_duration`` if never ended."""
        deadline = at + default_duration if default_duration is not None else None
        self._push(issue, at, interruption=True, deadline=deadline)

    def end(self, at: datetime) -> BookingRecord:
        """Close the active task at ``at`` and resume the last suspended one."""
        if self.active is None:
            raise InvalidTransition(f"Nothing is active at {format_timestamp(at)}")
        self._check_instant(at)
        record = self._close(at)
        self.active = None
        if self._entries:
            entry = self._entries.pop()
            self.active = ActiveTask(entry.issue, at, entry.interruption, entry.deadline)
        return record

    def expire(self, until: datetime) -> None:
        """End every active interruption whose default duration ran out by ``until``."""
        while (
            self.active is not None
            and self.active.deadline is not None
            and self.active.deadline <= until
        ):
            self.end(max(self.active.deadline, self.active.started_at))

    def end_day(self, at: datetime) -> list[Inconsistency]:
        """Close the active task and discard everything still suspended.

        A suspended entry already produced its record up to its suspension
        instant; it gains no further time and is reported instead.
        """
        self._check_instant(at)
        if self.active is not None:
            self._close(at)
            self.active = None
        warnings = [Inconsistency.unresumed(entry) for entry in self._entries]
        self._entries.clear()
        self.warnings.extend(warnings)
        return warnings
