"""Data models for actions, booking records, and reported inconsistencies."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Any, Optional

from .errors import InvalidInstant, InvalidIssue, ValidationError
from .interval import TimeInterval


class ActionKind(Enum):
    """Type of user action."""
    START_DAY = "start_day"
    END_DAY = "end_day"
    START_WORK = "start_work"
    END_WORK = "end_work"
    START_INTERRUPTION = "start_interruption"
    END_INTERRUPTION = "end_interruption"
    BOOK_FIXED = "book_fixed"


class InconsistencyKind(Enum):
    """Type of reported (non-fatal) inconsistency."""
    OVERLAP = "overlap"
    GAP = "gap"
    UNRESUMED_INTERRUPTION = "unresumed_interruption"
    ZERO_DURATION = "zero_duration"
    MISSING_DAY_END = "missing_day_end"


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 with seconds and offset."""
    return dt.isoformat(timespec="seconds")


def parse_timestamp(s: str) -> datetime:
    """Parse ISO 8601 timestamp string."""
    try:
        dt = datetime.fromisoformat(s)
    except (TypeError, ValueError) as e:
        raise InvalidInstant(f"Invalid timestamp: {s!r}") from e
    if dt.tzinfo is None:
        raise InvalidInstant(f"Timestamp without offset: {s!r}")
    return dt


def normalize_instant(dt: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Bring an instant into the ledger's zone at second resolution.

    Naive datetimes are interpreted in ``tz`` (the system local zone when
    ``tz`` is None); aware ones are converted to it.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz) if tz is not None else dt.astimezone()
    else:
        dt = dt.astimezone(tz)
    return dt.replace(microsecond=0)


def format_duration(delta: timedelta) -> str:
    """Format a duration as HH:MM:SS (hours may exceed 24)."""
    total = int(delta.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rest = divmod(total, 3600)
    minutes, seconds = divmod(rest, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


def parse_duration(s: str) -> timedelta:
    """Parse HH:MM:SS or HH:MM into a timedelta."""
    match = re.fullmatch(r"(-?)(\d+):(\d{2})(?::(\d{2}))?", s.strip())
    if not match:
        raise ValidationError(f"Invalid duration: {s!r}")
    sign, hours, minutes, seconds = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes), seconds=int(seconds or 0))
    return -delta if sign else delta


@dataclass(frozen=True)
class IssueRef:
    """Opaque cost-unit or issue identifier with an optional comment."""
    ident: str
    comment: str = ""

    @classmethod
    def parse(cls, ident: str, comment: str = "", pattern: Optional[str] = None) -> IssueRef:
        """Build an IssueRef, validating against ``pattern`` when given.

        With a pattern, identifiers are stripped and upper-cased before the
        full-match check, so ``proj-12`` becomes ``PROJ-12``.
        """
        ident = ident.strip()
        if not ident:
            raise InvalidIssue("Issue identifier must not be empty")
        if pattern is not None:
            ident = ident.upper()
            if not re.fullmatch(pattern, ident):
                raise InvalidIssue(f"Invalid issue identifier: {ident} (expected {pattern})")
        return cls(ident=ident, comment=comment or "")


@dataclass(frozen=True)
class Action:
    """A raw, timestamped user action.

    Use the constructor class methods rather than filling fields by hand;
    they enforce which fields belong to which kind.
    """
    kind: ActionKind
    at: datetime
    issue: Optional[IssueRef] = None
    default_duration: Optional[timedelta] = None
    interval: Optional[TimeInterval] = None

    @classmethod
    def start_day(cls, at: datetime) -> Action:
        return cls(ActionKind.START_DAY, at)

    @classmethod
    def end_day(cls, at: datetime) -> Action:
        return cls(ActionKind.END_DAY, at)

    @classmethod
    def start_work(cls, at: datetime, issue: IssueRef) -> Action:
        return cls(ActionKind.START_WORK, at, issue=issue)

    @classmethod
    def end_work(cls, at: datetime) -> Action:
        return cls(ActionKind.END_WORK, at)

    @classmethod
    def start_interruption(
        cls,
        at: datetime,
        issue: IssueRef,
        default_duration: Optional[timedelta] = None,
    ) -> Action:
        if default_duration is not None and default_duration <= timedelta(0):
            raise InvalidInstant("Default duration of an interruption must be positive")
        return cls(ActionKind.START_INTERRUPTION, at, issue=issue, default_duration=default_duration)

    @classmethod
    def end_interruption(cls, at: datetime) -> Action:
        return cls(ActionKind.END_INTERRUPTION, at)

    @classmethod
    def book_fixed(cls, interval: TimeInterval, issue: IssueRef, comment: Optional[str] = None) -> Action:
        if comment is not None:
            issue = IssueRef(issue.ident, comment)
        return cls(ActionKind.BOOK_FIXED, interval.start, issue=issue, interval=interval)

    @property
    def is_fixed(self) -> bool:
        return self.kind == ActionKind.BOOK_FIXED

    @property
    def day(self) -> date:
        return self.at.date()

    def with_instants(self, tz: Optional[tzinfo]) -> Action:
        """Return a copy with all instants normalized into ``tz``."""
        interval = None
        if self.interval is not None:
            interval = TimeInterval(
                normalize_instant(self.interval.start, tz),
                normalize_instant(self.interval.end, tz),
            )
        at = interval.start if interval is not None else normalize_instant(self.at, tz)
        return Action(self.kind, at, self.issue, self.default_duration, interval)

    def to_dict(self) -> dict[str, Any]:
        """Convert action to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "at": format_timestamp(self.at),
        }
        if self.issue is not None:
            data["issue"] = self.issue.ident
            data["comment"] = self.issue.comment
        if self.default_duration is not None:
            data["default_duration"] = format_duration(self.default_duration)
        if self.interval is not None:
            data["end"] = format_timestamp(self.interval.end)
        return data

    def __str__(self) -> str:
        parts = [self.kind.value, format_timestamp(self.at)]
        if self.issue is not None:
            parts.append(self.issue.ident)
        return " ".join(parts)


def action_from_dict(data: dict[str, Any]) -> Action:
    """Rebuild an Action from its dictionary form.

    Raises:
        ValidationError: If the kind is unknown or required fields are missing.
    """
    try:
        kind = ActionKind(data["kind"])
        at = parse_timestamp(data["at"])
    except KeyError as e:
        raise ValidationError(f"Action is missing field: {e}") from e
    except ValueError as e:
        raise ValidationError(f"Unknown action kind: {data.get('kind')!r}") from e

    issue = None
    if data.get("issue") is not None:
        issue = IssueRef(data["issue"], data.get("comment") or "")

    if kind in (ActionKind.START_WORK, ActionKind.START_INTERRUPTION, ActionKind.BOOK_FIXED) and issue is None:
        raise ValidationError(f"Action {kind.value} requires an issue")

    if kind == ActionKind.BOOK_FIXED:
        if "end" not in data:
            raise ValidationError("Fixed booking requires an end")
        return Action.book_fixed(TimeInterval(at, parse_timestamp(data["end"])), issue)

    default_duration = None
    if data.get("default_duration") is not None:
        default_duration = parse_duration(data["default_duration"])

    return Action(kind, at, issue=issue, default_duration=default_duration)


@dataclass(frozen=True, order=True)
class BookingRecord:
    """A finalized interval of time attributed to one issue."""
    interval: TimeInterval
    issue: str
    comment: str = ""

    @property
    def start(self) -> datetime:
        return self.interval.start

    @property
    def end(self) -> datetime:
        return self.interval.end

    @property
    def duration(self) -> timedelta:
        return self.interval.duration

    def with_interval(self, interval: TimeInterval) -> BookingRecord:
        return BookingRecord(interval, self.issue, self.comment)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end),
            "issue": self.issue,
            "comment": self.comment,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BookingRecord:
        return cls(
            interval=TimeInterval(parse_timestamp(data["start"]), parse_timestamp(data["end"])),
            issue=data["issue"],
            comment=data.get("comment") or "",
        )


@dataclass(frozen=True)
class StackEntry:
    """A task suspended on the interruption stack."""
    issue: IssueRef
    started_at: datetime
    suspended_at: datetime
    interruption: bool = False
    deadline: Optional[datetime] = None

    @property
    def comment(self) -> str:
        return self.issue.comment

    def to_dict(self) -> dict[str, Any]:
        return {
            "issue": self.issue.ident,
            "comment": self.issue.comment,
            "started_at": format_timestamp(self.started_at),
            "suspended_at": format_timestamp(self.suspended_at),
            "interruption": self.interruption,
        }


@dataclass(frozen=True)
class Inconsistency:
    """A reported temporal inconsistency. Never blocks persistence."""
    kind: InconsistencyKind
    message: str
    interval: Optional[TimeInterval] = None
    records: tuple[BookingRecord, ...] = field(default_factory=tuple)
    entry: Optional[StackEntry] = None

    @classmethod
    def gap(cls, interval: TimeInterval) -> Inconsistency:
        return cls(
            InconsistencyKind.GAP,
            f"Unbooked time {interval.start.strftime('%H:%M:%S')}-{interval.end.strftime('%H:%M:%S')}",
            interval=interval,
        )

    @classmethod
    def overlap(cls, a: BookingRecord, b: BookingRecord) -> Inconsistency:
        shared = a.interval.intersection(b.interval)
        return cls(
            InconsistencyKind.OVERLAP,
            f"Bookings for {a.issue} and {b.issue} overlap",
            interval=shared,
            records=(a, b),
        )

    @classmethod
    def unresumed(cls, entry: StackEntry) -> Inconsistency:
        return cls(
            InconsistencyKind.UNRESUMED_INTERRUPTION,
            f"{entry.issue.ident} was suspended at {entry.suspended_at.strftime('%H:%M:%S')} and never resumed",
            entry=entry,
        )

    @classmethod
    def zero_duration(cls, record: BookingRecord) -> Inconsistency:
        return cls(
            InconsistencyKind.ZERO_DURATION,
            f"Dropped zero-length booking for {record.issue} at {record.start.strftime('%H:%M:%S')}",
            interval=record.interval,
            records=(record,),
        )

    @classmethod
    def missing_day_end(cls, at: datetime) -> Inconsistency:
        return cls(
            InconsistencyKind.MISSING_DAY_END,
            f"Day was never ended; closed at {at.strftime('%H:%M:%S')}",
            interval=TimeInterval(at, at),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.interval is not None:
            data["start"] = format_timestamp(self.interval.start)
            data["end"] = format_timestamp(self.interval.end)
        if self.records:
            data["issues"] = [r.issue for r in self.records]
        if self.entry is not None:
            data["issue"] = self.entry.issue.ident
            data["suspended_at"] = format_timestamp(self.entry.suspended_at)
        return data
