"""Read-side projections: totals, summaries and export text.

Nothing in here mutates a ledger; every function works on record sequences
handed in by the caller.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from .errors import ValidationError
from .interval import TimeInterval
from .models import (
    BookingRecord,
    Inconsistency,
    format_duration,
    format_timestamp,
    parse_duration,
)

CSV_COLUMNS = ["start", "end", "issue", "duration", "comment"]


def totals(records: Iterable[BookingRecord], group_by: Optional[str] = None) -> dict[Optional[str], timedelta]:
    """Sum booked durations.

    Args:
        records: Records to aggregate
        group_by: None for a single grand total (key None), "issue" for per-issue totals

    Returns:
        Mapping of group key to total duration, keys sorted
    """
    if group_by not in (None, "issue"):
        raise ValueError(f"Unsupported grouping: {group_by!r}")

    result: dict[Optional[str], timedelta] = {}
    for record in records:
        key = record.issue if group_by == "issue" else None
        result[key] = result.get(key, timedelta(0)) + record.duration

    if group_by is None:
        return {None: result.get(None, timedelta(0))}
    return {key: result[key] for key in sorted(result)}


@dataclass
class DaySummary:
    """Aggregated view of one day. ``day`` is None when no day was ever started."""
    day: Optional[date]
    records: list[BookingRecord]
    by_issue: dict[str, timedelta]
    total: timedelta
    inconsistencies: list[Inconsistency] = field(default_factory=list)
    finalized: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.day.isoformat() if self.day else None,
            "finalized": self.finalized,
            "total": format_duration(self.total),
            "by_issue": {k: format_duration(v) for k, v in self.by_issue.items()},
            "records": [r.to_dict() for r in self.records],
            "inconsistencies": [i.to_dict() for i in self.inconsistencies],
        }


@dataclass
class WeekSummary:
    """Aggregated view of one ISO week. ``week`` is None when no week was picked."""
    week: Optional[str]
    days: list[DaySummary]
    by_issue: dict[str, timedelta]
    total: timedelta

    @property
    def records(self) -> list[BookingRecord]:
        return [r for d in self.days for r in d.records]

    def to_dict(self) -> dict[str, Any]:
        return {
            "week": self.week,
            "total": format_duration(self.total),
            "by_issue": {k: format_duration(v) for k, v in self.by_issue.items()},
            "days": [d.to_dict() for d in self.days],
        }


def summarize_day(
    day: Optional[date],
    records: Iterable[BookingRecord],
    inconsistencies: Iterable[Inconsistency] = (),
    finalized: bool = False,
) -> DaySummary:
    records = sorted(records)
    return DaySummary(
        day=day,
        records=records,
        by_issue=totals(records, group_by="issue"),
        total=totals(records)[None],
        inconsistencies=list(inconsistencies),
        finalized=finalized,
    )


def summarize_week(week: Optional[str], days: Iterable[DaySummary]) -> WeekSummary:
    days = sorted(days, key=lambda d: d.day)
    records = [r for d in days for r in d.records]
    return WeekSummary(
        week=week,
        days=days,
        by_issue=totals(records, group_by="issue"),
        total=totals(records)[None],
    )


# ========== Export formats ==========

def render_csv(records: Iterable[BookingRecord], delimiter: str = ",") -> str:
    """Render records as CSV with stable columns, ordered by start."""
    out = io.StringIO()
    writer = csv.writer(out, delimiter=delimiter, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for record in sorted(records):
        writer.writerow([
            format_timestamp(record.start),
            format_timestamp(record.end),
            record.issue,
            format_duration(record.duration),
            record.comment,
        ])
    return out.getvalue()


def sum_csv_durations(text: str, delimiter: str = ",") -> timedelta:
    """Sum the duration column of text produced by render_csv."""
    reader = csv.DictReader(io.StringIO(text), delimiter=delimiter)
    total = timedelta(0)
    for row in reader:
        total += parse_duration(row["duration"])
    return total


def render_pipe(records: Iterable[BookingRecord]) -> str:
    """Render records as ``date|start|end|issue|comment`` lines (TimeCockpit import)."""
    lines = []
    for record in sorted(records):
        lines.append("|".join([
            record.start.date().isoformat(),
            record.start.strftime("%H:%M"),
            record.end.strftime("%H:%M"),
            record.issue,
            record.comment,
        ]))
    return "".join(line + "\n" for line in lines)


EXPORT_FORMATS = {
    "csv": render_csv,
    "pipe": render_pipe,
}


# ========== Rounding and combining ==========

def _round_delta(delta: timedelta, resolution: timedelta) -> timedelta:
    steps, rest = divmod(delta, resolution)
    if rest * 2 >= resolution:
        steps += 1
    return resolution * steps


def round_instant(dt: datetime, resolution: timedelta) -> datetime:
    """Round to the nearest multiple of ``resolution`` since midnight (ties up)."""
    midnight = dt.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + _round_delta(dt - midnight, resolution)


def _compact(records: list[BookingRecord], start: datetime) -> list[BookingRecord]:
    """Lay records back-to-back from ``start`` keeping their durations."""
    result = []
    cursor = start
    for record in records:
        end = cursor + record.duration
        result.append(record.with_interval(TimeInterval(cursor, end)))
        cursor = end
    return result


def _blocks(records: list[BookingRecord]) -> list[list[BookingRecord]]:
    """Split sorted records into runs without gaps."""
    blocks: list[list[BookingRecord]] = []
    for record in records:
        if blocks and blocks[-1][-1].end == record.start:
            blocks[-1].append(record)
        else:
            blocks.append([record])
    return blocks


def _round_block(block: list[BookingRecord], resolution: timedelta) -> list[BookingRecord]:
    rounded_start = round_instant(block[0].start, resolution)
    durations = []
    total = timedelta(0)
    total_rounded = timedelta(0)
    for record in block:
        total += record.duration
        rounded = _round_delta(record.duration, resolution)
        if rounded == timedelta(0):
            rounded = resolution
        total_rounded += rounded
        durations.append(rounded)

    # hand the accumulated rounding error back, latest bookings first
    error = total_rounded - total
    for i in reversed(range(len(durations))):
        if abs(error) < resolution:
            break
        step = resolution if error > timedelta(0) else -resolution
        # shortening stops at one step, lengthening never does
        while abs(error) >= resolution and (step < timedelta(0) or durations[i] > resolution):
            durations[i] -= step
            error -= step

    if abs(error) > resolution:
        raise ValidationError(f"Failed to round: remaining error is {format_duration(error)}")

    result = []
    cursor = rounded_start
    for record, duration in zip(block, durations):
        result.append(record.with_interval(TimeInterval(cursor, cursor + duration)))
        cursor += duration
    return result


def round_records(records: Iterable[BookingRecord], resolution: timedelta) -> list[BookingRecord]:
    """Round bookings to the booking resolution.

    Each gap-free run of bookings is rounded on its own: every duration is
    rounded to the nearest resolution step (never to zero), the summed
    rounding error is spread back over the run, and the run is laid out
    back-to-back from its rounded start. A run that would start inside the
    previous one is pushed behind it.
    """
    if resolution <= timedelta(0):
        raise ValueError("Resolution must be positive")
    result: list[BookingRecord] = []
    for block in _blocks(sorted(records)):
        rounded = _round_block(block, resolution)
        if result and rounded[0].start < result[-1].end:
            rounded = _compact(rounded, result[-1].end)
        result.extend(rounded)
    return result


def combine_records(records: Iterable[BookingRecord]) -> list[BookingRecord]:
    """Merge bookings of the same issue into one, laid back-to-back from the first start."""
    records = sorted(records)
    if not records:
        return []
    combined: dict[str, BookingRecord] = {}
    for record in records:
        existing = combined.get(record.issue)
        if existing is None:
            combined[record.issue] = record
        else:
            combined[record.issue] = existing.with_interval(existing.interval.with_end(existing.end + record.duration))
    return _compact(sorted(combined.values()), records[0].start)


def recent_issues(records: Iterable[BookingRecord], limit: int = 10) -> list[str]:
    """Distinct issues, most recently booked first."""
    seen: list[str] = []
    for record in sorted(records, key=lambda r: (r.end, r.start), reverse=True):
        if record.issue not in seen:
            seen.append(record.issue)
        if len(seen) >= limit:
            break
    return seen
