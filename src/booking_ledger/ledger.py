"""Booking ledger - the entry point collaborators submit actions to."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from .action_log import ActionLog
from .config import LedgerConfig
from .errors import InvalidInstant, InvalidTransition, NothingToRetract
from .locking import InstanceLock
from .models import (
    Action,
    BookingRecord,
    InconsistencyKind,
    IssueRef,
    format_duration,
    format_timestamp,
    normalize_instant,
)
from .normalizer import DayState, NormalizedDay, Normalizer, OverlapPolicy, merge_fixed
from .query import (
    EXPORT_FORMATS,
    DaySummary,
    WeekSummary,
    combine_records,
    recent_issues,
    round_records,
    summarize_day,
    summarize_week,
)
from .storage import LedgerStore, week_label

logger = logging.getLogger(__name__)

_WARN_KINDS = (InconsistencyKind.UNRESUMED_INTERRUPTION, InconsistencyKind.MISSING_DAY_END)


@dataclass(frozen=True)
class CurrentState:
    """Live state for display: idle, or working on an issue for some time."""
    working: bool
    day_state: DayState
    issue: Optional[str] = None
    comment: str = ""
    since: Optional[datetime] = None
    elapsed: Optional[timedelta] = None
    interruption: bool = False
    suspended: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": "working" if self.working else "idle",
            "day_state": self.day_state.value,
            "issue": self.issue,
            "comment": self.comment,
            "since": format_timestamp(self.since) if self.since else None,
            "elapsed": format_duration(self.elapsed) if self.elapsed is not None else None,
            "interruption": self.interruption,
            "suspended": list(self.suspended),
        }


@dataclass(frozen=True)
class SubmitResult:
    """Outcome of an accepted action."""
    action: Action
    normalized: NormalizedDay
    rotated: tuple[date, ...] = ()
    closed: Optional[NormalizedDay] = None

    @property
    def inconsistencies(self):
        return self.normalized.inconsistencies


class BookingLedger:
    """Owns the day in progress and its rotation into week files.

    Every mutation runs against a copy of the action log; memory and disk are
    only updated once the copy normalized cleanly, so a rejected action leaves
    no trace.
    """

    def __init__(self, config: LedgerConfig, lock: InstanceLock):
        self.config = config
        self.lock = lock
        if not lock.is_held:
            lock.acquire()
        self.tz = config.get_tzinfo()
        self.normalizer = Normalizer(config.overlap_policy)
        self.store = LedgerStore(config.get_data_path(), lock_timeout=config.lock_timeout)
        self.store.open()
        self._day: Optional[date] = None
        self._log = ActionLog()
        self._recover()

    @property
    def day(self) -> Optional[date]:
        """Date of the day in progress, None if no day is open."""
        return self._day

    @property
    def log(self) -> ActionLog:
        return self._log.copy()

    def _recover(self) -> None:
        """Load the day file left by a previous run."""
        stored = self.store.load_day()
        if stored is None or stored.is_empty:
            return
        day = stored.day or min(a.at for a in stored.log).date()
        if self.store.load_week(day).has_day(day):
            # killed between committing the week file and resetting the day file
            logger.warning("Completing interrupted rotation of %s", day.isoformat())
            self.store.reset_day()
            return
        self._day = day
        self._log = stored.log
        logger.info("Resumed %s with %d actions", day.isoformat(), len(stored.log))

    def _now(self, now: datetime) -> datetime:
        return normalize_instant(now, self.tz)

    def _prepare(self, action: Action) -> Action:
        action = action.with_instants(self.tz)
        if "pre_submit" in self.config.hooks:
            action = self.config.hooks["pre_submit"](action) or action
        if action.issue is not None:
            issue = IssueRef.parse(
                action.issue.ident,
                action.issue.comment or self.config.default_comment,
                self.config.issue_pattern,
            )
            action = dataclasses.replace(action, issue=issue)
        return action

    def _normalize(self, log: Iterable[Action], day: date, **kwargs) -> NormalizedDay:
        return self.normalizer.normalize(log, day=day, **kwargs)

    def _rotate(self, day: date, normalized: NormalizedDay) -> None:
        for item in normalized.inconsistencies:
            if item.kind in _WARN_KINDS:
                logger.warning("%s: %s", day.isoformat(), item.message)
        self.store.rotate(day, normalized.records)
        if "post_rotate" in self.config.hooks:
            self.config.hooks["post_rotate"](day, list(normalized.records))

    # ========== Mutations ==========

    def submit(self, action: Action) -> SubmitResult:
        """Apply one user action.

        An action dated after the open day first closes that day implicitly
        and rotates it. An EndDay rotates the day it ends.

        Returns:
            SubmitResult with the normalized day after the action.

        Raises:
            ValidationError: If the action is rejected; nothing changes.
            StorageError: If files cannot be written; nothing changes.
        """
        action = self._prepare(action)
        day = action.day
        rotated: list[date] = []

        closing: Optional[NormalizedDay] = None
        log = self._log.copy()
        if self._day is not None and day != self._day:
            if day < self._day:
                raise InvalidInstant(
                    f"Action {action} belongs to {day.isoformat()}, before the open day "
                    f"{self._day.isoformat()}; use amend_day for finalized days"
                )
            closing = self._normalize(self._log, self._day, close_implicitly=True)
            log = ActionLog()

        if self._day is None or closing is not None:
            if self.store.load_week(day).has_day(day):
                raise InvalidTransition(
                    f"{day.isoformat()} is already finalized; use amend_day to correct it"
                )

        log.append(action)
        normalized = self._normalize(log, day)

        if closing is not None:
            logger.warning("Closing %s implicitly: %s arrived", self._day.isoformat(), action)
            self._rotate(self._day, closing)
            rotated.append(self._day)
            self._day, self._log = None, ActionLog()

        if normalized.is_closed:
            self._rotate(day, normalized)
            rotated.append(day)
            self._day, self._log = None, ActionLog()
        else:
            self.store.save_day(day, log, normalized)
            self._day, self._log = day, log

        logger.debug("Accepted %s", action)
        return SubmitResult(action=action, normalized=normalized, rotated=tuple(rotated), closed=closing)

    def retract_last(self) -> Action:
        """Undo the most recent action of the open day.

        Raises:
            NothingToRetract: If no action is recorded for the day.
        """
        if self._day is None or not self._log:
            raise NothingToRetract("No action recorded for the day")
        log = self._log.copy()
        action = log.retract_last()
        if log:
            normalized = self._normalize(log, self._day)
            self.store.save_day(self._day, log, normalized)
            self._log = log
        else:
            self.store.reset_day()
            self._day, self._log = None, ActionLog()
        logger.debug("Retracted %s", action)
        return action

    def amend_day(
        self,
        day: date,
        corrections: Iterable[Action],
        policy: Optional[OverlapPolicy] = None,
    ) -> DaySummary:
        """Apply fixed bookings to an already finalized day.

        Raises:
            InvalidTransition: If the day is still open or was never finalized.
            ValidationError: If a correction is not a fixed booking of that day.
            OverlapConflict: If a correction overlaps under the reject policy.
        """
        if day == self._day:
            raise InvalidTransition(f"{day.isoformat()} is still open; submit corrections instead")
        week = self.store.load_week(day)
        if not week.has_day(day):
            raise InvalidTransition(f"{day.isoformat()} has not been finalized")

        fixed = []
        for action in corrections:
            action = self._prepare(action)
            if not action.is_fixed:
                raise InvalidTransition(f"Only fixed bookings can amend a finalized day, got {action}")
            if action.day != day:
                raise InvalidInstant(f"Correction {action} does not belong to {day.isoformat()}")
            fixed.append(BookingRecord(action.interval, action.issue.ident, action.issue.comment))

        records = merge_fixed(week.records(day), fixed, policy or self.config.overlap_policy)
        self.store.write_week_day(day, records, overwrite=True)
        logger.info("Amended %s with %d corrections", day.isoformat(), len(fixed))
        return summarize_day(day, records, finalized=True)

    # ========== Queries ==========

    def current_state(self, now: datetime) -> CurrentState:
        """Idle, or the active issue with the time since it (re)started."""
        now = self._now(now)
        if self._day is None or not self._log:
            return CurrentState(working=False, day_state=DayState.IDLE)
        normalized = self._normalize(self._log, self._day, now=now)
        active = normalized.active
        if active is None:
            return CurrentState(working=False, day_state=normalized.state)
        return CurrentState(
            working=True,
            day_state=normalized.state,
            issue=active.issue.ident,
            comment=active.issue.comment,
            since=active.started_at,
            elapsed=active.elapsed(now),
            interruption=active.interruption,
            suspended=tuple(e.issue.ident for e in normalized.suspended),
        )

    def normalized_day(self, now: Optional[datetime] = None) -> Optional[NormalizedDay]:
        """Normalized view of the open day, None if no day is open."""
        if self._day is None or not self._log:
            return None
        return self._normalize(self._log, self._day, now=self._now(now) if now else None)

    def day_summary(self, day: Optional[date] = None, now: Optional[datetime] = None) -> DaySummary:
        """Summary of a finalized day or the open one.

        For the open day, ``now`` adds the running task up to that instant.
        A day without any data yields an empty summary.
        """
        if day is None:
            day = self._day or (self._now(now).date() if now else None)
        if day is not None and day == self._day:
            normalized = self.normalized_day(now)
            records = normalized.provisional(self._now(now)) if now else list(normalized.records)
            return summarize_day(day, records, normalized.inconsistencies)
        if day is None:
            return summarize_day(None, [])
        week = self.store.load_week(day)
        return summarize_day(day, week.records(day), finalized=week.has_day(day))

    def week_summary(self, day: Optional[date] = None, now: Optional[datetime] = None) -> WeekSummary:
        """Summary of the ISO week containing ``day`` (default: the open day).

        Without a day to pick the week from, the summary is empty.
        """
        if day is None:
            day = self._day or (self._now(now).date() if now else None)
        if day is None:
            return summarize_week(None, [])
        label = week_label(day)
        week = self.store.load_week(day)
        days = [summarize_day(d, week.records(d), finalized=True) for d in sorted(week.days)]
        if self._day is not None and week_label(self._day) == label and not week.has_day(self._day):
            days.append(self.day_summary(self._day, now))
        return summarize_week(label, days)

    def export(
        self,
        scope: str = "day",
        day: Optional[date] = None,
        fmt: str = "csv",
        now: Optional[datetime] = None,
        rounded: bool = False,
        combined: Optional[bool] = None,
    ) -> str:
        """Render the records of a day or week as export text.

        Args:
            scope: "day" or "week"
            day: Day (or any day of the week) to export; default the open day
            fmt: "csv" or "pipe"
            now: Include the running task up to this instant
            rounded: Round bookings to the configured resolution
            combined: One booking per issue and day; default from config
        """
        if fmt not in EXPORT_FORMATS:
            raise ValueError(f"Unknown export format: {fmt!r}. Available: {sorted(EXPORT_FORMATS)}")
        if scope == "day":
            days = [self.day_summary(day, now)]
        elif scope == "week":
            days = self.week_summary(day, now).days
        else:
            raise ValueError(f"Unknown scope: {scope!r}")

        if combined is None:
            combined = self.config.combine_bookings
        resolution = timedelta(minutes=self.config.resolution_minutes)

        records: list[BookingRecord] = []
        for summary in days:
            day_records = summary.records
            if combined:
                day_records = combine_records(day_records)
            if rounded:
                day_records = round_records(day_records, resolution)
            records.extend(day_records)

        if fmt == "csv":
            return EXPORT_FORMATS[fmt](records, delimiter=self.config.csv_delimiter)
        return EXPORT_FORMATS[fmt](records)

    def recent_issues(self, limit: int = 10) -> list[str]:
        """Most recently booked issues across finalized weeks and the open day."""
        records = [r for week in self.store.load_all_weeks() for r in week.records()]
        normalized = self.normalized_day()
        if normalized is not None:
            records.extend(normalized.records)
        issues = recent_issues(records, limit)
        if normalized is not None and normalized.active is not None:
            active = normalized.active.issue.ident
            issues = [active] + [i for i in issues if i != active][:limit - 1]
        return issues
