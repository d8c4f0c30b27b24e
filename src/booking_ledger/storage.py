"""Persistence of the in-progress day and the finalized week files.

Layout inside the data directory::

    current-day.json     actions of the day in progress (+ cached records)
    2026-W42.json        finalized records, one file per ISO week

Both are written through :func:`atomic_write`, so readers only ever see a
complete old or a complete new file. Serialization is deterministic: sorted
keys, two-space indent and one record per line, so that the files diff well
under version control.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Iterable, Optional

from .action_log import ActionLog
from .errors import CorruptLedgerFile, LedgerError, RotationConflict, StorageError
from .locking import atomic_write, discard_stale_temp, file_lock
from .models import BookingRecord
from .normalizer import NormalizedDay

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1
DAY_FILE_NAME = "current-day.json"


# ========== Deterministic JSON ==========

def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool))


def _is_flat(value: Any) -> bool:
    """True for values rendered on a single line inside an array."""
    if _is_scalar(value):
        return True
    if isinstance(value, dict):
        return all(
            _is_scalar(v) or (isinstance(v, list) and all(_is_scalar(i) for i in v))
            for v in value.values()
        )
    return False


def render_json(value: Any, indent: int = 0) -> str:
    """Render JSON with sorted keys and one flat array item per line."""
    pad = "  " * indent
    if isinstance(value, dict):
        if not value:
            return "{}"
        items = [
            f"{pad}  {json.dumps(key, ensure_ascii=False)}: {render_json(value[key], indent + 1)}"
            for key in sorted(value)
        ]
        return "{\n" + ",\n".join(items) + "\n" + pad + "}"
    if isinstance(value, list):
        if not value:
            return "[]"
        items = []
        for item in value:
            if _is_flat(item):
                text = json.dumps(item, sort_keys=True, ensure_ascii=False, separators=(", ", ": "))
            else:
                text = render_json(item, indent + 1)
            items.append(f"{pad}  {text}")
        return "[\n" + ",\n".join(items) + "\n" + pad + "]"
    return json.dumps(value, ensure_ascii=False)


def week_label(day: date) -> str:
    """ISO week label, e.g. 2026-W42."""
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


# ========== Stored documents ==========

@dataclass
class StoredDay:
    """Contents of the current-day file."""
    day: Optional[date]
    log: ActionLog
    records: tuple[BookingRecord, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.log


@dataclass
class WeekLedger:
    """Finalized days of one ISO week, ordered by date."""
    week: str
    days: dict[date, tuple[BookingRecord, ...]] = field(default_factory=dict)

    def has_day(self, day: date) -> bool:
        return day in self.days

    def records(self, day: Optional[date] = None) -> list[BookingRecord]:
        if day is not None:
            return list(self.days.get(day, ()))
        return [r for d in sorted(self.days) for r in self.days[d]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": FORMAT_VERSION,
            "week": self.week,
            "days": [
                {
                    "date": d.isoformat(),
                    "weekday": d.isoweekday(),
                    "records": [r.to_dict() for r in self.days[d]],
                }
                for d in sorted(self.days)
            ],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WeekLedger:
        week = cls(week=data["week"])
        for item in data.get("days", []):
            day = date.fromisoformat(item["date"])
            week.days[day] = tuple(BookingRecord.from_dict(r) for r in item.get("records", []))
        return week


class LedgerStore:
    """Reads and writes the day file and the week files of a data directory."""

    def __init__(self, data_dir: Path, lock_timeout: float = 10.0):
        self.data_dir = Path(data_dir)
        self.lock_timeout = lock_timeout

    @property
    def day_path(self) -> Path:
        return self.data_dir / DAY_FILE_NAME

    def week_path(self, day: date) -> Path:
        return self.data_dir / f"{week_label(day)}.json"

    def open(self) -> None:
        """Create the data directory and drop uncommitted writes of a killed process."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        discard_stale_temp(self.day_path)
        for tmp in sorted(self.data_dir.glob("*-W*.json.tmp")):
            discard_stale_temp(tmp.with_suffix(""))

    def _read_json(self, path: Path) -> Optional[dict[str, Any]]:
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise CorruptLedgerFile(f"Invalid ledger file {path}: {e}") from e
        except OSError as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def _write_json(self, path: Path, data: dict[str, Any]) -> None:
        try:
            with atomic_write(path) as f:
                f.write(render_json(data) + "\n")
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    # ========== Day file ==========

    def load_day(self) -> Optional[StoredDay]:
        """Load the in-progress day, or None if no day file exists."""
        data = self._read_json(self.day_path)
        if data is None:
            return None
        try:
            day = date.fromisoformat(data["date"]) if data.get("date") else None
            log = ActionLog.from_list(data.get("actions", []))
            records = tuple(BookingRecord.from_dict(r) for r in data.get("records", []))
        except (KeyError, TypeError, ValueError, LedgerError) as e:
            raise CorruptLedgerFile(f"Invalid day file {self.day_path}: {e}") from e
        return StoredDay(day=day, log=log, records=records)

    def save_day(self, day: Optional[date], log: ActionLog, normalized: Optional[NormalizedDay] = None) -> None:
        """Rewrite the day file with the action log and the derived records."""
        data: dict[str, Any] = {
            "format": FORMAT_VERSION,
            "date": day.isoformat() if day else None,
            "actions": log.to_list(),
            "records": [],
            "inconsistencies": [],
        }
        if normalized is not None:
            data.update(normalized.to_dict())
        self._write_json(self.day_path, data)

    def reset_day(self) -> None:
        """Clear the day file for the next day."""
        self.save_day(None, ActionLog())

    # ========== Week files ==========

    def load_week(self, day: date) -> WeekLedger:
        """Load the week containing ``day``; empty if no file exists yet."""
        path = self.week_path(day)
        data = self._read_json(path)
        if data is None:
            return WeekLedger(week=week_label(day))
        try:
            return WeekLedger.from_dict(data)
        except (KeyError, TypeError, ValueError, LedgerError) as e:
            raise CorruptLedgerFile(f"Invalid week file {path}: {e}") from e

    def list_weeks(self) -> list[Path]:
        return sorted(self.data_dir.glob("*-W*.json"))

    def load_all_weeks(self) -> list[WeekLedger]:
        weeks = []
        for path in self.list_weeks():
            data = self._read_json(path)
            try:
                weeks.append(WeekLedger.from_dict(data))
            except (KeyError, TypeError, ValueError, LedgerError) as e:
                raise CorruptLedgerFile(f"Invalid week file {path}: {e}") from e
        return weeks

    def write_week_day(self, day: date, records: Iterable[BookingRecord], overwrite: bool = False) -> WeekLedger:
        """Store a finalized day in its week file.

        Raises:
            RotationConflict: If the date is already finalized and overwrite is False
        """
        path = self.week_path(day)
        with file_lock(path, timeout=self.lock_timeout):
            week = self.load_week(day)
            if week.has_day(day) and not overwrite:
                raise RotationConflict(
                    f"{day.isoformat()} is already finalized in {path.name}"
                )
            week.days[day] = tuple(sorted(records))
            self._write_json(path, week.to_dict())
        return week

    def rotate(self, day: date, records: Iterable[BookingRecord], overwrite: bool = False) -> WeekLedger:
        """Move a finalized day into its week file and reset the day file.

        The week file is committed first. A crash before the day file is
        reset leaves a day that is already present in its week; the ledger
        detects and completes that on its next start.

        Raises:
            RotationConflict: If the date is already finalized and overwrite is False
        """
        week = self.write_week_day(day, records, overwrite=overwrite)
        self.reset_day()
        logger.info("Rotated %s into %s", day.isoformat(), self.week_path(day).name)
        return week
