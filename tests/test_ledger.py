"""Tests for the BookingLedger facade."""

import json
from datetime import date, datetime, timedelta, timezone

import pytest

from booking_ledger.config import LedgerConfig
from booking_ledger.errors import (
    AlreadyRunning,
    InvalidInstant,
    InvalidIssue,
    InvalidTransition,
    NothingToRetract,
    OutOfOrderAction,
    OverlapConflict,
)
from booking_ledger.interval import TimeInterval
from booking_ledger.ledger import BookingLedger
from booking_ledger.locking import InstanceLock
from booking_ledger.models import Action, BookingRecord, InconsistencyKind, IssueRef
from booking_ledger.normalizer import DayState, OverlapPolicy
from booking_ledger.query import sum_csv_durations

MONDAY = date(2026, 10, 12)
TUESDAY = date(2026, 10, 13)


def t(hm: str, day: date = MONDAY) -> datetime:
    hour, minute = map(int, hm.split(":"))
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def rec(a: str, b: str, issue: str, comment: str = "", day: date = MONDAY) -> BookingRecord:
    return BookingRecord(TimeInterval(t(a, day), t(b, day)), issue, comment)


def submit_all(ledger, actions):
    return [ledger.submit(action) for action in actions]


def scenario(day: date = MONDAY):
    return [
        Action.start_day(t("08:00", day)),
        Action.start_work(t("08:05", day), IssueRef("ISSUE-1")),
        Action.start_interruption(t("09:00", day), IssueRef("MEETING")),
        Action.end_interruption(t("09:30", day)),
        Action.end_work(t("17:00", day)),
        Action.end_day(t("17:05", day)),
    ]


SCENARIO_RECORDS = [
    rec("08:05", "09:00", "ISSUE-1"),
    rec("09:00", "09:30", "MEETING"),
    rec("09:30", "17:00", "ISSUE-1"),
]


class TestSubmit:
    """Tests for submitting actions."""

    def test_first_action_opens_day(self, ledger):
        result = ledger.submit(Action.start_day(t("08:00")))
        assert ledger.day == MONDAY
        assert result.normalized.state == DayState.OPEN
        assert result.rotated == ()
        assert ledger.store.load_day().day == MONDAY

    def test_end_day_rotates(self, ledger):
        results = submit_all(ledger, scenario())
        assert results[-1].rotated == (MONDAY,)
        assert list(results[-1].normalized.records) == SCENARIO_RECORDS
        assert ledger.day is None
        assert ledger.store.load_week(MONDAY).records(MONDAY) == SCENARIO_RECORDS
        assert ledger.store.load_day().is_empty

    def test_day_file_survives_each_action(self, ledger):
        submit_all(ledger, scenario()[:3])
        data = json.loads(ledger.store.day_path.read_text(encoding="utf-8"))
        assert data["date"] == "2026-10-12"
        assert [a["kind"] for a in data["actions"]] == ["start_day", "start_work", "start_interruption"]
        assert data["records"] == [SCENARIO_RECORDS[0].to_dict()]

    def test_rejected_action_changes_nothing(self, ledger):
        submit_all(ledger, scenario()[:2])
        before = ledger.store.day_path.read_bytes()

        with pytest.raises(InvalidTransition):
            ledger.submit(Action.end_interruption(t("10:00")))
        with pytest.raises(OutOfOrderAction):
            ledger.submit(Action.end_work(t("08:00")))

        assert len(ledger.log) == 2
        assert ledger.store.day_path.read_bytes() == before

    def test_start_day_on_finalized_date_rejected(self, ledger):
        submit_all(ledger, scenario())
        with pytest.raises(InvalidTransition, match="amend_day"):
            ledger.submit(Action.start_day(t("18:00")))

    def test_action_before_open_day_rejected(self, ledger):
        ledger.submit(Action.start_day(t("08:00", TUESDAY)))
        with pytest.raises(InvalidInstant):
            ledger.submit(Action.start_day(t("08:00", MONDAY)))

    def test_naive_instants_use_configured_zone(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="Europe/Vienna")
        ledger = ledger_factory(config)
        result = ledger.submit(Action.start_day(datetime(2026, 10, 12, 8, 0)))
        assert result.action.at == t("06:00")
        assert result.action.at.utcoffset() == timedelta(hours=2)

    def test_aware_instants_truncated(self, ledger):
        result = ledger.submit(Action.start_day(t("08:00").replace(second=5, microsecond=123)))
        assert result.action.at == t("08:00").replace(second=5)

    def test_default_comment_applied(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", default_comment="dev")
        ledger = ledger_factory(config)
        ledger.submit(Action.start_day(t("08:00")))
        result = ledger.submit(Action.start_work(t("08:00"), IssueRef("A")))
        assert result.action.issue.comment == "dev"

    def test_issue_pattern(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", issue_pattern=r"[A-Z]+-\d+")
        ledger = ledger_factory(config)
        ledger.submit(Action.start_day(t("08:00")))
        result = ledger.submit(Action.start_work(t("08:00"), IssueRef("proj-12")))
        assert result.action.issue.ident == "PROJ-12"
        with pytest.raises(InvalidIssue):
            ledger.submit(Action.start_work(t("09:00"), IssueRef("lunch")))

    def test_reject_policy(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", overlap_policy=OverlapPolicy.REJECT)
        ledger = ledger_factory(config)
        submit_all(ledger, scenario()[:4])
        with pytest.raises(OverlapConflict):
            ledger.submit(Action.book_fixed(TimeInterval(t("08:30"), t("08:45")), IssueRef("CALL")))
        assert len(ledger.log) == 4

    def test_reject_policy_guards_running_task(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", overlap_policy=OverlapPolicy.REJECT)
        ledger = ledger_factory(config)
        submit_all(ledger, [
            Action.start_day(t("08:00")),
            Action.start_work(t("09:00"), IssueRef("A")),
        ])
        with pytest.raises(OverlapConflict, match="running since"):
            ledger.submit(Action.book_fixed(TimeInterval(t("10:00"), t("11:00")), IssueRef("X")))
        assert len(ledger.log) == 2

        submit_all(ledger, [Action.end_work(t("12:00")), Action.end_day(t("12:00"))])
        assert ledger.store.load_week(MONDAY).records(MONDAY) == [rec("09:00", "12:00", "A")]

    def test_reject_policy_allows_fixed_booking_before_running_task(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", overlap_policy=OverlapPolicy.REJECT)
        ledger = ledger_factory(config)
        submit_all(ledger, [
            Action.start_day(t("08:00")),
            Action.book_fixed(TimeInterval(t("08:00"), t("08:30")), IssueRef("X")),
            Action.start_work(t("09:00"), IssueRef("A")),
        ])
        with pytest.raises(OverlapConflict):
            ledger.submit(Action.book_fixed(TimeInterval(t("13:00"), t("14:00")), IssueRef("Y")))
        submit_all(ledger, [Action.end_work(t("12:00")), Action.end_day(t("12:00"))])
        assert ledger.store.load_week(MONDAY).records(MONDAY) == [
            rec("08:00", "08:30", "X"),
            rec("09:00", "12:00", "A"),
        ]

    def test_fixed_booking_overwrites(self, ledger):
        submit_all(ledger, scenario()[:4])
        result = ledger.submit(Action.book_fixed(TimeInterval(t("08:30"), t("08:45")), IssueRef("CALL")))
        assert list(result.normalized.records) == [
            rec("08:05", "08:30", "ISSUE-1"),
            rec("08:30", "08:45", "CALL"),
            rec("08:45", "09:00", "ISSUE-1"),
            rec("09:00", "09:30", "MEETING"),
        ]

    def test_hooks_called(self, config, instance_lock):
        rotated = []
        config.hooks = {
            "pre_submit": lambda action: None,
            "post_rotate": lambda day, records: rotated.append((day, records)),
        }
        ledger = BookingLedger(config, instance_lock)
        submit_all(ledger, scenario())
        assert rotated == [(MONDAY, SCENARIO_RECORDS)]


class TestImplicitClose:
    """Tests for a day that was never ended."""

    def test_next_day_closes_previous(self, ledger):
        submit_all(ledger, [
            Action.start_day(t("08:00")),
            Action.start_work(t("08:05"), IssueRef("A")),
            Action.end_work(t("12:00")),
        ])
        result = ledger.submit(Action.start_day(t("08:00", TUESDAY)))

        assert result.rotated == (MONDAY,)
        assert ledger.day == TUESDAY
        assert ledger.store.load_week(MONDAY).records(MONDAY) == [rec("08:05", "12:00", "A")]
        assert InconsistencyKind.MISSING_DAY_END in [i.kind for i in result.closed.inconsistencies]

    def test_close_covers_later_fixed_booking(self, ledger):
        submit_all(ledger, [
            Action.start_day(t("08:00")),
            Action.start_work(t("09:00"), IssueRef("A")),
            Action.book_fixed(TimeInterval(t("10:00"), t("11:00")), IssueRef("X")),
        ])
        result = ledger.submit(Action.start_day(t("08:00", TUESDAY)))

        assert result.closed.day_end == t("11:00")
        assert ledger.store.load_week(MONDAY).records(MONDAY) == [
            rec("09:00", "10:00", "A"),
            rec("10:00", "11:00", "X"),
        ]

    def test_invalid_new_day_action_keeps_old_day(self, ledger):
        submit_all(ledger, scenario()[:2])
        with pytest.raises(InvalidTransition):
            ledger.submit(Action.end_work(t("09:00", TUESDAY)))
        assert ledger.day == MONDAY
        assert not ledger.store.load_week(MONDAY).has_day(MONDAY)


class TestRecovery:
    """Tests for restarting on an existing data directory."""

    def test_resumes_open_day(self, config):
        with InstanceLock(config.get_data_path()) as lock:
            submit_all(BookingLedger(config, lock), scenario()[:2])

        with InstanceLock(config.get_data_path()) as lock:
            ledger = BookingLedger(config, lock)
            assert ledger.day == MONDAY
            state = ledger.current_state(t("10:05"))
            assert state.working
            assert state.issue == "ISSUE-1"
            assert state.elapsed == timedelta(hours=2)

    def test_completes_interrupted_rotation(self, config):
        with InstanceLock(config.get_data_path()) as lock:
            ledger = BookingLedger(config, lock)
            submit_all(ledger, scenario()[:5])
            # week committed, process killed before the day file was reset
            ledger.store.write_week_day(MONDAY, SCENARIO_RECORDS)

        with InstanceLock(config.get_data_path()) as lock:
            ledger = BookingLedger(config, lock)
            assert ledger.day is None
            assert ledger.store.load_day().is_empty
            assert ledger.store.load_week(MONDAY).records(MONDAY) == SCENARIO_RECORDS

    def test_second_instance_rejected(self, config, ledger):
        with pytest.raises(AlreadyRunning):
            BookingLedger(config, InstanceLock(config.get_data_path()))


class TestRetract:
    """Tests for undo."""

    def test_retract_steps_back(self, ledger):
        submit_all(ledger, scenario()[:2])
        assert ledger.retract_last().kind.value == "start_work"
        assert ledger.current_state(t("09:00")).day_state == DayState.OPEN
        assert ledger.retract_last().kind.value == "start_day"
        assert ledger.day is None
        with pytest.raises(NothingToRetract):
            ledger.retract_last()

    def test_retract_persists(self, config, ledger):
        submit_all(ledger, scenario()[:3])
        ledger.retract_last()
        assert len(ledger.store.load_day().log) == 2

    def test_nothing_to_retract_after_rotation(self, ledger):
        submit_all(ledger, scenario())
        with pytest.raises(NothingToRetract):
            ledger.retract_last()


class TestAmendDay:
    """Tests for correcting finalized days."""

    def test_amend_overwrites(self, ledger):
        submit_all(ledger, scenario())
        summary = ledger.amend_day(MONDAY, [
            Action.book_fixed(TimeInterval(t("12:00"), t("12:30")), IssueRef("LUNCH")),
        ])
        assert summary.finalized
        assert summary.records == [
            rec("08:05", "09:00", "ISSUE-1"),
            rec("09:00", "09:30", "MEETING"),
            rec("09:30", "12:00", "ISSUE-1"),
            rec("12:00", "12:30", "LUNCH"),
            rec("12:30", "17:00", "ISSUE-1"),
        ]
        assert ledger.store.load_week(MONDAY).records(MONDAY) == summary.records

    def test_amend_reject_policy(self, ledger):
        submit_all(ledger, scenario())
        before = ledger.store.week_path(MONDAY).read_bytes()
        with pytest.raises(OverlapConflict):
            ledger.amend_day(
                MONDAY,
                [Action.book_fixed(TimeInterval(t("12:00"), t("12:30")), IssueRef("LUNCH"))],
                policy=OverlapPolicy.REJECT,
            )
        assert ledger.store.week_path(MONDAY).read_bytes() == before

    def test_amend_open_day_rejected(self, ledger):
        submit_all(ledger, scenario()[:2])
        with pytest.raises(InvalidTransition):
            ledger.amend_day(MONDAY, [])

    def test_amend_unknown_day_rejected(self, ledger):
        with pytest.raises(InvalidTransition):
            ledger.amend_day(MONDAY, [])

    def test_amend_requires_fixed_bookings_of_that_day(self, ledger):
        submit_all(ledger, scenario())
        with pytest.raises(InvalidTransition):
            ledger.amend_day(MONDAY, [Action.start_work(t("12:00"), IssueRef("A"))])
        with pytest.raises(InvalidInstant):
            ledger.amend_day(MONDAY, [
                Action.book_fixed(TimeInterval(t("12:00", TUESDAY), t("12:30", TUESDAY)), IssueRef("A")),
            ])


class TestQueries:
    """Tests for state, summaries and export."""

    def test_idle_without_day(self, ledger):
        state = ledger.current_state(t("08:00"))
        assert not state.working
        assert state.day_state == DayState.IDLE
        assert state.to_dict()["status"] == "idle"

    def test_interruption_state(self, ledger):
        submit_all(ledger, scenario()[:3])
        state = ledger.current_state(t("09:10"))
        assert state.interruption
        assert state.issue == "MEETING"
        assert state.suspended == ("ISSUE-1",)
        assert state.to_dict()["elapsed"] == "00:10:00"

    def test_day_summary_of_open_day_includes_running_task(self, ledger):
        submit_all(ledger, scenario()[:2])
        summary = ledger.day_summary(now=t("10:05"))
        assert summary.total == timedelta(hours=2)
        assert not summary.finalized

    def test_day_summary_of_finalized_day(self, ledger):
        submit_all(ledger, scenario())
        summary = ledger.day_summary(MONDAY)
        assert summary.finalized
        assert summary.total == timedelta(hours=8, minutes=55)
        assert summary.by_issue == {"ISSUE-1": timedelta(hours=8, minutes=25), "MEETING": timedelta(minutes=30)}

    def test_day_summary_without_any_day(self, ledger):
        summary = ledger.day_summary()
        assert summary.day is None
        assert summary.records == []

    def test_week_summary_includes_open_day(self, ledger):
        submit_all(ledger, scenario())
        submit_all(ledger, [
            Action.start_day(t("08:00", TUESDAY)),
            Action.start_work(t("08:00", TUESDAY), IssueRef("ISSUE-2")),
        ])
        week = ledger.week_summary(now=t("10:00", TUESDAY))
        assert week.week == "2026-W42"
        assert [d.day for d in week.days] == [MONDAY, TUESDAY]
        assert week.total == timedelta(hours=10, minutes=55)

    def test_week_summary_without_any_day(self, ledger):
        week = ledger.week_summary()
        assert week.week is None
        assert week.days == []
        assert week.total == timedelta(0)
        assert ledger.export(scope="week") == "start,end,issue,duration,comment\n"
        assert ledger.export(scope="week", fmt="pipe") == ""

    def test_running_task_yields_to_fixed_booking(self, ledger):
        submit_all(ledger, [
            Action.start_day(t("08:00")),
            Action.start_work(t("09:00"), IssueRef("A")),
            Action.book_fixed(TimeInterval(t("10:00"), t("11:00")), IssueRef("X")),
        ])
        summary = ledger.day_summary(now=t("12:00"))
        assert summary.records == [
            rec("09:00", "10:00", "A"),
            rec("10:00", "11:00", "X"),
            rec("11:00", "12:00", "A"),
        ]
        assert summary.total == timedelta(hours=3)
        assert ledger.week_summary(now=t("12:00")).total == timedelta(hours=3)
        assert sum_csv_durations(ledger.export(now=t("12:00"))) == timedelta(hours=3)

    def test_export_csv_matches_totals(self, ledger):
        submit_all(ledger, scenario())
        text = ledger.export(day=MONDAY)
        assert sum_csv_durations(text) == timedelta(hours=8, minutes=55)
        assert len(text.splitlines()) == 4

    def test_export_pipe_rounded(self, ledger):
        submit_all(ledger, scenario())
        assert ledger.export(day=MONDAY, fmt="pipe", rounded=True) == (
            "2026-10-12|08:00|09:00|ISSUE-1|\n"
            "2026-10-12|09:00|09:30|MEETING|\n"
            "2026-10-12|09:30|17:00|ISSUE-1|\n"
        )

    def test_export_combined(self, ledger):
        submit_all(ledger, scenario())
        assert ledger.export(day=MONDAY, fmt="pipe", combined=True) == (
            "2026-10-12|08:05|16:30|ISSUE-1|\n"
            "2026-10-12|16:30|17:00|MEETING|\n"
        )

    def test_export_week_uses_delimiter(self, temp_project, ledger_factory):
        config = LedgerConfig(project_root=temp_project, timezone="UTC", csv_delimiter=";")
        ledger = ledger_factory(config)
        submit_all(ledger, scenario())
        submit_all(ledger, scenario(TUESDAY))
        text = ledger.export(scope="week", day=MONDAY)
        assert text.splitlines()[0] == "start;end;issue;duration;comment"
        assert sum_csv_durations(text, delimiter=";") == timedelta(hours=17, minutes=50)

    def test_export_unknown_format(self, ledger):
        with pytest.raises(ValueError):
            ledger.export(fmt="xlsx")
        with pytest.raises(ValueError):
            ledger.export(scope="month")

    def test_recent_issues_active_first(self, ledger):
        submit_all(ledger, scenario())
        submit_all(ledger, [
            Action.start_day(t("08:00", TUESDAY)),
            Action.start_work(t("08:00", TUESDAY), IssueRef("ISSUE-2")),
            Action.end_work(t("09:00", TUESDAY)),
            Action.start_work(t("09:00", TUESDAY), IssueRef("MEETING")),
        ])
        assert ledger.recent_issues() == ["MEETING", "ISSUE-2", "ISSUE-1"]
        assert ledger.recent_issues(limit=2) == ["MEETING", "ISSUE-2"]
