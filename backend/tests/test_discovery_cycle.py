"""Tests for DiscoveryCycleCalculator."""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import at, health_change, status_change
from services.dates import quarter_for
from services.discovery_cycle import (
    TERMINAL_CONDITIONS,
    DiscoveryCycleCalculator,
    EndDateLogic,
    TerminalCondition,
    is_completed_cycle,
)
from services.models import FIELD_STATUS, DiscoveryCycleRecord, StatusTransition, WorkItem


@pytest.fixture
def calculator():
    return DiscoveryCycleCalculator()


class TestNoDiscovery:
    """Issues that never entered discovery."""

    def test_empty_log(self, calculator):
        """An issue without history is No Discovery, not an error."""
        record = calculator.compute(WorkItem("HT-9", "01 Inbox"), [])
        assert record.end_date_logic == EndDateLogic.NO_DISCOVERY
        assert record.discovery_start_date is None
        assert record.discovery_end_date is None

    def test_none_log(self, calculator):
        """A missing log behaves like an empty one."""
        record = calculator.compute(WorkItem("HT-9", "01 Inbox"), None)
        assert record.end_date_logic == EndDateLogic.NO_DISCOVERY

    def test_never_left_inbox(self, calculator):
        """Status changes that stay before discovery are No Discovery."""
        log = [status_change("2025-01-01", "01 Inbox")]
        record = calculator.compute(WorkItem("HT-9", "01 Inbox"), log)
        assert record.end_date_logic == EndDateLogic.NO_DISCOVERY
        assert record.calendar_days_in_discovery is None

    def test_health_only_log(self, calculator):
        """Health changes alone never start discovery."""
        log = [health_change("2025-01-01", "On Track")]
        record = calculator.compute(WorkItem("HT-9", "01 Inbox"), log)
        assert record.end_date_logic == EndDateLogic.NO_DISCOVERY


class TestCompletedCycles:
    """Issues whose discovery reached a terminal status."""

    def test_reached_build_scenario(self, calculator):
        """Inbox -> Generative Discovery -> Build gives a 36 day cycle in Q1."""
        log = [
            status_change("2025-01-01", "01 Inbox"),
            status_change("2025-01-05", "02 Generative Discovery", "01 Inbox"),
            status_change("2025-02-10", "06 Build", "02 Generative Discovery"),
        ]
        record = calculator.compute(WorkItem("X-1", "06 Build"), log)

        assert record.discovery_start_date == at("2025-01-05")
        assert record.discovery_end_date == at("2025-02-10")
        assert record.calendar_days_in_discovery == 36
        assert record.active_days_in_discovery == 36
        assert record.end_date_logic == EndDateLogic.REACHED_BUILD
        assert record.completion_quarter == "Q1_2025"

    def test_sample_build_item(self, calculator, sample_items, sample_logs):
        """Problem Discovery start also counts as discovery entry."""
        record = calculator.compute(sample_items[0], sample_logs["HT-1"])
        assert record.discovery_start_date == at("2025-01-10")
        assert record.calendar_days_in_discovery == 36
        assert record.end_date_logic == EndDateLogic.REACHED_BUILD

    def test_reached_beta(self, calculator, sample_items, sample_logs):
        """First terminal status after the start decides the tag."""
        record = calculator.compute(sample_items[2], sample_logs["HT-3"])
        assert record.end_date_logic == EndDateLogic.REACHED_BETA
        assert record.discovery_end_date == at("2024-11-04")
        assert record.calendar_days_in_discovery == 30
        assert record.completion_quarter == "Q4_2024"

    @pytest.mark.parametrize("target,logic", [
        ("08 Live", EndDateLogic.REACHED_LIVE),
        ("09 Live", EndDateLogic.REACHED_LIVE),
        ("Won't Do", EndDateLogic.WONT_DO),
        ("Done", EndDateLogic.COMPLETED),
        ("Closed", EndDateLogic.COMPLETED),
    ])
    def test_terminal_tags(self, calculator, target, logic):
        """Each terminal status maps to its own tag."""
        log = [
            status_change("2025-04-01", "04 Problem Discovery", "01 Inbox"),
            status_change("2025-04-11", target, "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", target), log)
        assert record.end_date_logic == logic
        assert record.calendar_days_in_discovery == 10
        assert record.completion_quarter == "Q2_2025"

    def test_same_day_transition(self, calculator):
        """Zero days is a valid cycle length."""
        log = [
            status_change("2025-05-01", "02 Generative Discovery", hour=9),
            status_change("2025-05-01", "06 Build", hour=17),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 0
        assert record.active_days_in_discovery == 0

    def test_custom_terminal_condition(self):
        """A new terminal status only needs a new condition."""
        conditions = TERMINAL_CONDITIONS + (TerminalCondition("Reached QA", frozenset({"QA"})),)
        calculator = DiscoveryCycleCalculator(terminal_conditions=conditions)
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-08", "QA", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "QA"), log)
        assert record.end_date_logic == "Reached QA"
        assert record.calendar_days_in_discovery == 7


class TestIncompleteCycles:
    """Still in Discovery, Direct to Build and Unknown."""

    def test_still_in_discovery(self, calculator, sample_items, sample_logs):
        """Issues currently in a discovery phase have no end date."""
        record = calculator.compute(sample_items[1], sample_logs["HT-2"])
        assert record.end_date_logic == EndDateLogic.STILL_IN_DISCOVERY
        assert record.discovery_start_date == at("2025-01-06")
        assert record.discovery_end_date is None
        assert record.calendar_days_in_discovery is None
        assert record.completion_quarter is None

    def test_committed_counts_as_discovery(self, calculator):
        """03 Committed keeps the issue in discovery."""
        log = [
            status_change("2025-01-01", "02 Generative Discovery"),
            status_change("2025-01-15", "03 Committed", "02 Generative Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "03 Committed"), log)
        assert record.end_date_logic == EndDateLogic.STILL_IN_DISCOVERY

    def test_direct_to_build(self, calculator):
        """Skipping discovery is tagged and dated but is not a completed cycle."""
        log = [
            status_change("2025-02-01", "01 Inbox"),
            status_change("2025-02-20", "06 Build", "01 Inbox"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.end_date_logic == EndDateLogic.DIRECT_TO_BUILD
        assert record.discovery_start_date is None
        assert record.discovery_end_date == at("2025-02-20")
        assert record.completion_quarter == "Q1_2025"
        assert is_completed_cycle(record) is False

    def test_moved_back_to_inbox_is_unknown(self, calculator):
        """A log matching no terminal pattern falls back to Unknown."""
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-09", "01 Inbox", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "01 Inbox"), log)
        assert record.end_date_logic == EndDateLogic.UNKNOWN
        assert record.discovery_start_date == at("2025-01-01")
        assert record.discovery_end_date is None


class TestArchived:
    """Archived issues end discovery at their archive date."""

    def test_archived_while_in_discovery(self, calculator):
        """The archived-on date closes the cycle."""
        item = WorkItem("HT-7", "04 Problem Discovery", is_archived=True,
                        archived_on=at("2025-03-01"))
        log = [status_change("2025-01-01", "04 Problem Discovery")]
        record = calculator.compute(item, log)
        assert record.end_date_logic == EndDateLogic.ARCHIVED
        assert record.discovery_end_date == at("2025-03-01")
        assert record.calendar_days_in_discovery == 59
        assert record.completion_quarter == "Q1_2025"

    def test_archived_without_date_uses_last_transition(self, calculator):
        item = WorkItem("HT-7", "01 Inbox", is_archived=True)
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-21", "01 Inbox", "04 Problem Discovery"),
        ]
        record = calculator.compute(item, log)
        assert record.end_date_logic == EndDateLogic.ARCHIVED
        assert record.discovery_end_date == at("2025-01-21")
        assert record.calendar_days_in_discovery == 20

    def test_terminal_status_wins_over_archive(self, calculator):
        """A real terminal transition is reported even for archived issues."""
        item = WorkItem("HT-7", "06 Build", is_archived=True, archived_on=at("2025-06-01"))
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-11", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(item, log)
        assert record.end_date_logic == EndDateLogic.REACHED_BUILD


class TestActiveDays:
    """Paused time (On Hold health or an inactive status) is subtracted from calendar days."""

    def test_paused_interval_inside_window(self, calculator):
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            health_change("2025-01-05", "On Hold", "On Track"),
            health_change("2025-01-15", "On Track", "On Hold"),
            status_change("2025-01-31", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 30
        assert record.active_days_in_discovery == 20

    def test_on_hold_before_start(self, calculator):
        """Health already On Hold at the start counts from the start."""
        log = [
            health_change("2024-12-20", "On Hold", "On Track"),
            status_change("2025-01-01", "04 Problem Discovery"),
            health_change("2025-01-04", "On Track", "On Hold"),
            status_change("2025-01-11", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 10
        assert record.active_days_in_discovery == 7

    def test_on_hold_until_end(self, calculator):
        """An unfinished pause runs to the end date."""
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            health_change("2025-01-05", "On Hold", "On Track"),
            status_change("2025-01-11", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.active_days_in_discovery == 4

    def test_paused_whole_window_is_zero_active(self, calculator):
        log = [
            health_change("2024-12-01", "On Hold"),
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-11", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 10
        assert record.active_days_in_discovery == 0

    def test_changes_after_end_ignored(self, calculator):
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-11", "06 Build", "04 Problem Discovery"),
            health_change("2025-01-20", "On Hold", "On Track"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.active_days_in_discovery == 10

    def test_committed_parking_is_inactive(self, calculator):
        """Time parked in 03 Committed is subtracted like On Hold."""
        log = [
            status_change("2025-01-05", "02 Generative Discovery", "01 Inbox"),
            status_change("2025-01-10", "03 Committed", "02 Generative Discovery"),
            status_change("2025-02-01", "04 Problem Discovery", "03 Committed"),
            status_change("2025-02-10", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 36
        assert record.active_days_in_discovery == 14

    def test_inactive_status_and_on_hold_overlap_once(self, calculator):
        """An On Hold spell inside a Committed spell is not subtracted twice."""
        log = [
            status_change("2025-01-01", "04 Problem Discovery"),
            status_change("2025-01-05", "03 Committed", "04 Problem Discovery"),
            health_change("2025-01-07", "On Hold", "On Track"),
            health_change("2025-01-09", "On Track", "On Hold"),
            status_change("2025-01-15", "04 Problem Discovery", "03 Committed"),
            status_change("2025-01-21", "06 Build", "04 Problem Discovery"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 20
        assert record.active_days_in_discovery == 10

    def test_custom_inactive_statuses(self):
        calculator = DiscoveryCycleCalculator(inactive_statuses=frozenset())
        log = [
            status_change("2025-01-05", "02 Generative Discovery"),
            status_change("2025-01-10", "03 Committed", "02 Generative Discovery"),
            status_change("2025-02-10", "06 Build", "03 Committed"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.active_days_in_discovery == 36

    def test_active_never_exceeds_calendar(self, calculator):
        """Over many generated logs, 0 <= active <= calendar."""
        start = datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
        for pause_start in range(0, 12):
            for pause_len in range(0, 15):
                log = [
                    StatusTransition(start, FIELD_STATUS, None, "04 Problem Discovery"),
                    health_change((start + timedelta(days=pause_start)).date().isoformat(),
                                  "On Hold", "On Track"),
                    health_change((start + timedelta(days=pause_start + pause_len)).date().isoformat(),
                                  "On Track", "On Hold", hour=13),
                    StatusTransition(start + timedelta(days=10), FIELD_STATUS,
                                     "04 Problem Discovery", "06 Build"),
                ]
                record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
                assert 0 <= record.active_days_in_discovery <= record.calendar_days_in_discovery


class TestDeterminism:
    """compute() is pure and order-insensitive."""

    def test_same_input_same_result(self, calculator, sample_items, sample_logs):
        first = calculator.compute(sample_items[0], sample_logs["HT-1"])
        second = calculator.compute(sample_items[0], sample_logs["HT-1"])
        assert first.same_result(second)

    def test_unsorted_log_is_sorted(self, calculator, sample_items, sample_logs):
        ordered = calculator.compute(sample_items[0], sample_logs["HT-1"])
        shuffled = calculator.compute(sample_items[0], list(reversed(sample_logs["HT-1"])))
        assert ordered.same_result(shuffled)

    def test_naive_timestamps_taken_as_utc(self, calculator):
        log = [
            StatusTransition(datetime(2025, 1, 5, 12), FIELD_STATUS, "01 Inbox",
                             "02 Generative Discovery"),
            StatusTransition(datetime(2025, 2, 10, 12), FIELD_STATUS,
                             "02 Generative Discovery", "06 Build"),
        ]
        record = calculator.compute(WorkItem("X-1", "06 Build"), log)
        assert record.calendar_days_in_discovery == 36
        assert record.discovery_start_date.tzinfo is not None

    def test_days_counted_on_utc_dates(self, calculator):
        """A late-evening local transition lands on the next UTC day."""
        eastern = timezone(timedelta(hours=-5))
        log = [
            StatusTransition(datetime(2025, 1, 10, 23, 30, tzinfo=eastern), FIELD_STATUS,
                             "01 Inbox", "04 Problem Discovery"),
            StatusTransition(datetime(2025, 1, 12, 1, 0, tzinfo=timezone.utc), FIELD_STATUS,
                             "04 Problem Discovery", "06 Build"),
        ]
        record = calculator.compute(WorkItem("HT-7", "06 Build"), log)
        assert record.calendar_days_in_discovery == 1


class TestQuarterDerivation:
    """Completion quarter comes from the end date's calendar month and year."""

    @pytest.mark.parametrize("end,quarter", [
        (date(2025, 3, 31), "Q1_2025"),
        (date(2025, 10, 1), "Q4_2025"),
        (date(2024, 4, 1), "Q2_2024"),
        (date(2024, 9, 30), "Q3_2024"),
    ])
    def test_quarter_for(self, end, quarter):
        assert quarter_for(end) == quarter


class TestIsCompletedCycle:
    """Only finished cycles with both dates count."""

    def test_completed(self):
        record = DiscoveryCycleRecord("HT-1", at("2025-01-01"), at("2025-01-11"),
                                      EndDateLogic.REACHED_BUILD, 10, 10, "Q1_2025")
        assert is_completed_cycle(record) is True

    def test_archived_counts_as_completed(self):
        record = DiscoveryCycleRecord("HT-1", at("2025-01-01"), at("2025-01-11"),
                                      EndDateLogic.ARCHIVED, 10, 10, "Q1_2025")
        assert is_completed_cycle(record) is True

    def test_missing_end_date(self):
        record = DiscoveryCycleRecord("HT-1", at("2025-01-01"), None, EndDateLogic.UNKNOWN)
        assert is_completed_cycle(record) is False
