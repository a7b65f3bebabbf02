"""Weekly workload data source strategy.

Decides, per week, where the numbers come from:

1. Live data for the current week and recent weeks (still settling)
2. Stored baseline snapshot for older weeks that have one
3. Historical reconstruction from changelogs for older weeks without one.
   This is the slow path; the ``reconstruction`` tag marks weeks that
   should get a snapshot backfilled.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from services.dates import to_utc
from services.models import (
    ACTIVE_WORKLOAD_STATUSES,
    CapacityBaselinePoint,
    HealthBreakdown,
    StatusBreakdown,
)

logger = logging.getLogger(__name__)

WEEK_CURRENT = "current"
WEEK_RECENT = "recent"
WEEK_HISTORICAL = "historical"

SOURCE_LIVE = "live"
SOURCE_SNAPSHOT = "snapshot"
SOURCE_RECONSTRUCTION = "reconstruction"

DEFAULT_RECENT_WEEK_THRESHOLD_DAYS = 14


@dataclass(frozen=True)
class DataSourceDecision:
    source: str
    week_kind: str
    snapshot: Optional[CapacityBaselinePoint] = None


@dataclass
class WeeklyWorkload:
    """Workload for one week. ``total`` always equals the health breakdown total."""
    week: date
    source: str
    member_counts: dict = field(default_factory=dict)
    health_breakdown: HealthBreakdown = field(default_factory=HealthBreakdown)
    status_breakdown: StatusBreakdown = field(default_factory=StatusBreakdown)
    total: int = 0

    def __post_init__(self):
        if self.total != self.health_breakdown.total:
            raise ValueError(
                f"Week {self.week}: total {self.total} does not match "
                f"health breakdown sum {self.health_breakdown.total}"
            )

    def to_dict(self) -> dict:
        return {
            "week": self.week.isoformat(),
            "dataSource": self.source,
            "memberCounts": dict(self.member_counts),
            "healthBreakdown": self.health_breakdown.to_dict(),
            "statusBreakdown": self.status_breakdown.to_dict(),
            "totalProjects": self.total,
        }


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return to_utc(value).date()
    return value


class DataSourceSelector:
    """Picks live, snapshot or reconstruction for a week (given by its Monday)."""

    def __init__(self, recent_threshold_days: int = DEFAULT_RECENT_WEEK_THRESHOLD_DAYS):
        self.recent_threshold_days = recent_threshold_days

    def classify_week(self, monday: date, now: datetime) -> str:
        today = to_utc(now).date()
        current_sunday = today - timedelta(days=(today.weekday() + 1) % 7)
        monday = _as_date(monday)

        if monday - timedelta(days=1) == current_sunday:
            return WEEK_CURRENT
        if (today - monday).days <= self.recent_threshold_days:
            return WEEK_RECENT
        return WEEK_HISTORICAL

    @staticmethod
    def find_snapshot(monday: date, baseline: list) -> Optional[CapacityBaselinePoint]:
        """Baseline point dated on the Monday or the Sunday before it."""
        monday = _as_date(monday)
        if not baseline or monday - timedelta(days=1) > _as_date(baseline[-1].date):
            # Past the last baseline point
            return None

        sunday = monday - timedelta(days=1)
        for point in baseline:
            if _as_date(point.date) in (monday, sunday):
                return point
        return None

    def select(self, monday: date, now: datetime, baseline: list) -> DataSourceDecision:
        week_kind = self.classify_week(monday, now)
        if week_kind in (WEEK_CURRENT, WEEK_RECENT):
            return DataSourceDecision(SOURCE_LIVE, week_kind)

        snapshot = self.find_snapshot(monday, baseline)
        if snapshot is not None:
            return DataSourceDecision(SOURCE_SNAPSHOT, week_kind, snapshot)
        return DataSourceDecision(SOURCE_RECONSTRUCTION, week_kind)


class WeeklyWorkloadService:
    """Builds weekly workload records for a set of team members."""

    def __init__(self, reconstructor, baseline_store, selector: DataSourceSelector,
                 item_source, max_workers: int = 6):
        self.reconstructor = reconstructor
        self.baseline_store = baseline_store
        self.selector = selector
        self.item_source = item_source
        self.max_workers = max_workers

    def candidates(self) -> list:
        """Issues that currently count toward someone's workload."""
        return [
            item for item in self.item_source()
            if not item.is_archived and item.status in ACTIVE_WORKLOAD_STATUSES
        ]

    def get_week(self, monday: date, members: list, now: Optional[datetime] = None,
                 member_logs: Optional[dict] = None,
                 baseline: Optional[list] = None) -> WeeklyWorkload:
        now = now or datetime.now(timezone.utc)
        monday = _as_date(monday)
        if baseline is None:
            baseline = self.baseline_store.list_points()

        decision = self.selector.select(monday, now, baseline)
        return self._build_week(monday, decision, members, now, member_logs)

    def get_trend(self, mondays: list, members: list, now: Optional[datetime] = None) -> list:
        """Weekly workloads for several Mondays, fetching each changelog at most once.

        Sources are decided first so a trend made only of snapshot weeks
        never touches the history provider.
        """
        now = now or datetime.now(timezone.utc)
        baseline = self.baseline_store.list_points()
        mondays = sorted(_as_date(m) for m in mondays)
        decisions = {m: self.selector.select(m, now, baseline) for m in mondays}

        member_logs = None
        if any(d.source != SOURCE_SNAPSHOT for d in decisions.values()):
            member_logs = self.prefetch_members(members)

        return [
            self._build_week(monday, decisions[monday], members, now, member_logs)
            for monday in mondays
        ]

    def prefetch_members(self, members: list) -> dict:
        """Fetch each member's candidate changelogs, one task per member.

        A member whose fetch fails maps to an empty dict and so
        reconstructs as a zero breakdown in every week.
        """
        candidates = self.candidates()

        def fetch(member):
            return self.reconstructor.prefetch(
                [item for item in candidates if item.assignee == member]
            )

        member_logs = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(fetch, m): m for m in members}
            for future in as_completed(futures):
                member = futures[future]
                try:
                    member_logs[member] = future.result()
                except Exception as e:
                    logger.warning(f"Error fetching history for {member}: {e}")
                    member_logs[member] = {}
        return member_logs

    def _build_week(self, monday: date, decision: DataSourceDecision, members: list,
                    now: datetime, member_logs: Optional[dict]) -> WeeklyWorkload:
        if decision.source == SOURCE_SNAPSHOT:
            return self._from_snapshot(monday, members, decision.snapshot)

        as_of = now if decision.source == SOURCE_LIVE else monday
        return self._reconstructed(monday, decision.source, members, as_of, member_logs)

    @staticmethod
    def _from_snapshot(monday: date, members: list,
                       snapshot: CapacityBaselinePoint) -> WeeklyWorkload:
        # Snapshots carry counts only, so their issues land in the unknown buckets
        return WeeklyWorkload(
            week=monday,
            source=SOURCE_SNAPSHOT,
            member_counts={m: int(snapshot.member_counts.get(m, 0)) for m in members},
            health_breakdown=HealthBreakdown(unknown=snapshot.total),
            status_breakdown=StatusBreakdown(unknown=snapshot.total),
            total=snapshot.total,
        )

    def _reconstructed(self, monday: date, source: str, members: list, as_of,
                       member_logs: Optional[dict]) -> WeeklyWorkload:
        candidates = None if member_logs is not None else self.candidates()

        def member_breakdowns(member):
            if member_logs is not None:
                member_pairs = member_logs.get(member, {})
            else:
                member_pairs = self.reconstructor.prefetch(
                    [item for item in candidates if item.assignee == member]
                )
            return (
                self.reconstructor.reconstruct_breakdown_prefetched(member, as_of, member_pairs),
                self.reconstructor.reconstruct_status_breakdown_prefetched(member, as_of, member_pairs),
            )

        results = {}
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(member_breakdowns, m): m for m in members}
            for future in as_completed(futures):
                member = futures[future]
                try:
                    results[member] = future.result()
                except Exception as e:
                    logger.warning(f"Error getting breakdown for {member} at {monday}: {e}")
                    results[member] = (HealthBreakdown(), StatusBreakdown())

        health = HealthBreakdown()
        status = StatusBreakdown()
        member_counts = {}
        for member in members:
            member_health, member_status = results[member]
            health = health + member_health
            status = status + member_status
            member_counts[member] = member_health.total

        return WeeklyWorkload(
            week=monday,
            source=source,
            member_counts=member_counts,
            health_breakdown=health,
            status_breakdown=status,
            total=health.total,
        )
