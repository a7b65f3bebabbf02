"""Discovery analyzer service: the operations the API exposes."""

import logging
import time
from collections import Counter
from datetime import date, datetime, timezone
from typing import Optional, Union

from services.batch_runner import DEFAULT_CHUNK_SIZE, BatchResult, BatchRunner
from services.cycle_cache import CapacityBaselineStore, CycleTimeCache, Database, ExclusionStore
from services.cycle_stats import QuarterComplexityAggregator
from services.dates import quarter_sort_key
from services.discovery_cycle import DiscoveryCycleCalculator
from services.historical_state import HistoricalStateReconstructor
from services.item_list_cache import DEFAULT_TTL_SECONDS, ItemListCache
from services.models import DiscoveryCycleRecord, HealthBreakdown, StatusBreakdown
from services.weekly_data_source import (
    DEFAULT_RECENT_WEEK_THRESHOLD_DAYS,
    DataSourceSelector,
    WeeklyWorkload,
    WeeklyWorkloadService,
)

logger = logging.getLogger(__name__)

UNCACHED_KEYS_LIMIT = 50


class DiscoveryService:
    """Discovery cycle analytics over one project's issue history."""

    def __init__(self, provider, db: Database, team_members: Optional[list] = None,
                 rate_limit_seconds: float = 1.0,
                 recent_threshold_days: int = DEFAULT_RECENT_WEEK_THRESHOLD_DAYS,
                 item_cache_ttl: float = DEFAULT_TTL_SECONDS,
                 sleep=time.sleep):
        self.provider = provider
        self.team_members = list(team_members or [])

        self.cache = CycleTimeCache(db)
        self.exclusions = ExclusionStore(db)
        self.baseline = CapacityBaselineStore(db)

        self.items = ItemListCache(provider.list_items, ttl_seconds=item_cache_ttl)
        self.calculator = DiscoveryCycleCalculator()
        self.runner = BatchRunner(provider, self.cache, self.calculator,
                                  delay_seconds=rate_limit_seconds,
                                  item_source=self.items.get, sleep=sleep)
        self.aggregator = QuarterComplexityAggregator(self.cache, self.exclusions)
        self.reconstructor = HistoricalStateReconstructor(provider)
        self.workload = WeeklyWorkloadService(
            self.reconstructor, self.baseline,
            DataSourceSelector(recent_threshold_days),
            item_source=self.items.get,
        )

    # Cycle time

    def process_item(self, issue_key: str) -> DiscoveryCycleRecord:
        """Recompute and cache one issue.

        Raises:
            KeyError: if the issue is not in the project
        """
        item = next((i for i in self.items.get() if i.key == issue_key), None)
        if item is None:
            raise KeyError(issue_key)
        return self.runner.process_item(item)

    def get_quarter_distribution(self, time_type: str = "calendar") -> dict:
        return self.aggregator.quarter_distribution(time_type)

    def get_complexity_cohorts(self, time_type: str = "calendar") -> dict:
        complexity_by_key = {item.key: item.complexity for item in self.items.get()}
        return self.aggregator.complexity_cohorts(time_type, complexity_by_key)

    def toggle_exclusion(self, issue_key: str, excluded_by: str,
                         reason: Optional[str] = None) -> bool:
        excluded = self.exclusions.toggle(issue_key, excluded_by, reason)
        logger.info(f"{issue_key} {'excluded' if excluded else 'included'} by {excluded_by}")
        return excluded

    def list_exclusions(self) -> list:
        return self.exclusions.list()

    def get_processing_status(self) -> dict:
        """How much of the project has a cached cycle record."""
        items = self.items.get()
        records = self.cache.get_all()
        cached_keys = {r.issue_key for r in records}
        uncached = [item.key for item in items if item.key not in cached_keys]

        total = len(items)
        cached = total - len(uncached)
        quarters = Counter(r.completion_quarter for r in records if r.completion_quarter)
        logic = Counter(r.end_date_logic for r in records)

        return {
            "totalIssues": total,
            "cachedCount": cached,
            "uncachedCount": len(uncached),
            "progressPercentage": round(cached / total * 100, 1) if total else 0,
            "quarterDistribution": [
                {"quarter": q, "count": quarters[q]}
                for q in sorted(quarters, key=quarter_sort_key)
            ],
            "statusDistribution": [
                {"endDateLogic": value, "count": count}
                for value, count in logic.most_common()
            ],
            "uncachedIssueKeys": uncached[:UNCACHED_KEYS_LIMIT],
        }

    def rebuild_chunk(self, start_index: int = 0,
                      chunk_size: int = DEFAULT_CHUNK_SIZE) -> BatchResult:
        if start_index == 0:
            # New pass, pick up issues created since the last one
            self.items.invalidate()
        return self.runner.run_chunk(start_index, chunk_size)

    def clear_cache(self, quarter: Optional[str] = None) -> int:
        return self.cache.clear(quarter)

    # Workload

    def get_breakdown(self, member: str, as_of: Union[date, datetime]) -> HealthBreakdown:
        return self.reconstructor.reconstruct_breakdown(
            member, as_of, self.workload.candidates()
        )

    def get_status_breakdown(self, member: str, as_of: Union[date, datetime]) -> StatusBreakdown:
        return self.reconstructor.reconstruct_status_breakdown(
            member, as_of, self.workload.candidates()
        )

    def get_weekly_workload(self, monday: date, members: Optional[list] = None,
                            now: Optional[datetime] = None) -> WeeklyWorkload:
        return self.workload.get_week(monday, self._members(members),
                                      now=now or datetime.now(timezone.utc))

    def get_weekly_trend(self, mondays: list, members: Optional[list] = None,
                         now: Optional[datetime] = None) -> list:
        return self.workload.get_trend(mondays, self._members(members),
                                       now=now or datetime.now(timezone.utc))

    def import_baseline(self, points: list, replace: bool = True) -> int:
        if replace:
            return self.baseline.replace_points(points)
        return self.baseline.append(points)

    def _members(self, members: Optional[list]) -> list:
        if members:
            return list(members)
        if self.team_members:
            return list(self.team_members)
        # No configured team: everyone currently holding active work
        return sorted({item.assignee for item in self.workload.candidates()})
