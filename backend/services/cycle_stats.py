"""Box-plot statistics for completed discovery cycles.

Reads cached cycle records only; nothing here recomputes a cycle.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Iterable, Optional

from services.dates import quarter_for, quarter_range, quarter_sort_key
from services.discovery_cycle import is_completed_cycle
from services.models import COMPLEXITY_BUCKETS, DiscoveryCycleRecord, normalize_complexity

logger = logging.getLogger(__name__)

TIME_TYPES = ("calendar", "active")


@dataclass
class BoxPlotStats:
    min: float = 0
    q1: float = 0
    median: float = 0
    q3: float = 0
    max: float = 0
    mean: float = 0


@dataclass
class Cohort:
    """Statistics for one bucket of cycle times."""
    name: str
    data: list = field(default_factory=list)
    outliers: list = field(default_factory=list)
    size: int = 0
    stats: BoxPlotStats = field(default_factory=BoxPlotStats)
    dropped: int = 0

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "data": list(self.data),
            "outliers": list(self.outliers),
            "size": self.size,
            "stats": asdict(self.stats),
            "dropped": self.dropped,
        }


def box_plot_stats(values: list) -> BoxPlotStats:
    """Min, quartiles, median, max and mean of a sample.

    Quartiles use nearest rank on zero-based positions, without
    interpolation: Q1 = sorted[floor((n - 1) * 0.25)].
    """
    if not values:
        return BoxPlotStats()

    ordered = sorted(values)
    n = len(ordered)

    if n % 2 == 0:
        median = (ordered[n // 2 - 1] + ordered[n // 2]) / 2
    else:
        median = ordered[n // 2]

    return BoxPlotStats(
        min=ordered[0],
        q1=ordered[int((n - 1) * 0.25)],
        median=median,
        q3=ordered[int((n - 1) * 0.75)],
        max=ordered[-1],
        mean=round(sum(ordered) / n, 1),
    )


def separate_outliers(values: list, stats: BoxPlotStats) -> tuple:
    """Split values into (inliers, outliers) using the 1.5 * IQR fences."""
    iqr = stats.q3 - stats.q1
    lower_bound = stats.q1 - 1.5 * iqr
    upper_bound = stats.q3 + 1.5 * iqr

    inliers = []
    outliers = []
    for value in sorted(values):
        if value < lower_bound or value > upper_bound:
            outliers.append(value)
        else:
            inliers.append(value)
    return inliers, outliers


def summarize(name: str, values: list, dropped: int = 0) -> Cohort:
    stats = box_plot_stats(values)
    if not values:
        return Cohort(name=name, stats=stats, dropped=dropped)
    inliers, outliers = separate_outliers(values, stats)
    return Cohort(
        name=name,
        data=inliers,
        outliers=outliers,
        size=len(values),
        stats=stats,
        dropped=dropped,
    )


def _has_valid_metrics(record: DiscoveryCycleRecord) -> bool:
    calendar = record.calendar_days_in_discovery
    active = record.active_days_in_discovery
    if calendar is None or active is None:
        return False
    return calendar > 0 and active > 0 and active <= calendar


def _metric(record: DiscoveryCycleRecord, time_type: str) -> int:
    if time_type == "active":
        return record.active_days_in_discovery
    return record.calendar_days_in_discovery


class QuarterComplexityAggregator:
    """Groups cached, completed cycles by completion quarter or complexity."""

    def __init__(self, cache, exclusions):
        self.cache = cache
        self.exclusions = exclusions

    def completed_records(self) -> list:
        excluded = self.exclusions.keys()
        return [
            record for record in self.cache.get_all()
            if record.issue_key not in excluded and is_completed_cycle(record)
        ]

    def quarter_distribution(self, time_type: str = "calendar") -> dict:
        """Cohorts keyed by completion quarter, oldest first.

        Every quarter between the earliest and latest completion is present,
        including quarters with no qualifying cycles.
        """
        _check_time_type(time_type)
        grouped = {}
        for record in self.completed_records():
            quarter = record.completion_quarter or quarter_for(record.discovery_end_date)
            grouped.setdefault(quarter, []).append(record)

        if not grouped:
            return {}

        ordered = sorted(grouped, key=quarter_sort_key)
        quarters = quarter_range(ordered[0], ordered[-1])
        return {q: self._bucket(q, grouped.get(q, []), time_type) for q in quarters}

    def complexity_cohorts(self, time_type: str = "calendar",
                           complexity_by_key: Optional[dict] = None) -> dict:
        """Cohorts keyed by discovery complexity (Simple/Standard/Complex/Not Set)."""
        _check_time_type(time_type)
        complexity_by_key = complexity_by_key or {}
        grouped = {name: [] for name in COMPLEXITY_BUCKETS}
        for record in self.completed_records():
            complexity = normalize_complexity(complexity_by_key.get(record.issue_key))
            grouped[complexity].append(record)

        return {name: self._bucket(name, records, time_type) for name, records in grouped.items()}

    @staticmethod
    def _bucket(name: str, records: Iterable[DiscoveryCycleRecord], time_type: str) -> Cohort:
        values = []
        dropped = 0
        for record in records:
            if _has_valid_metrics(record):
                values.append(_metric(record, time_type))
            else:
                dropped += 1

        if dropped:
            logger.info(f"{name}: dropped {dropped} records with invalid cycle times")
        return summarize(name, values, dropped)


def _check_time_type(time_type: str) -> None:
    if time_type not in TIME_TYPES:
        raise ValueError(f"time_type must be one of {TIME_TYPES}, got {time_type!r}")
