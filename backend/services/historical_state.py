"""Point-in-time reconstruction of issue status and health."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional, Union

from services.dates import end_of_day, to_utc
from services.models import (
    FIELD_HEALTH,
    FIELD_STATUS,
    HealthBreakdown,
    StatusBreakdown,
    WorkItem,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ItemState:
    status: Optional[str]
    health: Optional[str]


def _value_at(log: list, field_name: str, as_of: datetime, current: Optional[str]) -> Optional[str]:
    changes = [t for t in log if t.field == field_name]
    known = [t for t in changes if to_utc(t.timestamp) <= as_of]
    if known:
        return known[-1].to_value
    if changes:
        # Value before the first recorded change
        return changes[0].from_value
    return current


class HistoricalStateReconstructor:
    """Replays transition logs to answer "what did this look like on date D".

    Two entry points exist per breakdown type. The plain one fetches each
    candidate's transition log from the history provider; the ``prefetched``
    one takes logs already in hand. Both run through ``_breakdown`` so they
    give identical results for identical inputs.
    """

    def __init__(self, provider=None):
        self.provider = provider

    def state_at(self, item: WorkItem, transition_log: list,
                 as_of: Union[date, datetime]) -> Optional[ItemState]:
        """State of ``item`` at ``as_of`` (inclusive), or None if it did not exist yet."""
        cutoff = end_of_day(as_of)
        log = sorted(transition_log or [], key=lambda t: to_utc(t.timestamp))

        existed = any(to_utc(t.timestamp) <= cutoff for t in log)
        if not existed and item.created is not None:
            existed = to_utc(item.created) <= cutoff
        if not existed:
            return None

        return ItemState(
            status=_value_at(log, FIELD_STATUS, cutoff, item.status),
            health=_value_at(log, FIELD_HEALTH, cutoff, item.health),
        )

    def reconstruct_breakdown(self, member: str, as_of: Union[date, datetime],
                              candidate_items: Optional[list] = None) -> HealthBreakdown:
        """Health breakdown of ``member``'s issues as of a date.

        Raises:
            ExternalFetchFailed: if the provider cannot supply items or logs
        """
        return self._breakdown(member, as_of, self._fetch_pairs(member, candidate_items),
                               HealthBreakdown, "health")

    def reconstruct_status_breakdown(self, member: str, as_of: Union[date, datetime],
                                     candidate_items: Optional[list] = None) -> StatusBreakdown:
        return self._breakdown(member, as_of, self._fetch_pairs(member, candidate_items),
                               StatusBreakdown, "status")

    def reconstruct_breakdown_prefetched(self, member: str, as_of: Union[date, datetime],
                                         prefetched: dict) -> HealthBreakdown:
        """Same as reconstruct_breakdown, using {key: (item, log)} already fetched."""
        return self._breakdown(member, as_of, prefetched.values(), HealthBreakdown, "health")

    def reconstruct_status_breakdown_prefetched(self, member: str, as_of: Union[date, datetime],
                                                prefetched: dict) -> StatusBreakdown:
        return self._breakdown(member, as_of, prefetched.values(), StatusBreakdown, "status")

    def prefetch(self, candidate_items: list) -> dict:
        """Fetch transition logs once for a set of candidates."""
        return {
            item.key: (item, self.provider.get_transition_log(item.key))
            for item in candidate_items
        }

    def _fetch_pairs(self, member: str, candidate_items: Optional[list]) -> list:
        if candidate_items is None:
            candidate_items = self.provider.list_items()
        return [
            (item, self.provider.get_transition_log(item.key))
            for item in candidate_items
            if item.assignee == member
        ]

    def _breakdown(self, member: str, as_of, pairs: Iterable[tuple], breakdown_type, attribute: str):
        breakdown = breakdown_type()
        included = 0
        for item, log in pairs:
            if item.assignee != member:
                continue
            state = self.state_at(item, log, as_of)
            if state is None:
                continue
            breakdown.add(getattr(state, attribute))
            included += 1

        logger.debug(f"{member} @ {as_of}: {included} issues reconstructed")
        return breakdown
