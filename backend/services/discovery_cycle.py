"""Discovery cycle calculation.

Works out, for one issue, when discovery started, when (and why) it ended,
and how many of those days were spent actively rather than on hold.

The end-of-discovery decision is a small state machine over the issue's
status transitions. Each terminal classification lives in
``TERMINAL_CONDITIONS`` so a new terminal status only needs a new row.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, Optional

from services.dates import days_between, quarter_for, to_utc
from services.models import (
    DISCOVERY_ENTRY_STATUSES,
    DISCOVERY_STATUSES,
    FIELD_HEALTH,
    FIELD_STATUS,
    INACTIVE_STATUSES,
    PAUSED_HEALTH_VALUES,
    POST_DISCOVERY_STATUSES,
    STATUS_BETA,
    STATUS_BUILD,
    STATUS_LIVE,
    STATUS_LIVE_LEGACY,
    STATUS_WONT_DO,
    DiscoveryCycleRecord,
    WorkItem,
)

logger = logging.getLogger(__name__)


class EndDateLogic:
    """Classifications of why a discovery cycle ended (or has no end)."""

    NO_DISCOVERY = "No Discovery"
    STILL_IN_DISCOVERY = "Still in Discovery"
    DIRECT_TO_BUILD = "Direct to Build"
    REACHED_BUILD = "Reached Build"
    REACHED_BETA = "Reached Beta"
    REACHED_LIVE = "Reached Live"
    WONT_DO = "Won't Do"
    COMPLETED = "Completed"
    ARCHIVED = "Archived"
    UNKNOWN = "Unknown"


# Records with these classifications never count as completed cycles
INCOMPLETE_LOGIC = frozenset({
    EndDateLogic.STILL_IN_DISCOVERY,
    EndDateLogic.NO_DISCOVERY,
    EndDateLogic.DIRECT_TO_BUILD,
})


@dataclass(frozen=True)
class TerminalCondition:
    """A status whose entry ends discovery, and the tag it produces."""
    logic: str
    targets: frozenset

    def matches(self, status: Optional[str]) -> bool:
        return status in self.targets


TERMINAL_CONDITIONS = (
    TerminalCondition(EndDateLogic.REACHED_BUILD, frozenset({STATUS_BUILD})),
    TerminalCondition(EndDateLogic.REACHED_BETA, frozenset({STATUS_BETA})),
    TerminalCondition(EndDateLogic.REACHED_LIVE, frozenset({STATUS_LIVE, STATUS_LIVE_LEGACY})),
    TerminalCondition(EndDateLogic.WONT_DO, frozenset({STATUS_WONT_DO})),
    TerminalCondition(EndDateLogic.COMPLETED, frozenset({"Done", "Resolved", "Closed"})),
)


def is_completed_cycle(record: DiscoveryCycleRecord) -> bool:
    """True when the record describes a finished discovery cycle."""
    return (
        record.discovery_start_date is not None
        and record.discovery_end_date is not None
        and record.end_date_logic not in INCOMPLETE_LOGIC
    )


class DiscoveryCycleCalculator:
    """Pure calculation of discovery cycle records from transition logs."""

    def __init__(self, terminal_conditions: Iterable[TerminalCondition] = TERMINAL_CONDITIONS,
                 paused_health_values: frozenset = PAUSED_HEALTH_VALUES,
                 inactive_statuses: frozenset = INACTIVE_STATUSES):
        self.terminal_conditions = tuple(terminal_conditions)
        self.paused_health_values = frozenset(paused_health_values)
        self.inactive_statuses = frozenset(inactive_statuses)

    def compute(self, item: WorkItem, transition_log: Optional[list]) -> DiscoveryCycleRecord:
        """Classify one issue's discovery cycle.

        Args:
            item: Current field values of the issue
            transition_log: Status/health transitions, oldest first. May be
                empty or None; a missing history means "No Discovery".

        Returns:
            DiscoveryCycleRecord without ``calculated_at`` (set by the cache)
        """
        log = self._normalized(transition_log or [])
        status_changes = [t for t in log if t.field == FIELD_STATUS]

        if not status_changes:
            return DiscoveryCycleRecord(item.key, end_date_logic=EndDateLogic.NO_DISCOVERY)

        start_index = next(
            (i for i, t in enumerate(status_changes) if t.to_value in DISCOVERY_ENTRY_STATUSES),
            None
        )

        if start_index is None:
            direct = next(
                (t for t in status_changes if t.to_value in POST_DISCOVERY_STATUSES), None
            )
            if direct:
                return DiscoveryCycleRecord(
                    item.key,
                    discovery_end_date=direct.timestamp,
                    end_date_logic=EndDateLogic.DIRECT_TO_BUILD,
                    completion_quarter=quarter_for(direct.timestamp),
                )
            return DiscoveryCycleRecord(item.key, end_date_logic=EndDateLogic.NO_DISCOVERY)

        start = status_changes[start_index].timestamp
        current_status = status_changes[-1].to_value
        archived = item.is_archived or item.archived_on is not None

        if current_status in DISCOVERY_STATUSES:
            if archived:
                return self._finished(item.key, log, start, self._archive_end(item, log, start),
                                      EndDateLogic.ARCHIVED)
            return DiscoveryCycleRecord(
                item.key,
                discovery_start_date=start,
                end_date_logic=EndDateLogic.STILL_IN_DISCOVERY,
            )

        for change in status_changes[start_index + 1:]:
            logic = self._terminal_logic(change.to_value)
            if logic:
                return self._finished(item.key, log, start, change.timestamp, logic)

        if archived:
            return self._finished(item.key, log, start, self._archive_end(item, log, start),
                                  EndDateLogic.ARCHIVED)

        logger.debug(f"{item.key}: no terminal pattern matched (current status {current_status!r})")
        return DiscoveryCycleRecord(
            item.key,
            discovery_start_date=start,
            end_date_logic=EndDateLogic.UNKNOWN,
        )

    def _terminal_logic(self, status: Optional[str]) -> Optional[str]:
        for condition in self.terminal_conditions:
            if condition.matches(status):
                return condition.logic
        return None

    def _finished(self, key: str, log: list, start: datetime, end: datetime,
                  logic: str) -> DiscoveryCycleRecord:
        calendar_days = max(0, days_between(start, end))
        paused_days = self.paused_days(log, start, end)
        active_days = min(calendar_days, max(0, calendar_days - paused_days))

        return DiscoveryCycleRecord(
            key,
            discovery_start_date=start,
            discovery_end_date=end,
            end_date_logic=logic,
            calendar_days_in_discovery=calendar_days,
            active_days_in_discovery=active_days,
            completion_quarter=quarter_for(end),
        )

    def paused_days(self, log: list, start: datetime, end: datetime) -> int:
        """Days between start and end spent in an inactive status or a paused health."""
        status = self._value_at(log, FIELD_STATUS, start)
        health = self._value_at(log, FIELD_HEALTH, start)

        paused_since = start if self._is_paused(status, health) else None
        paused = 0

        for change in log:
            if change.timestamp <= start or change.timestamp > end:
                continue
            if change.field == FIELD_STATUS:
                status = change.to_value
            elif change.field == FIELD_HEALTH:
                health = change.to_value
            else:
                continue

            now_paused = self._is_paused(status, health)
            if paused_since is None and now_paused:
                paused_since = change.timestamp
            elif paused_since is not None and not now_paused:
                paused += days_between(paused_since, change.timestamp)
                paused_since = None

        if paused_since is not None:
            paused += days_between(paused_since, end)

        return paused

    def _is_paused(self, status: Optional[str], health: Optional[str]) -> bool:
        return status in self.inactive_statuses or health in self.paused_health_values

    @staticmethod
    def _value_at(log: list, field: str, moment: datetime) -> Optional[str]:
        """Field value in effect at a moment, or the first change's prior value."""
        changes = [t for t in log if t.field == field]
        before = [t for t in changes if t.timestamp <= moment]
        if before:
            return before[-1].to_value
        if changes:
            return changes[0].from_value
        return None

    @staticmethod
    def _archive_end(item: WorkItem, log: list, start: datetime) -> datetime:
        if item.archived_on is not None:
            return max(start, to_utc(item.archived_on))
        return max(start, log[-1].timestamp)

    @staticmethod
    def _normalized(transition_log: list) -> list:
        normalized = [replace(t, timestamp=to_utc(t.timestamp)) for t in transition_log]
        normalized.sort(key=lambda t: t.timestamp)
        return normalized

