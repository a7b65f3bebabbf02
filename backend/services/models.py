"""Data models and vocabularies for discovery cycle analysis."""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from typing import Optional


# Status vocabulary, in workflow order
STATUS_INBOX = "01 Inbox"
STATUS_GENERATIVE_DISCOVERY = "02 Generative Discovery"
STATUS_COMMITTED = "03 Committed"
STATUS_PROBLEM_DISCOVERY = "04 Problem Discovery"
STATUS_SOLUTION_DISCOVERY = "05 Solution Discovery"
STATUS_BUILD = "06 Build"
STATUS_BETA = "07 Beta"
STATUS_LIVE = "08 Live"
STATUS_LIVE_LEGACY = "09 Live"
STATUS_WONT_DO = "Won't Do"

STATUS_ORDER = [
    STATUS_INBOX,
    STATUS_GENERATIVE_DISCOVERY,
    STATUS_COMMITTED,
    STATUS_PROBLEM_DISCOVERY,
    STATUS_SOLUTION_DISCOVERY,
    STATUS_BUILD,
    STATUS_BETA,
    STATUS_LIVE,
    STATUS_WONT_DO,
]

# Statuses that open a discovery cycle
DISCOVERY_ENTRY_STATUSES = frozenset({
    STATUS_GENERATIVE_DISCOVERY,
    STATUS_PROBLEM_DISCOVERY,
    STATUS_SOLUTION_DISCOVERY,
})

# Statuses that still count as "in discovery" once a cycle has started
DISCOVERY_STATUSES = DISCOVERY_ENTRY_STATUSES | {STATUS_COMMITTED}

POST_DISCOVERY_STATUSES = frozenset({
    STATUS_BUILD, STATUS_BETA, STATUS_LIVE, STATUS_LIVE_LEGACY
})

# Statuses counted as part of a member's active workload
ACTIVE_WORKLOAD_STATUSES = frozenset({
    STATUS_GENERATIVE_DISCOVERY,
    STATUS_PROBLEM_DISCOVERY,
    STATUS_SOLUTION_DISCOVERY,
    STATUS_BUILD,
    STATUS_BETA,
})

HEALTH_ON_TRACK = "On Track"
HEALTH_AT_RISK = "At Risk"
HEALTH_OFF_TRACK = "Off Track"
HEALTH_ON_HOLD = "On Hold"
HEALTH_MYSTERY = "Mystery"
HEALTH_COMPLETE = "Complete"

PAUSED_HEALTH_VALUES = frozenset({HEALTH_ON_HOLD})

# Statuses that stop the active-days clock while inside a discovery window
INACTIVE_STATUSES = frozenset({
    STATUS_INBOX,
    STATUS_COMMITTED,
    STATUS_LIVE_LEGACY,
    STATUS_WONT_DO,
})

COMPLEXITY_SIMPLE = "Simple"
COMPLEXITY_STANDARD = "Standard"
COMPLEXITY_COMPLEX = "Complex"
COMPLEXITY_NOT_SET = "Not Set"

COMPLEXITY_BUCKETS = [
    COMPLEXITY_SIMPLE, COMPLEXITY_STANDARD, COMPLEXITY_COMPLEX, COMPLEXITY_NOT_SET
]

UNASSIGNED = "Unassigned"

FIELD_STATUS = "status"
FIELD_HEALTH = "health"


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _iso(value):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


@dataclass(frozen=True)
class WorkItem:
    """Snapshot of an issue's current field values."""
    key: str
    status: str
    health: Optional[str] = None
    assignee: str = UNASSIGNED
    complexity: str = COMPLEXITY_NOT_SET
    is_archived: bool = False
    archived_on: Optional[datetime] = None
    created: Optional[datetime] = None
    summary: str = ""


@dataclass(frozen=True)
class StatusTransition:
    """One recorded change of the status or health field."""
    timestamp: datetime
    field: str
    from_value: Optional[str]
    to_value: Optional[str]


@dataclass
class DiscoveryCycleRecord:
    """Result of a discovery cycle calculation, as stored in the cache."""
    issue_key: str
    discovery_start_date: Optional[datetime] = None
    discovery_end_date: Optional[datetime] = None
    end_date_logic: str = "No Discovery"
    calendar_days_in_discovery: Optional[int] = None
    active_days_in_discovery: Optional[int] = None
    completion_quarter: Optional[str] = None
    calculated_at: Optional[datetime] = None

    def same_result(self, other: "DiscoveryCycleRecord") -> bool:
        """Compare two records ignoring when they were calculated."""
        return all(
            getattr(self, f.name) == getattr(other, f.name)
            for f in fields(self)
            if f.name != "calculated_at"
        )

    def to_dict(self) -> dict:
        return {_camel(f.name): _iso(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class ExclusionEntry:
    issue_key: str
    excluded_by: str
    reason: Optional[str]
    toggled_at: datetime

    def to_dict(self) -> dict:
        return {_camel(f.name): _iso(getattr(self, f.name)) for f in fields(self)}


@dataclass(frozen=True)
class CapacityBaselinePoint:
    """Workload counts for one historical week (keyed by its Monday)."""
    date: date
    member_counts: dict = field(default_factory=dict)
    total: int = 0
    notes: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "memberCounts": dict(self.member_counts),
            "total": self.total,
            "notes": self.notes,
        }


class _Breakdown:
    """Fixed-shape counter; subclasses map raw values onto their fields."""

    VALUE_FIELDS: dict = {}

    @classmethod
    def bucket_for(cls, value: Optional[str]) -> str:
        return cls.VALUE_FIELDS.get(value, "unknown")

    def add(self, value: Optional[str]) -> None:
        bucket = self.bucket_for(value)
        setattr(self, bucket, getattr(self, bucket) + 1)

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def __add__(self, other):
        if type(other) is not type(self):
            return NotImplemented
        return type(self)(**{
            f.name: getattr(self, f.name) + getattr(other, f.name)
            for f in fields(self)
        })

    def to_dict(self) -> dict:
        return {_camel(f.name): getattr(self, f.name) for f in fields(self)}


@dataclass
class HealthBreakdown(_Breakdown):
    on_track: int = 0
    at_risk: int = 0
    off_track: int = 0
    on_hold: int = 0
    mystery: int = 0
    complete: int = 0
    unknown: int = 0

    VALUE_FIELDS = {
        HEALTH_ON_TRACK: "on_track",
        HEALTH_AT_RISK: "at_risk",
        HEALTH_OFF_TRACK: "off_track",
        HEALTH_ON_HOLD: "on_hold",
        HEALTH_MYSTERY: "mystery",
        HEALTH_COMPLETE: "complete",
    }


@dataclass
class StatusBreakdown(_Breakdown):
    inbox: int = 0
    generative_discovery: int = 0
    committed: int = 0
    problem_discovery: int = 0
    solution_discovery: int = 0
    build: int = 0
    beta: int = 0
    live: int = 0
    wont_do: int = 0
    unknown: int = 0

    VALUE_FIELDS = {
        STATUS_INBOX: "inbox",
        STATUS_GENERATIVE_DISCOVERY: "generative_discovery",
        STATUS_COMMITTED: "committed",
        STATUS_PROBLEM_DISCOVERY: "problem_discovery",
        STATUS_SOLUTION_DISCOVERY: "solution_discovery",
        STATUS_BUILD: "build",
        STATUS_BETA: "beta",
        STATUS_LIVE: "live",
        STATUS_LIVE_LEGACY: "live",
        STATUS_WONT_DO: "wont_do",
    }


def normalize_complexity(value: Optional[str]) -> str:
    if value in (COMPLEXITY_SIMPLE, COMPLEXITY_STANDARD, COMPLEXITY_COMPLEX):
        return value
    return COMPLEXITY_NOT_SET
