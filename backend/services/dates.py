"""Date helpers shared by the cycle and workload calculations."""

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union


def parse_jira_date(date_str: Optional[str]) -> Optional[datetime]:
    """Parse a Jira date string into a UTC-aware datetime."""
    if not date_str:
        return None

    # Jira formats: "2024-10-31T12:11:56.289-0400" or "2024-10-31T12:11:56.289+0000"
    formats = [
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d"
    ]

    for fmt in formats:
        try:
            return to_utc(datetime.strptime(date_str, fmt))
        except ValueError:
            continue

    # Z suffix and other ISO variants
    try:
        return to_utc(datetime.fromisoformat(date_str.replace("Z", "+00:00")))
    except ValueError:
        return None


def to_utc(value: Union[datetime, date]) -> datetime:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def end_of_day(value: Union[datetime, date]) -> datetime:
    """Inclusive upper bound for an as-of comparison.

    Plain dates cover the whole day; datetimes are used as given.
    """
    if isinstance(value, datetime):
        return to_utc(value)
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


def days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days between two instants, on UTC dates."""
    return (to_utc(end).date() - to_utc(start).date()).days


def quarter_for(value: Union[datetime, date]) -> str:
    """Calendar quarter token, e.g. Q1_2025."""
    if isinstance(value, datetime):
        value = to_utc(value).date()
    return f"Q{(value.month - 1) // 3 + 1}_{value.year}"


def quarter_sort_key(quarter: str) -> tuple:
    q, year = quarter.split("_")
    return int(year), int(q[1:])


def quarter_range(first: str, last: str) -> list:
    """All quarter tokens from first to last inclusive, chronologically."""
    year, q = quarter_sort_key(first)
    end = quarter_sort_key(last)
    quarters = []
    while (year, q) <= end:
        quarters.append(f"Q{q}_{year}")
        q += 1
        if q > 4:
            q = 1
            year += 1
    return quarters


def monday_of(value: Union[datetime, date]) -> date:
    if isinstance(value, datetime):
        value = to_utc(value).date()
    return value - timedelta(days=value.weekday())
