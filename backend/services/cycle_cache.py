"""Persistent stores for cycle time results, exclusions and capacity baseline.

All three live in one SQLite database. Every read and write goes through
the database lock, so a clear is seen by readers either entirely or not
at all.
"""

import csv
import json
import logging
import sqlite3
import threading
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional

from services.errors import CacheWriteFailed
from services.models import CapacityBaselinePoint, DiscoveryCycleRecord, ExclusionEntry

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cycle_time_cache (
    issue_key TEXT PRIMARY KEY,
    discovery_start_date TEXT,
    discovery_end_date TEXT,
    end_date_logic TEXT NOT NULL,
    calendar_days_in_discovery INTEGER,
    active_days_in_discovery INTEGER,
    completion_quarter TEXT,
    calculated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_cycle_time_cache_quarter
    ON cycle_time_cache (completion_quarter);

CREATE TABLE IF NOT EXISTS project_exclusions (
    issue_key TEXT PRIMARY KEY,
    excluded_by TEXT NOT NULL,
    reason TEXT,
    toggled_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS capacity_data (
    date TEXT PRIMARY KEY,
    member_counts TEXT NOT NULL DEFAULT '{}',
    total INTEGER NOT NULL DEFAULT 0,
    notes TEXT
);
"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_text(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _from_text(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """A shared SQLite connection guarded by a re-entrant lock."""

    def __init__(self, path):
        self.path = str(path)
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(self.path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.lock = threading.RLock()
        with self.lock:
            self.conn.executescript(SCHEMA)
            self.conn.commit()

    def close(self):
        with self.lock:
            self.conn.close()


class CycleTimeCache:
    """One DiscoveryCycleRecord per issue key, last write wins."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.clock = clock

    def get(self, issue_key: str) -> Optional[DiscoveryCycleRecord]:
        with self.db.lock:
            row = self.db.conn.execute(
                "SELECT * FROM cycle_time_cache WHERE issue_key = ?", (issue_key,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_all(self) -> list:
        with self.db.lock:
            rows = self.db.conn.execute(
                "SELECT * FROM cycle_time_cache ORDER BY issue_key"
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def get_by_quarter(self, quarter: str) -> list:
        with self.db.lock:
            rows = self.db.conn.execute(
                "SELECT * FROM cycle_time_cache WHERE completion_quarter = ? ORDER BY issue_key",
                (quarter,)
            ).fetchall()
        return [self._row_to_record(r) for r in rows]

    def keys(self) -> set:
        with self.db.lock:
            rows = self.db.conn.execute("SELECT issue_key FROM cycle_time_cache").fetchall()
        return {r["issue_key"] for r in rows}

    def put(self, issue_key: str, record: DiscoveryCycleRecord) -> DiscoveryCycleRecord:
        """Upsert a record; ``calculated_at`` is stamped with the write time.

        Raises:
            CacheWriteFailed: if the write did not commit. Other keys are untouched.
        """
        stored = DiscoveryCycleRecord(
            issue_key=issue_key,
            discovery_start_date=record.discovery_start_date,
            discovery_end_date=record.discovery_end_date,
            end_date_logic=record.end_date_logic,
            calendar_days_in_discovery=record.calendar_days_in_discovery,
            active_days_in_discovery=record.active_days_in_discovery,
            completion_quarter=record.completion_quarter,
            calculated_at=self.clock(),
        )
        try:
            with self.db.lock, self.db.conn:
                self.db.conn.execute(
                    """INSERT OR REPLACE INTO cycle_time_cache
                       (issue_key, discovery_start_date, discovery_end_date, end_date_logic,
                        calendar_days_in_discovery, active_days_in_discovery,
                        completion_quarter, calculated_at)
                       VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                    (
                        issue_key,
                        _to_text(stored.discovery_start_date),
                        _to_text(stored.discovery_end_date),
                        stored.end_date_logic,
                        stored.calendar_days_in_discovery,
                        stored.active_days_in_discovery,
                        stored.completion_quarter,
                        _to_text(stored.calculated_at),
                    ),
                )
        except sqlite3.Error as e:
            raise CacheWriteFailed(issue_key, str(e)) from e
        return stored

    def put_many(self, records: Iterable[DiscoveryCycleRecord]) -> tuple:
        """Write several records independently.

        Returns:
            Tuple of (written count, list of keys that failed)
        """
        written = 0
        failed = []
        for record in records:
            try:
                self.put(record.issue_key, record)
                written += 1
            except CacheWriteFailed as e:
                logger.warning(str(e))
                failed.append(record.issue_key)
        return written, failed

    def clear(self, quarter: Optional[str] = None) -> int:
        """Remove all records, or only those completed in ``quarter``.

        Returns:
            Number of records removed
        """
        with self.db.lock, self.db.conn:
            if quarter is None:
                cursor = self.db.conn.execute("DELETE FROM cycle_time_cache")
            else:
                cursor = self.db.conn.execute(
                    "DELETE FROM cycle_time_cache WHERE completion_quarter = ?", (quarter,)
                )
        logger.info(f"Cleared {cursor.rowcount} cached cycle records"
                    + (f" for {quarter}" if quarter else ""))
        return cursor.rowcount

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DiscoveryCycleRecord:
        return DiscoveryCycleRecord(
            issue_key=row["issue_key"],
            discovery_start_date=_from_text(row["discovery_start_date"]),
            discovery_end_date=_from_text(row["discovery_end_date"]),
            end_date_logic=row["end_date_logic"],
            calendar_days_in_discovery=row["calendar_days_in_discovery"],
            active_days_in_discovery=row["active_days_in_discovery"],
            completion_quarter=row["completion_quarter"],
            calculated_at=_from_text(row["calculated_at"]),
        )


class ExclusionStore:
    """Issues left out of cycle time statistics."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = _utcnow):
        self.db = db
        self.clock = clock

    def toggle(self, issue_key: str, excluded_by: str, reason: Optional[str] = None) -> bool:
        """Flip membership of ``issue_key``. Returns True if now excluded."""
        with self.db.lock, self.db.conn:
            existing = self.db.conn.execute(
                "SELECT 1 FROM project_exclusions WHERE issue_key = ?", (issue_key,)
            ).fetchone()
            if existing:
                self.db.conn.execute(
                    "DELETE FROM project_exclusions WHERE issue_key = ?", (issue_key,)
                )
                return False
            self.db.conn.execute(
                """INSERT INTO project_exclusions (issue_key, excluded_by, reason, toggled_at)
                   VALUES (?, ?, ?, ?)""",
                (issue_key, excluded_by, reason, _to_text(self.clock())),
            )
            return True

    def list(self) -> list:
        with self.db.lock:
            rows = self.db.conn.execute(
                "SELECT * FROM project_exclusions ORDER BY toggled_at DESC"
            ).fetchall()
        return [
            ExclusionEntry(
                issue_key=r["issue_key"],
                excluded_by=r["excluded_by"],
                reason=r["reason"],
                toggled_at=_from_text(r["toggled_at"]),
            )
            for r in rows
        ]

    def keys(self) -> set:
        with self.db.lock:
            rows = self.db.conn.execute("SELECT issue_key FROM project_exclusions").fetchall()
        return {r["issue_key"] for r in rows}


class CapacityBaselineStore:
    """Static weekly workload baseline, ascending by week date."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, points: Iterable[CapacityBaselinePoint]) -> int:
        """Add or overwrite points by date. Returns the number written."""
        with self.db.lock, self.db.conn:
            return self._write(points)

    def replace_points(self, points: Iterable[CapacityBaselinePoint]) -> int:
        """Swap the whole baseline for ``points`` in one transaction."""
        with self.db.lock, self.db.conn:
            self.db.conn.execute("DELETE FROM capacity_data")
            count = self._write(points)
        logger.info(f"Replaced capacity baseline with {count} points")
        return count

    def _write(self, points: Iterable[CapacityBaselinePoint]) -> int:
        count = 0
        for point in points:
            self.db.conn.execute(
                """INSERT OR REPLACE INTO capacity_data (date, member_counts, total, notes)
                   VALUES (?, ?, ?, ?)""",
                (point.date.isoformat(), json.dumps(point.member_counts),
                 point.total, point.notes),
            )
            count += 1
        return count

    def list_points(self) -> list:
        with self.db.lock:
            rows = self.db.conn.execute("SELECT * FROM capacity_data ORDER BY date").fetchall()
        return [
            CapacityBaselinePoint(
                date=date.fromisoformat(r["date"]),
                member_counts=json.loads(r["member_counts"]),
                total=r["total"],
                notes=r["notes"],
            )
            for r in rows
        ]


def _parse_csv_date(value: str) -> Optional[date]:
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%m/%d/%y"):
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    return None


def load_capacity_csv(path) -> list:
    """Read baseline points from a CSV with columns date, <members...>, total, notes."""
    points = []
    with open(path, "r", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            week = _parse_csv_date(row.get("date") or row.get("Date") or "")
            if week is None:
                logger.warning(f"Skipping capacity row with unreadable date: {row}")
                continue

            member_counts = {}
            for column, value in row.items():
                if column is None or column.lower() in ("date", "total", "notes"):
                    continue
                try:
                    member_counts[column] = int(value) if value not in (None, "") else 0
                except ValueError:
                    member_counts[column] = 0

            total_raw = row.get("total") or row.get("Total")
            try:
                total = int(total_raw) if total_raw else sum(member_counts.values())
            except ValueError:
                total = sum(member_counts.values())

            points.append(CapacityBaselinePoint(
                date=week,
                member_counts=member_counts,
                total=total,
                notes=row.get("notes") or row.get("Notes") or None,
            ))

    points.sort(key=lambda p: p.date)
    return points
