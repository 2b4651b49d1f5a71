"""
Repository pattern for data access.

Usage counters, subscriber tiers and analysis history, all in SQLite.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import AnalysisResult, StoredAnalysis
from chart_radar.core.errors import PersistenceError


@dataclass(frozen=True)
class CounterSnapshot:
    """Counter values for the daily and monthly windows of one subject."""
    daily_count: int
    monthly_count: int


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS usage_counter (
                subject_id TEXT NOT NULL,
                kind TEXT NOT NULL,
                window_kind TEXT NOT NULL,
                window_start TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
                PRIMARY KEY (subject_id, kind, window_kind, window_start)
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS subscriber (
                subject_id TEXT PRIMARY KEY,
                tier TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS chart_analysis (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                subject_id TEXT NOT NULL,
                pair_name TEXT NOT NULL,
                timeframe TEXT NOT NULL,
                created_at TEXT NOT NULL,
                analysis_data TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chart_analysis_subject_created
            ON chart_analysis (subject_id, created_at)
        """)
        conn.commit()
    finally:
        conn.close()


class UsageCounterRepository:
    """Transactional store for per-window usage counters.

    Counters are keyed by (subject, kind, window, window_start). A new window
    start is a new key, so rollover never requires a write.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def read_counts(
        self,
        subject_id: str,
        kind: str,
        daily_start: datetime,
        monthly_start: datetime
    ) -> CounterSnapshot:
        """Read counters for the given window starts without writing anything.

        Missing rows read as zero.
        """
        conn = get_connection(self.db_path)
        try:
            return self._read(conn, subject_id, kind, daily_start, monthly_start)
        finally:
            conn.close()

    def increment_if_below(
        self,
        subject_id: str,
        kind: str,
        daily_start: datetime,
        daily_limit: int,
        monthly_start: datetime,
        monthly_limit: int
    ) -> Tuple[bool, CounterSnapshot]:
        """Atomically check both limits and increment both counters.

        The read, the check and both writes happen inside one
        ``BEGIN IMMEDIATE`` transaction, which holds SQLite's write lock, so
        concurrent callers are serialized and cannot both take the last slot.

        Args:
            subject_id: Subject being charged
            kind: Analysis kind value
            daily_start: Start of the current daily window
            daily_limit: Daily allowance
            monthly_start: Start of the current monthly window
            monthly_limit: Monthly allowance

        Returns:
            Tuple of (incremented, counters). On success the counters are the
            post-increment values, otherwise the unchanged values.
        """
        conn = get_connection(self.db_path)
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            current = self._read(conn, subject_id, kind, daily_start, monthly_start)
            if current.daily_count >= daily_limit or current.monthly_count >= monthly_limit:
                conn.execute("ROLLBACK")
                return False, current

            for window, start in (("daily", daily_start), ("monthly", monthly_start)):
                conn.execute("""
                    INSERT INTO usage_counter (subject_id, kind, window_kind, window_start, count)
                    VALUES (?, ?, ?, ?, 1)
                    ON CONFLICT (subject_id, kind, window_kind, window_start)
                    DO UPDATE SET count = count + 1
                """, (subject_id, kind, window, start.isoformat()))

            after = self._read(conn, subject_id, kind, daily_start, monthly_start)
            conn.execute("COMMIT")
            return True, after
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def get_tier(self, subject_id: str) -> Optional[str]:
        """Return the stored tier name, or None for unknown subjects."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT tier FROM subscriber WHERE subject_id = ?", (subject_id,)
            ).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set_tier(self, subject_id: str, tier: str) -> None:
        """Create or update the tier of a subject."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO subscriber (subject_id, tier, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT (subject_id) DO UPDATE SET
                    tier = excluded.tier,
                    updated_at = excluded.updated_at
            """, (subject_id, tier, datetime.now(timezone.utc).isoformat()))
            conn.commit()
        finally:
            conn.close()

    @staticmethod
    def _read(
        conn: sqlite3.Connection,
        subject_id: str,
        kind: str,
        daily_start: datetime,
        monthly_start: datetime
    ) -> CounterSnapshot:
        counts = {}
        for window, start in (("daily", daily_start), ("monthly", monthly_start)):
            row = conn.execute("""
                SELECT count FROM usage_counter
                WHERE subject_id = ? AND kind = ? AND window_kind = ? AND window_start = ?
            """, (subject_id, kind, window, start.isoformat())).fetchone()
            counts[window] = row[0] if row else 0
        return CounterSnapshot(daily_count=counts["daily"], monthly_count=counts["monthly"])


class AnalysisRepository:
    """History store for completed analyses."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def save_analysis(
        self,
        subject_id: str,
        result: AnalysisResult,
        pair_name: Optional[str] = None,
        timeframe: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> StoredAnalysis:
        """Insert an analysis and return it with its assigned id.

        Args:
            subject_id: Owner of the analysis
            result: Parsed analysis
            pair_name: Display pair (defaults to the result's pair)
            timeframe: Display timeframe (defaults to the result's timeframe)
            created_at: Creation time (defaults to now, UTC)

        Returns:
            The stored record

        Raises:
            PersistenceError: If the row could not be written
        """
        pair_name = pair_name or result.pair_name
        timeframe = timeframe or result.timeframe
        created_at = created_at or datetime.now(timezone.utc)

        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO chart_analysis
                (subject_id, pair_name, timeframe, created_at, analysis_data)
                VALUES (?, ?, ?, ?, ?)
            """, (
                subject_id,
                pair_name,
                timeframe,
                created_at.isoformat(),
                json.dumps(result.to_dict())
            ))
            conn.commit()
            return StoredAnalysis(
                id=cursor.lastrowid,
                subject_id=subject_id,
                pair_name=pair_name,
                timeframe=timeframe,
                created_at=created_at,
                result=result
            )
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not save analysis for {subject_id}: {e}") from e
        finally:
            conn.close()

    def get_history(self, subject_id: str, limit: int = 50) -> List[StoredAnalysis]:
        """Fetch a subject's analyses, newest first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT id, subject_id, pair_name, timeframe, created_at, analysis_data
                FROM chart_analysis
                WHERE subject_id = ?
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (subject_id, limit))
            records = []
            for row in cursor.fetchall():
                records.append(StoredAnalysis(
                    id=row[0],
                    subject_id=row[1],
                    pair_name=row[2],
                    timeframe=row[3],
                    created_at=datetime.fromisoformat(row[4]),
                    result=AnalysisResult.from_dict(json.loads(row[5]))
                ))
            return records
        finally:
            conn.close()

    def count_analyses(self, subject_id: str, since: Optional[datetime] = None) -> int:
        """Count a subject's analyses, optionally only those created at or after ``since``."""
        conn = get_connection(self.db_path)
        try:
            query = "SELECT COUNT(*) FROM chart_analysis WHERE subject_id = ?"
            params = [subject_id]
            if since is not None:
                query += " AND created_at >= ?"
                params.append(since.isoformat())
            return conn.execute(query, params).fetchone()[0]
        finally:
            conn.close()
