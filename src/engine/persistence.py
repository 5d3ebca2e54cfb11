"""
SQLite storage shared by the job catalog and the partition catalog.

- WAL mode for concurrent readers while a job writes
- One connection per operation; multi-statement writes use _transaction()
- Schema for jobs, run stats, the reorder ledger and partition metadata
  lives in one database file

Stores do NOT contain policy logic; they answer queries and persist rows.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from .timeutil import Interval, to_utc


class SqliteStore:
    """
    Base class for SQLite-backed catalogs.

    Subclasses share one database file and therefore one schema.
    Transaction management is the caller's responsibility for
    multi-operation sequences.
    """

    def __init__(self, db_path: str | Path):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = str(db_path)
        self._init_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with WAL mode enabled."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database connections."""
        conn = self._get_connection()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Jobs
            conn.execute("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    application_name TEXT NOT NULL,
                    proc_schema TEXT NOT NULL,
                    proc_name TEXT NOT NULL,
                    schedule_interval TEXT NOT NULL,
                    max_runtime TEXT NOT NULL,
                    max_retries INTEGER NOT NULL,
                    retry_period TEXT NOT NULL,
                    scheduled INTEGER NOT NULL DEFAULT 1,
                    config TEXT,
                    owner TEXT NOT NULL
                )
            """)

            # Run statistics, one row per job, created on first run
            conn.execute("""
                CREATE TABLE IF NOT EXISTS job_stats (
                    job_id INTEGER PRIMARY KEY,
                    last_start TEXT,
                    last_finish TEXT,
                    next_start TEXT,
                    last_successful_finish TEXT,
                    last_run_success INTEGER NOT NULL DEFAULT 1,
                    total_runs INTEGER NOT NULL DEFAULT 0,
                    total_successes INTEGER NOT NULL DEFAULT 0,
                    total_failures INTEGER NOT NULL DEFAULT 0,
                    consecutive_failures INTEGER NOT NULL DEFAULT 0,
                    next_start_pinned INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
                )
            """)

            # Reorder ledger: which chunks a job has already processed
            conn.execute("""
                CREATE TABLE IF NOT EXISTS policy_chunk_stats (
                    job_id INTEGER NOT NULL,
                    chunk_id INTEGER NOT NULL,
                    num_times_job_run INTEGER NOT NULL DEFAULT 1,
                    last_time_job_run TEXT NOT NULL,
                    PRIMARY KEY (job_id, chunk_id),
                    FOREIGN KEY (job_id) REFERENCES jobs(job_id) ON DELETE CASCADE
                )
            """)

            # Partition metadata
            conn.execute("""
                CREATE TABLE IF NOT EXISTS hypertables (
                    hypertable_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    schema_name TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    UNIQUE (schema_name, table_name)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS dimensions (
                    dimension_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    hypertable_id INTEGER NOT NULL,
                    column_name TEXT NOT NULL,
                    column_type TEXT NOT NULL,
                    interval_length INTEGER,
                    integer_now_func_schema TEXT,
                    integer_now_func TEXT,
                    FOREIGN KEY (hypertable_id) REFERENCES hypertables(hypertable_id)
                        ON DELETE CASCADE
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS dimension_slices (
                    slice_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    dimension_id INTEGER NOT NULL,
                    range_start INTEGER NOT NULL,
                    range_end INTEGER NOT NULL,
                    FOREIGN KEY (dimension_id) REFERENCES dimensions(dimension_id)
                        ON DELETE CASCADE
                )
            """)

            # Index for slice ordering by range
            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_dimension_slices_range
                ON dimension_slices (dimension_id, range_start, range_end)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS chunks (
                    chunk_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    hypertable_id INTEGER NOT NULL,
                    schema_name TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    slice_id INTEGER NOT NULL,
                    compressed INTEGER NOT NULL DEFAULT 0,
                    dropped INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (hypertable_id) REFERENCES hypertables(hypertable_id)
                        ON DELETE CASCADE,
                    FOREIGN KEY (slice_id) REFERENCES dimension_slices(slice_id)
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_chunks_slice
                ON chunks (slice_id)
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS relation_indexes (
                    index_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    index_schema TEXT NOT NULL,
                    index_name TEXT NOT NULL,
                    table_schema TEXT NOT NULL,
                    table_name TEXT NOT NULL,
                    UNIQUE (index_schema, index_name)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS continuous_aggs (
                    mat_hypertable_id INTEGER PRIMARY KEY,
                    raw_hypertable_id INTEGER NOT NULL,
                    user_view_schema TEXT NOT NULL,
                    user_view_name TEXT NOT NULL,
                    FOREIGN KEY (mat_hypertable_id) REFERENCES hypertables(hypertable_id),
                    FOREIGN KEY (raw_hypertable_id) REFERENCES hypertables(hypertable_id)
                )
            """)

            # Maintenance side effects
            conn.execute("""
                CREATE TABLE IF NOT EXISTS chunk_reorders (
                    chunk_id INTEGER NOT NULL,
                    index_name TEXT NOT NULL,
                    reordered_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS cagg_refreshes (
                    refresh_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    mat_hypertable_id INTEGER NOT NULL,
                    window_start INTEGER NOT NULL,
                    window_end INTEGER NOT NULL,
                    refreshed_at TEXT NOT NULL
                )
            """)


# =============================================================================
# Column codecs
# =============================================================================


def dt_to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return to_utc(value).isoformat()


def dt_from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def interval_to_db(value: Interval) -> str:
    return json.dumps(
        {"months": value.months, "days": value.days, "microseconds": value.microseconds}
    )


def interval_from_db(value: str) -> Interval:
    data = json.loads(value)
    return Interval(
        months=data["months"],
        days=data["days"],
        microseconds=data["microseconds"],
    )
