"""
Job Catalog (SQLite).

Owns Job and JobRunStat rows plus the reorder ledger. The engine borrows a
Job for one execution and writes back only through these methods:
- record_run: ledger entry for a processed chunk
- set_next_start / upsert_next_start: fast restart
- mark_start / mark_end: run statistics

A next_start written while a job is running is "pinned": mark_end keeps it
instead of computing last_finish + schedule_interval.
"""

import json
import logging
from datetime import datetime
from typing import Any, Optional

from .entities import ChunkRunRecord, Job, JobRunStat
from .errors import InvalidJobFieldError, JobNotFoundError
from .persistence import (
    SqliteStore,
    dt_from_db,
    dt_to_db,
    interval_from_db,
    interval_to_db,
)


logger = logging.getLogger(__name__)


# Fields alter_job may change
ALTERABLE_FIELDS = (
    "schedule_interval",
    "max_runtime",
    "max_retries",
    "retry_period",
    "scheduled",
    "config",
)


class JobCatalog(SqliteStore):
    """Persistence for jobs, run statistics and the reorder ledger."""

    # =========================================================================
    # Job Operations
    # =========================================================================

    def insert_job(self, job: Job) -> Job:
        """Insert a job and return it with its assigned id."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO jobs
                (application_name, proc_schema, proc_name, schedule_interval,
                 max_runtime, max_retries, retry_period, scheduled, config, owner)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job.application_name,
                    job.proc_schema,
                    job.proc_name,
                    interval_to_db(job.schedule_interval),
                    interval_to_db(job.max_runtime),
                    job.max_retries,
                    interval_to_db(job.retry_period),
                    1 if job.scheduled else 0,
                    json.dumps(job.config) if job.config is not None else None,
                    job.owner,
                ),
            )
            job_id = cursor.lastrowid

        logger.info(f"Created job {job_id} ({job.proc_qualified_name})")
        return self.get_job(job_id)

    def find_job(self, job_id: int) -> Optional[Job]:
        """Get a job by ID, or None."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_job(row)

    def get_job(self, job_id: int) -> Job:
        """
        Get a job by ID.

        Raises:
            JobNotFoundError: If the job does not exist
        """
        job = self.find_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def list_jobs(self) -> list[Job]:
        """List all jobs ordered by id."""
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM jobs ORDER BY job_id ASC").fetchall()
        return [self._row_to_job(row) for row in rows]

    def update_job_schedule_fields(self, job_id: int, fields: dict[str, Any]) -> Job:
        """
        Overwrite the alterable fields of a job.

        Args:
            job_id: Job to update
            fields: Subset of ALTERABLE_FIELDS; "config" may be None

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidJobFieldError: If a field is not alterable
        """
        self.get_job(job_id)

        updates = []
        values = []
        for name, value in fields.items():
            if name not in ALTERABLE_FIELDS:
                raise InvalidJobFieldError(name)
            updates.append(f"{name} = ?")
            values.append(self._encode_field(name, value))

        if updates:
            values.append(job_id)
            with self._transaction() as conn:
                conn.execute(
                    f"UPDATE jobs SET {', '.join(updates)} WHERE job_id = ?",
                    values,
                )

        return self.get_job(job_id)

    def delete_job(self, job_id: int) -> bool:
        """Delete a job with its stats and ledger rows. Returns True if deleted."""
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"Deleted job {job_id}")
        return deleted

    @staticmethod
    def _encode_field(name: str, value: Any) -> Any:
        if name in ("schedule_interval", "max_runtime", "retry_period"):
            return interval_to_db(value)
        if name == "scheduled":
            return 1 if value else 0
        if name == "config":
            return json.dumps(value) if value is not None else None
        return value

    @staticmethod
    def _row_to_job(row) -> Job:
        return Job(
            job_id=row["job_id"],
            application_name=row["application_name"],
            proc_schema=row["proc_schema"],
            proc_name=row["proc_name"],
            schedule_interval=interval_from_db(row["schedule_interval"]),
            max_runtime=interval_from_db(row["max_runtime"]),
            max_retries=row["max_retries"],
            retry_period=interval_from_db(row["retry_period"]),
            scheduled=bool(row["scheduled"]),
            config=json.loads(row["config"]) if row["config"] is not None else None,
            owner=row["owner"],
        )

    # =========================================================================
    # Run Statistics
    # =========================================================================

    def get_run_stat(self, job_id: int) -> Optional[JobRunStat]:
        """Get run statistics for a job, or None if it never ran."""
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM job_stats WHERE job_id = ?",
                (job_id,),
            ).fetchone()

        if row is None:
            return None

        return JobRunStat(
            job_id=row["job_id"],
            last_start=dt_from_db(row["last_start"]),
            last_finish=dt_from_db(row["last_finish"]),
            next_start=dt_from_db(row["next_start"]),
            last_successful_finish=dt_from_db(row["last_successful_finish"]),
            last_run_success=bool(row["last_run_success"]),
            total_runs=row["total_runs"],
            total_successes=row["total_successes"],
            total_failures=row["total_failures"],
            consecutive_failures=row["consecutive_failures"],
            next_start_pinned=bool(row["next_start_pinned"]),
        )

    def set_next_start(self, job_id: int, next_start: datetime) -> None:
        """
        Overwrite next_start of an existing stats row.

        Raises:
            JobNotFoundError: If the job has no stats row
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE job_stats SET next_start = ?, next_start_pinned = 1
                WHERE job_id = ?
                """,
                (dt_to_db(next_start), job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFoundError(job_id)

    def upsert_next_start(
        self,
        job_id: int,
        next_start: Optional[datetime],
        pinned: bool = True,
    ) -> None:
        """Set next_start, creating the stats row if needed."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_stats (job_id, next_start, next_start_pinned)
                VALUES (?, ?, ?)
                ON CONFLICT(job_id) DO UPDATE SET
                    next_start = excluded.next_start,
                    next_start_pinned = excluded.next_start_pinned
                """,
                (job_id, dt_to_db(next_start), 1 if pinned else 0),
            )

    def mark_start(self, job_id: int, started_at: datetime) -> JobRunStat:
        """Record the start of a run."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_stats (job_id, last_start, total_runs, next_start_pinned)
                VALUES (?, ?, 1, 0)
                ON CONFLICT(job_id) DO UPDATE SET
                    last_start = excluded.last_start,
                    total_runs = job_stats.total_runs + 1,
                    next_start_pinned = 0
                """,
                (job_id, dt_to_db(started_at)),
            )
        return self.get_run_stat(job_id)

    def mark_end(
        self,
        job: Job,
        finished_at: datetime,
        success: bool,
    ) -> JobRunStat:
        """
        Record the end of a run and compute next_start.

        next_start is last_finish + schedule_interval on success and
        last_finish + retry_period on failure, unless the job pinned its own
        next_start during the run.
        """
        stat = self.get_run_stat(job.job_id)
        if stat is None:
            stat = self.mark_start(job.job_id, finished_at)

        if stat.next_start_pinned and success:
            next_start = stat.next_start
        elif success:
            next_start = job.schedule_interval.add_to(finished_at)
        else:
            next_start = job.retry_period.add_to(finished_at)

        with self._transaction() as conn:
            if success:
                conn.execute(
                    """
                    UPDATE job_stats SET
                        last_finish = ?, last_successful_finish = ?, next_start = ?,
                        last_run_success = 1, total_successes = total_successes + 1,
                        consecutive_failures = 0, next_start_pinned = 0
                    WHERE job_id = ?
                    """,
                    (dt_to_db(finished_at), dt_to_db(finished_at), dt_to_db(next_start), job.job_id),
                )
            else:
                conn.execute(
                    """
                    UPDATE job_stats SET
                        last_finish = ?, next_start = ?,
                        last_run_success = 0, total_failures = total_failures + 1,
                        consecutive_failures = consecutive_failures + 1,
                        next_start_pinned = 0
                    WHERE job_id = ?
                    """,
                    (dt_to_db(finished_at), dt_to_db(next_start), job.job_id),
                )

        return self.get_run_stat(job.job_id)

    def list_due_jobs(self, now: datetime) -> list[Job]:
        """Scheduled jobs whose next_start is unset or not after now."""
        due = []
        for job in self.list_jobs():
            if not job.scheduled:
                continue
            stat = self.get_run_stat(job.job_id)
            if stat is None or stat.next_start is None or stat.next_start <= now:
                due.append(job)
        return due

    # =========================================================================
    # Reorder Ledger
    # =========================================================================

    def record_run(self, job_id: int, chunk_id: int, timestamp: datetime) -> ChunkRunRecord:
        """Record that a job processed a chunk."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO policy_chunk_stats (job_id, chunk_id, num_times_job_run, last_time_job_run)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(job_id, chunk_id) DO UPDATE SET
                    num_times_job_run = policy_chunk_stats.num_times_job_run + 1,
                    last_time_job_run = excluded.last_time_job_run
                """,
                (job_id, chunk_id, dt_to_db(timestamp)),
            )
        return self.get_chunk_run(job_id, chunk_id)

    def get_chunk_run(self, job_id: int, chunk_id: int) -> Optional[ChunkRunRecord]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM policy_chunk_stats WHERE job_id = ? AND chunk_id = ?",
                (job_id, chunk_id),
            ).fetchone()

        if row is None:
            return None

        return ChunkRunRecord(
            job_id=row["job_id"],
            chunk_id=row["chunk_id"],
            num_times_job_run=row["num_times_job_run"],
            last_time_job_run=dt_from_db(row["last_time_job_run"]),
        )
