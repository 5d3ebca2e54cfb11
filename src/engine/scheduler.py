"""
Background scheduler for policy jobs.

Polls the job catalog for due jobs and runs each through the execution
driver with a fresh TransactionContext:
1. mark_start (run stats, clears any fast-restart pin)
2. JobExecutor.execute
3. mark_end (next_start = finish + schedule_interval, or + retry_period on
   failure, unless the job moved its own next_start during the run)

Retries follow the job's max_retries/retry_period. Once consecutive
failures exceed max_retries (-1 means unlimited) the job is unscheduled.
max_runtime is advisory: an overrun is logged, never enforced.

What the scheduler MUST NOT do:
- Run two invocations of the same job at once
- Interpret policy configs (that is the driver's and validators' job)
"""

import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from .catalog import JobCatalog
from .entities import Job, JobRunStat, utcnow
from .executor import JobExecutor
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    """Scheduler lifecycle states."""

    STOPPED = "STOPPED"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"


class JobScheduler:
    """
    Single-worker polling scheduler.

    Args:
        catalog: Job catalog holding jobs and run stats
        executor: Execution driver
        poll_interval: Seconds between polls when nothing is due
        clock: Source of "now"
    """

    def __init__(
        self,
        catalog: JobCatalog,
        executor: JobExecutor,
        poll_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.executor = executor
        self.poll_interval = poll_interval
        self._clock = clock

        self._state = SchedulerState.STOPPED
        self._current_job: Optional[Job] = None
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._run_lock = threading.Lock()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def current_job(self) -> Optional[Job]:
        return self._current_job

    def is_running(self) -> bool:
        return self._state == SchedulerState.RUNNING

    # =========================================================================
    # Single Run
    # =========================================================================

    def run_scheduled_job(self, job: Job) -> JobRunStat:
        """
        Run one job and record its run statistics.

        A failing job never raises here; the failure is logged and
        recorded in the run stats.
        """
        with self._run_lock:
            self._current_job = job
            try:
                started_at = self._clock()
                self.catalog.mark_start(job.job_id, started_at)

                ctx = TransactionContext(clock=self._clock)
                success = False
                try:
                    success = self.executor.execute(job, ctx)
                except Exception as e:
                    logger.error(f"Job {job.job_id} ({job.proc_qualified_name}) failed: {e}")

                finished_at = self._clock()
                if job.max_runtime and finished_at > job.max_runtime.add_to(started_at):
                    logger.warning(
                        f"Job {job.job_id} exceeded max_runtime {job.max_runtime}: "
                        f"ran {finished_at - started_at}"
                    )

                stat = self.catalog.mark_end(job, finished_at, success)
                if not success:
                    self._check_retry_limit(job, stat)

                logger.info(
                    f"Job {job.job_id} finished: success={success}, "
                    f"next_start={stat.next_start.isoformat() if stat.next_start else None}"
                )
                return stat

            finally:
                self._current_job = None

    def _check_retry_limit(self, job: Job, stat: JobRunStat) -> None:
        if job.max_retries < 0 or stat.consecutive_failures <= job.max_retries:
            return

        self.catalog.update_job_schedule_fields(job.job_id, {"scheduled": False})
        logger.warning(
            f"Job {job.job_id} reached max_retries ({job.max_retries}) after "
            f"{stat.consecutive_failures} consecutive failures, unscheduled"
        )

    def dispatch_due(self) -> list[JobRunStat]:
        """Run every job that is due now, in job id order."""
        now = self._clock()
        due = self.catalog.list_due_jobs(now)
        if not due:
            logger.debug("No jobs due")
            return []

        return [self.run_scheduled_job(job) for job in due]

    # =========================================================================
    # Dispatch Loop
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        """
        Start the polling loop.

        Args:
            blocking: If True, run in current thread. If False, run in background.
        """
        if self._state != SchedulerState.STOPPED:
            raise RuntimeError(f"Cannot start scheduler in {self._state.value} state")

        self._stop_event.clear()
        self._state = SchedulerState.RUNNING

        if blocking:
            self._loop()
        else:
            self._thread = threading.Thread(target=self._loop, daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        """Stop the loop, letting a running job finish."""
        if self._state == SchedulerState.STOPPED:
            return

        logger.info("Stopping scheduler...")
        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread did not stop within timeout")
            self._thread = None

        self._state = SchedulerState.STOPPED
        logger.info("Scheduler stopped")

    def _loop(self) -> None:
        logger.info("Scheduler loop started")

        while not self._stop_event.is_set():
            try:
                ran = self.dispatch_due()
                if not ran:
                    self._stop_event.wait(self.poll_interval)
            except Exception as e:
                logger.error(f"Error in scheduler loop: {e}", exc_info=True)
                self._stop_event.wait(self.poll_interval)

        logger.info("Scheduler loop ended")
