"""
Job API: add, alter, delete and run jobs.

Config blobs of the built-in policies are validated before they are stored,
so a broken config is rejected when the job is created or altered instead
of failing on every run. Routines outside POLICY_SCHEMA get their config
stored as-is.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Mapping, Optional, Union

from .catalog import JobCatalog
from .entities import Job, utcnow
from .errors import ConfigError, JobNotFoundError
from .executor import JobExecutor
from .policies import (
    POLICY_COMPRESSION,
    POLICY_REFRESH_CAGG,
    POLICY_REORDER,
    POLICY_RETENTION,
    POLICY_SCHEMA,
)
from .policy_config import PolicyDescriptor, PolicyValidator
from .routines import RoutineRegistry
from .timeutil import Interval
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


DEFAULT_JOB_OWNER = "default"

IntervalLike = Union[Interval, timedelta, str]


def as_interval(value: IntervalLike, name: str) -> Interval:
    """
    Raises:
        ConfigError: If value cannot be read as an interval
    """
    if isinstance(value, Interval):
        return value
    if isinstance(value, timedelta):
        return Interval.from_timedelta(value)
    if isinstance(value, str):
        try:
            return Interval.parse(value)
        except ValueError as e:
            raise ConfigError(f"invalid value for {name}", detail=str(e)) from e
    raise ConfigError(f"invalid value for {name}", detail=f"got {value!r}")


@dataclass
class AlterJobResult:
    """Job fields after alter_job, plus the job's next start."""

    job_id: int
    schedule_interval: Interval
    max_runtime: Interval
    max_retries: int
    retry_period: Interval
    scheduled: bool
    config: Optional[dict]
    next_start: Optional[datetime]


class JobApi:
    """
    Job management operations.

    Args:
        catalog: Job catalog the jobs live in
        routines: Registry job routines are resolved in
        validator: Policy config validator for built-in policies
        executor: Driver used by run_job
        clock: Source of "now"
    """

    def __init__(
        self,
        catalog: JobCatalog,
        routines: RoutineRegistry,
        validator: PolicyValidator,
        executor: JobExecutor,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.routines = routines
        self.validator = validator
        self.executor = executor
        self._clock = clock

    # =========================================================================
    # Config Check
    # =========================================================================

    def job_config_check(
        self,
        proc_schema: str,
        proc_name: str,
        config: Optional[Mapping],
    ) -> Optional[PolicyDescriptor]:
        """
        Validate the config of a built-in policy job.

        Returns:
            The validated descriptor, or None for routines that are not
            built-in policies

        Raises:
            ConfigError: If the config does not validate
        """
        if proc_schema != POLICY_SCHEMA:
            return None

        ctx = TransactionContext(clock=self._clock)
        ctx.begin()
        try:
            if proc_name == POLICY_REORDER:
                return self.validator.read_reorder(config)
            if proc_name == POLICY_RETENTION:
                return self.validator.read_retention(config, ctx)
            if proc_name == POLICY_COMPRESSION:
                with self.validator.compression_policy(config) as policy:
                    return policy
            if proc_name == POLICY_REFRESH_CAGG:
                return self.validator.read_refresh(config, ctx)
            return None
        finally:
            ctx.rollback()

    # =========================================================================
    # Job Operations
    # =========================================================================

    def add_job(
        self,
        proc_schema: str,
        proc_name: str,
        schedule_interval: Optional[IntervalLike],
        config: Optional[dict] = None,
        initial_start: Optional[datetime] = None,
        scheduled: bool = True,
        owner: str = DEFAULT_JOB_OWNER,
    ) -> Job:
        """
        Create a job for a registered routine.

        Raises:
            ConfigError: Missing routine name or schedule interval, or an
                invalid built-in policy config
            NotFoundError: If the routine is not registered
        """
        if not proc_schema or not proc_name:
            raise ConfigError("function or procedure cannot be NULL")
        if schedule_interval is None:
            raise ConfigError("schedule interval cannot be NULL")

        self.routines.lookup(proc_schema, proc_name)
        interval = as_interval(schedule_interval, "schedule_interval")

        if config is not None:
            self.job_config_check(proc_schema, proc_name, config)

        job = self.catalog.insert_job(
            Job.create(
                proc_schema=proc_schema,
                proc_name=proc_name,
                schedule_interval=interval,
                owner=owner,
                config=config,
                scheduled=scheduled,
            )
        )

        if initial_start is not None:
            self.catalog.upsert_next_start(job.job_id, initial_start, pinned=False)

        return job

    def alter_job(
        self,
        job_id: int,
        schedule_interval: Optional[IntervalLike] = None,
        max_runtime: Optional[IntervalLike] = None,
        max_retries: Optional[int] = None,
        retry_period: Optional[IntervalLike] = None,
        scheduled: Optional[bool] = None,
        config: Optional[dict] = None,
        next_start: Optional[datetime] = None,
        if_exists: bool = False,
    ) -> Optional[AlterJobResult]:
        """
        Change the schedule fields and config of a job.

        Only arguments that are not None are changed. A new schedule
        interval moves next_start to last_finish + interval.

        Returns:
            The altered job, or None if it does not exist and if_exists is set

        Raises:
            JobNotFoundError: If the job does not exist and if_exists is not set
            ConfigError: If the new config does not validate
        """
        job = self.catalog.find_job(job_id)
        if job is None:
            if if_exists:
                logger.info(f"job {job_id} not found, skipping")
                return None
            raise JobNotFoundError(job_id)

        fields = {}
        if schedule_interval is not None:
            fields["schedule_interval"] = as_interval(schedule_interval, "schedule_interval")
        if max_runtime is not None:
            fields["max_runtime"] = as_interval(max_runtime, "max_runtime")
        if max_retries is not None:
            fields["max_retries"] = max_retries
        if retry_period is not None:
            fields["retry_period"] = as_interval(retry_period, "retry_period")
        if scheduled is not None:
            fields["scheduled"] = scheduled
        if config is not None:
            self.job_config_check(job.proc_schema, job.proc_name, config)
            fields["config"] = config

        interval_changed = (
            "schedule_interval" in fields
            and fields["schedule_interval"] != job.schedule_interval
        )

        updated = self.catalog.update_job_schedule_fields(job_id, fields)

        if interval_changed:
            stat = self.catalog.get_run_stat(job_id)
            if stat is not None:
                recomputed = (
                    updated.schedule_interval.add_to(stat.last_finish)
                    if stat.last_finish is not None
                    else None
                )
                self.catalog.upsert_next_start(job_id, recomputed, pinned=False)

        if next_start is not None:
            self.catalog.upsert_next_start(job_id, next_start)

        stat = self.catalog.get_run_stat(job_id)
        logger.info(f"Altered job {job_id}: {', '.join(fields) or 'no fields'}")

        return AlterJobResult(
            job_id=updated.job_id,
            schedule_interval=updated.schedule_interval,
            max_runtime=updated.max_runtime,
            max_retries=updated.max_retries,
            retry_period=updated.retry_period,
            scheduled=updated.scheduled,
            config=updated.config,
            next_start=stat.next_start if stat is not None else None,
        )

    def delete_job(self, job_id: int, if_exists: bool = False) -> bool:
        """
        Delete a job with its run stats and reorder ledger.

        Raises:
            JobNotFoundError: If the job does not exist and if_exists is not set
        """
        if not self.catalog.delete_job(job_id):
            if if_exists:
                logger.info(f"job {job_id} not found, skipping")
                return False
            raise JobNotFoundError(job_id)
        return True

    def run_job(self, job_id: int, ctx: Optional[TransactionContext] = None) -> bool:
        """
        Execute a job now, outside its schedule.

        Run statistics are not touched; only the scheduler records runs.
        """
        job = self.catalog.get_job(job_id)
        if ctx is None:
            ctx = TransactionContext(clock=self._clock)
        return self.executor.execute(job, ctx)
