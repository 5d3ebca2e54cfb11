"""
Job Execution Driver.

Runs a job's bound routine inside a correct transaction/snapshot boundary:

    IDLE -> TRANSACTION_ENSURED -> SNAPSHOT_ENSURED -> DISPATCHING
         -> COMPLETED | FAILED

- A transaction is opened only if the caller has none; only that
  transaction is committed (or rolled back) by the driver
- A snapshot is pushed only if none is active; it is popped only if the
  driver pushed it AND a snapshot is still active after dispatch, since a
  procedure may have committed and released it
- Functions run in an atomic scope, procedures may commit on their own

What the driver MUST NOT do:
- Modify the Job (the routine gets the job id and a read-only config copy)
- Swallow errors (cleanup runs, then the original error propagates)
- Retry or reschedule (that is the scheduler's and catalog's business)
"""

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

from .entities import Job
from .errors import UnsupportedActionError
from .routines import Routine, RoutineKind, RoutineRegistry
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    """Driver states for one invocation."""

    IDLE = "IDLE"
    TRANSACTION_ENSURED = "TRANSACTION_ENSURED"
    SNAPSHOT_ENSURED = "SNAPSHOT_ENSURED"
    DISPATCHING = "DISPATCHING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class JobExecution:
    """Driver state of one execute() call, owned by that call's context."""

    job: Job
    state: ExecutionState = ExecutionState.IDLE
    started_transaction: bool = False
    pushed_snapshot: bool = False

    @property
    def is_executing(self) -> bool:
        return self.state not in (ExecutionState.COMPLETED, ExecutionState.FAILED)

    def transition(self, state: ExecutionState) -> None:
        logger.debug(f"Job {self.job.job_id} execution {self.state.value} -> {state.value}")
        self.state = state


def freeze_config(config: Any) -> Any:
    """Deep copy a config blob into read-only mappings and tuples."""
    if config is None:
        return None
    if isinstance(config, Mapping):
        return MappingProxyType({k: freeze_config(v) for k, v in config.items()})
    if isinstance(config, (list, tuple)):
        return tuple(freeze_config(v) for v in config)
    return copy.deepcopy(config)


class JobExecutor:
    """
    Executes jobs through the routine registry.

    One executor may serve concurrent invocations. It holds no per-call
    state: each call records a JobExecution on the TransactionContext the
    caller passed in (ctx.execution).
    """

    def __init__(self, routines: RoutineRegistry):
        self.routines = routines

    def execute(self, job: Job, ctx: TransactionContext) -> bool:
        """
        Execute a job now.

        Args:
            job: Job whose routine to run
            ctx: Transaction state of the calling context

        Returns:
            True once the routine completed

        Raises:
            NotFoundError: The routine is not registered
            UnsupportedActionError: The routine is not a function or procedure
            Any error raised by the routine, after cleanup
        """
        execution = JobExecution(job)
        ctx.execution = execution

        try:
            if not ctx.in_transaction:
                ctx.begin()
                execution.started_transaction = True
            execution.transition(ExecutionState.TRANSACTION_ENSURED)

            if not ctx.snapshot_active:
                ctx.push_snapshot()
                execution.pushed_snapshot = True
            execution.transition(ExecutionState.SNAPSHOT_ENSURED)

            routine = self.routines.lookup(job.proc_schema, job.proc_name)

            execution.transition(ExecutionState.DISPATCHING)
            logger.info(f"Executing job {job.job_id} ({routine.signature})")
            self._dispatch(routine, job, ctx)

            # the routine may have committed and released our snapshot
            if execution.pushed_snapshot and ctx.snapshot_active:
                ctx.pop_snapshot()
            if execution.started_transaction:
                ctx.commit()

            execution.transition(ExecutionState.COMPLETED)
            return True

        except Exception:
            execution.transition(ExecutionState.FAILED)
            if execution.started_transaction and ctx.in_transaction:
                ctx.rollback()
            elif execution.pushed_snapshot and ctx.snapshot_active:
                ctx.pop_snapshot()
            raise

    def _dispatch(self, routine: Routine, job: Job, ctx: TransactionContext) -> None:
        config = freeze_config(job.config)

        if routine.kind == RoutineKind.FUNCTION:
            with ctx.atomic_scope():
                routine.handler(job.job_id, config, ctx=ctx)
        elif routine.kind == RoutineKind.PROCEDURE:
            routine.handler(job.job_id, config, ctx=ctx)
        else:
            raise UnsupportedActionError(job.proc_schema, job.proc_name, routine.kind.value)


def job_execute(job: Job, ctx: TransactionContext, routines: RoutineRegistry) -> bool:
    """Execute a job with a one-off executor."""
    return JobExecutor(routines).execute(job, ctx)
