"""
Built-in policy actions and the Fast-Restart Scheduler.

Each policy runs validate -> select -> act, in that order, on a descriptor
derived fresh from the job's config. Reorder and compression process at
most one chunk per run; afterwards the selector is asked again and, if work
remains, the job's next start is pulled forward so the backlog drains run
after run.

The built-ins are registered as procedures in POLICY_SCHEMA so the
execution driver dispatches them like any other routine.
"""

import logging
from datetime import datetime
from typing import Callable, Mapping, Optional

from .catalog import JobCatalog
from .entities import utcnow
from .maintenance import MaintenanceOperations
from .partitions import HypertableCache, PartitionCatalog
from .policy_config import PolicyValidator
from .routines import RoutineRegistry
from .selection import (
    get_chunk_id_to_reorder,
    get_chunk_to_compress,
    get_refresh_window,
    get_retention_boundary,
)
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


POLICY_SCHEMA = "_policy_internal"
POLICY_REORDER = "policy_reorder"
POLICY_RETENTION = "policy_retention"
POLICY_COMPRESSION = "policy_compression"
POLICY_REFRESH_CAGG = "policy_refresh_continuous_aggregate"

BUILTIN_POLICY_NAMES = (
    POLICY_REORDER,
    POLICY_RETENTION,
    POLICY_COMPRESSION,
    POLICY_REFRESH_CAGG,
)


def enable_fast_restart(
    catalog: JobCatalog,
    job_id: int,
    job_name: str,
    ctx: TransactionContext,
) -> datetime:
    """
    Make a job due again immediately.

    next_start becomes the last start of the job if it has run before,
    otherwise the current transaction time. Either way it is not after now.
    """
    stat = catalog.get_run_stat(job_id)
    if stat is not None and stat.last_start is not None:
        next_start = stat.last_start
        catalog.set_next_start(job_id, next_start)
    else:
        next_start = ctx.transaction_start_timestamp
        catalog.upsert_next_start(job_id, next_start)

    logger.info(f"{job_name} job {job_id} has more work, next start moved to {next_start.isoformat()}")
    return next_start


class PolicyRunner:
    """
    Executes the four built-in policies.

    Handlers follow the job routine calling convention:
    handler(job_id, config, *, ctx).
    """

    def __init__(
        self,
        catalog: JobCatalog,
        partitions: PartitionCatalog,
        cache: HypertableCache,
        routines: RoutineRegistry,
        maintenance: MaintenanceOperations,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.catalog = catalog
        self.partitions = partitions
        self.cache = cache
        self.routines = routines
        self.maintenance = maintenance
        self.validator = PolicyValidator(partitions, cache, routines)
        self._clock = clock

    def register_builtin_policies(self) -> None:
        handlers = {
            POLICY_REORDER: self.policy_reorder_execute,
            POLICY_RETENTION: self.policy_retention_execute,
            POLICY_COMPRESSION: self.policy_compression_execute,
            POLICY_REFRESH_CAGG: self.policy_refresh_cagg_execute,
        }
        for name, handler in handlers.items():
            self.routines.register_procedure(POLICY_SCHEMA, name, handler)

    def _fast_restart_if_more_work(
        self,
        job_id: int,
        job_name: str,
        ctx: TransactionContext,
        has_more_work: Callable[[], bool],
    ) -> bool:
        # best effort: without an answer the job keeps its normal cadence
        try:
            more = has_more_work()
        except Exception as e:
            logger.warning(f"Could not check remaining {job_name} work for job {job_id}: {e}")
            return False

        if more:
            enable_fast_restart(self.catalog, job_id, job_name, ctx)
        return more

    # =========================================================================
    # Reorder
    # =========================================================================

    def policy_reorder_execute(
        self,
        job_id: int,
        config: Optional[Mapping],
        *,
        ctx: TransactionContext,
    ) -> None:
        policy = self.validator.read_reorder(config)
        dimension = self.partitions.get_open_dimension(policy.hypertable)

        chunk_id = get_chunk_id_to_reorder(job_id, self.partitions, dimension)
        if chunk_id is None:
            logger.info(
                f"no chunks need reordering for hypertable {policy.hypertable.qualified_name}"
            )
            return

        chunk = self.partitions.resolve_chunk(chunk_id)
        logger.debug(f"reordering chunk {chunk.qualified_name}")
        self.maintenance.reorder_chunk(chunk, policy.index)
        self.catalog.record_run(job_id, chunk_id, self._clock())

        self._fast_restart_if_more_work(
            job_id,
            "reorder",
            ctx,
            lambda: get_chunk_id_to_reorder(job_id, self.partitions, dimension) is not None,
        )

    # =========================================================================
    # Retention
    # =========================================================================

    def policy_retention_execute(
        self,
        job_id: int,
        config: Optional[Mapping],
        *,
        ctx: TransactionContext,
    ) -> None:
        policy = self.validator.read_retention(config, ctx)
        boundary = get_retention_boundary(policy)

        logger.debug(
            f"job {job_id} dropping chunks of {policy.target.qualified_name} older than {boundary}"
        )
        self.maintenance.drop_chunks(policy.target, boundary.value)

    # =========================================================================
    # Compression
    # =========================================================================

    def policy_compression_execute(
        self,
        job_id: int,
        config: Optional[Mapping],
        *,
        ctx: TransactionContext,
    ) -> None:
        with self.validator.compression_policy(config) as policy:
            chunk_id = get_chunk_to_compress(self.partitions, policy, ctx, self.routines)
            if chunk_id is None:
                logger.info(
                    f"no chunks for hypertable {policy.hypertable.qualified_name} "
                    f"that satisfy compress chunk policy"
                )
                return

            chunk = self.partitions.resolve_chunk(chunk_id)
            self.maintenance.compress_chunk(chunk)

            self._fast_restart_if_more_work(
                job_id,
                "compression",
                ctx,
                lambda: get_chunk_to_compress(self.partitions, policy, ctx, self.routines) is not None,
            )

    # =========================================================================
    # Continuous Aggregate Refresh
    # =========================================================================

    def policy_refresh_cagg_execute(
        self,
        job_id: int,
        config: Optional[Mapping],
        *,
        ctx: TransactionContext,
    ) -> None:
        policy = self.validator.read_refresh(config, ctx)
        window = get_refresh_window(policy)

        logger.debug(
            f"job {job_id} refreshing continuous aggregate {policy.cagg.qualified_name} "
            f"in window {window}"
        )
        self.maintenance.refresh_continuous_aggregate(policy.cagg, window, ctx)
