"""
Policy Engine Service - wires all engine components together.

Components:
- JobCatalog (jobs, run stats, reorder ledger)
- PartitionCatalog + HypertableCache (partition metadata)
- RoutineRegistry (job routines, built-in policies included)
- SqliteMaintenance (storage-side actions)
- PolicyRunner (built-in policies, fast restart)
- JobExecutor (execution driver)
- JobApi (add/alter/delete/run)
- JobScheduler (background polling loop)

Usage:
    service = EngineService.create(db_path)
    service.start()
    # ... scheduler runs due jobs in background ...
    service.stop()
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable

from .catalog import JobCatalog
from .entities import utcnow
from .executor import JobExecutor
from .job_api import JobApi
from .maintenance import SqliteMaintenance
from .partitions import HypertableCache, PartitionCatalog
from .policies import PolicyRunner
from .routines import RoutineRegistry
from .scheduler import JobScheduler


logger = logging.getLogger(__name__)


class EngineService:
    """
    Main service that owns the engine components.

    Use EngineService.create() for convenient construction.
    """

    def __init__(
        self,
        catalog: JobCatalog,
        partitions: PartitionCatalog,
        cache: HypertableCache,
        routines: RoutineRegistry,
        maintenance: SqliteMaintenance,
        policies: PolicyRunner,
        executor: JobExecutor,
        jobs: JobApi,
        scheduler: JobScheduler,
    ):
        self.catalog = catalog
        self.partitions = partitions
        self.cache = cache
        self.routines = routines
        self.maintenance = maintenance
        self.policies = policies
        self.executor = executor
        self.jobs = jobs
        self.scheduler = scheduler

        self._started = False

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        poll_interval: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> "EngineService":
        """
        Create an EngineService with all components wired together.

        Args:
            db_path: Path to SQLite database
            poll_interval: Scheduler poll interval in seconds
            clock: Source of "now" for every component

        Returns:
            Configured EngineService with the built-in policies registered
        """
        catalog = JobCatalog(db_path)
        partitions = PartitionCatalog(db_path)
        cache = HypertableCache(partitions)
        routines = RoutineRegistry()
        maintenance = SqliteMaintenance(db_path, clock=clock)

        policies = PolicyRunner(
            catalog=catalog,
            partitions=partitions,
            cache=cache,
            routines=routines,
            maintenance=maintenance,
            clock=clock,
        )
        policies.register_builtin_policies()

        executor = JobExecutor(routines)
        jobs = JobApi(
            catalog=catalog,
            routines=routines,
            validator=policies.validator,
            executor=executor,
            clock=clock,
        )
        scheduler = JobScheduler(
            catalog=catalog,
            executor=executor,
            poll_interval=poll_interval,
            clock=clock,
        )

        return cls(
            catalog=catalog,
            partitions=partitions,
            cache=cache,
            routines=routines,
            maintenance=maintenance,
            policies=policies,
            executor=executor,
            jobs=jobs,
            scheduler=scheduler,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, blocking: bool = False) -> None:
        if self._started:
            raise RuntimeError("Engine already started")

        logger.info("Starting policy engine...")
        self._started = True
        self.scheduler.start(blocking=blocking)
        logger.info("Policy engine started")

    def stop(self, timeout: float = 30.0) -> None:
        if not self._started:
            return

        logger.info("Stopping policy engine...")
        self.scheduler.stop(timeout=timeout)
        self._started = False
        logger.info("Policy engine stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self.scheduler.is_running()
