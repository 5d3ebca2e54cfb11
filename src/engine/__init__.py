"""
Policy Job Engine Core Module.

Leaves first:
- boundary: "now - lag" in a dimension's key space
- policy_config: config blob -> validated policy descriptor
- selection: descriptor + partition metadata -> unit of work
- executor: transaction/snapshot-safe job execution driver
- policies: built-in policies and fast restart
"""

from .entities import (
    Job,
    JobRunStat,
    Hypertable,
    Dimension,
    DimensionSlice,
    Chunk,
    ContinuousAggregate,
    RelationIndex,
    ObjectKind,
    ObjectRef,
)
from .errors import (
    PolicyError,
    ConfigError,
    NotFoundError,
    JobNotFoundError,
    UnsupportedActionError,
    InvariantViolation,
    InvalidJobFieldError,
)
from .timeutil import Interval, PartitionType
from .boundary import TimeBoundary, calculate_boundary
from .transaction import TransactionContext
from .routines import Routine, RoutineKind, RoutineRegistry
from .catalog import JobCatalog
from .partitions import PartitionCatalog, HypertableCache, CacheHandle
from .policy_config import (
    PolicyValidator,
    ReorderPolicy,
    RetentionPolicy,
    CompressionPolicy,
    RefreshPolicy,
    RefreshWindow,
)
from .selection import (
    REORDER_SKIP_RECENT_DIM_SLICES_N,
    get_chunk_id_to_reorder,
    get_chunk_to_compress,
)
from .executor import ExecutionState, JobExecution, JobExecutor, job_execute
from .maintenance import MaintenanceOperations, SqliteMaintenance
from .policies import POLICY_SCHEMA, PolicyRunner, enable_fast_restart
from .job_api import JobApi, AlterJobResult
from .scheduler import JobScheduler, SchedulerState
from .service import EngineService

__all__ = [
    # Entities
    "Job",
    "JobRunStat",
    "Hypertable",
    "Dimension",
    "DimensionSlice",
    "Chunk",
    "ContinuousAggregate",
    "RelationIndex",
    "ObjectKind",
    "ObjectRef",
    # Errors
    "PolicyError",
    "ConfigError",
    "NotFoundError",
    "JobNotFoundError",
    "UnsupportedActionError",
    "InvariantViolation",
    "InvalidJobFieldError",
    # Time
    "Interval",
    "PartitionType",
    "TimeBoundary",
    "calculate_boundary",
    # Execution
    "TransactionContext",
    "Routine",
    "RoutineKind",
    "RoutineRegistry",
    "ExecutionState",
    "JobExecution",
    "JobExecutor",
    "job_execute",
    # Catalogs
    "JobCatalog",
    "PartitionCatalog",
    "HypertableCache",
    "CacheHandle",
    # Policies
    "PolicyValidator",
    "ReorderPolicy",
    "RetentionPolicy",
    "CompressionPolicy",
    "RefreshPolicy",
    "RefreshWindow",
    "REORDER_SKIP_RECENT_DIM_SLICES_N",
    "get_chunk_id_to_reorder",
    "get_chunk_to_compress",
    "MaintenanceOperations",
    "SqliteMaintenance",
    "POLICY_SCHEMA",
    "PolicyRunner",
    "enable_fast_restart",
    # Job API
    "JobApi",
    "AlterJobResult",
    # Scheduler
    "JobScheduler",
    "SchedulerState",
    # Service
    "EngineService",
]
