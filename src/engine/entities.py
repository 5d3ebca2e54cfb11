"""
Policy Engine Domain Entities.

- Job: recurring maintenance action bound to a routine and a schedule
- JobRunStat: per-job run bookkeeping, including the next scheduled start
- Hypertable / Dimension / DimensionSlice / Chunk: partition metadata
- ContinuousAggregate: materialized aggregate over a raw hypertable
- RelationIndex: an index and the relation it belongs to
- ObjectRef: the object a retention policy acts on

Partition metadata is read-only to the engine. Jobs are read-only except
for config re-validation on alter.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .timeutil import Interval, PartitionType, USECS_PER_MINUTE


# Job defaults for user-defined actions
DEFAULT_APPLICATION_NAME = "User-Defined Action"
DEFAULT_MAX_RUNTIME = Interval()
DEFAULT_MAX_RETRIES = -1
DEFAULT_RETRY_PERIOD = Interval(microseconds=5 * USECS_PER_MINUTE)


def utcnow() -> datetime:
    """Get current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class Job:
    """
    A recurring maintenance job.

    The engine only reads jobs; schedule fields change through the
    catalog's own update path (alter_job).
    """

    proc_schema: str
    proc_name: str
    schedule_interval: Interval
    owner: str
    config: Optional[dict] = None
    max_runtime: Interval = DEFAULT_MAX_RUNTIME
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_period: Interval = DEFAULT_RETRY_PERIOD
    scheduled: bool = True
    application_name: str = DEFAULT_APPLICATION_NAME
    job_id: Optional[int] = None

    @classmethod
    def create(
        cls,
        proc_schema: str,
        proc_name: str,
        schedule_interval: Interval,
        owner: str,
        config: Optional[dict] = None,
        scheduled: bool = True,
    ) -> "Job":
        """Create an unsaved Job with user-defined action defaults."""
        return cls(
            proc_schema=proc_schema,
            proc_name=proc_name,
            schedule_interval=schedule_interval,
            owner=owner,
            config=config,
            scheduled=scheduled,
        )

    @property
    def proc_qualified_name(self) -> str:
        return f"{self.proc_schema}.{self.proc_name}"


@dataclass
class JobRunStat:
    """Run statistics for a job. Created lazily on first run."""

    job_id: int
    last_start: Optional[datetime] = None
    last_finish: Optional[datetime] = None
    next_start: Optional[datetime] = None
    last_successful_finish: Optional[datetime] = None
    last_run_success: bool = True
    total_runs: int = 0
    total_successes: int = 0
    total_failures: int = 0
    consecutive_failures: int = 0
    # set when next_start was written during the current run (fast restart)
    next_start_pinned: bool = False


@dataclass(frozen=True)
class Hypertable:
    """A logical table partitioned into chunks."""

    hypertable_id: int
    schema_name: str
    table_name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


@dataclass(frozen=True)
class Dimension:
    """
    The open (time-like) partitioning dimension of a hypertable.

    Integer-partitioned dimensions name a routine returning "now" in the
    dimension's units; timestamp dimensions use the transaction time.
    """

    dimension_id: int
    hypertable_id: int
    column_name: str
    column_type: PartitionType
    interval_length: Optional[int] = None
    integer_now_func_schema: Optional[str] = None
    integer_now_func: Optional[str] = None

    @property
    def has_integer_now_func(self) -> bool:
        return bool(self.integer_now_func_schema) and bool(self.integer_now_func)


@dataclass(frozen=True)
class DimensionSlice:
    """Range [range_start, range_end) of one chunk along a dimension."""

    slice_id: int
    dimension_id: int
    range_start: int
    range_end: int


@dataclass(frozen=True)
class Chunk:
    """One physical partition of a hypertable."""

    chunk_id: int
    hypertable_id: int
    schema_name: str
    table_name: str
    slice_id: int
    compressed: bool = False
    dropped: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


@dataclass(frozen=True)
class ContinuousAggregate:
    """A continuous aggregate: user view backed by a materialization hypertable."""

    mat_hypertable_id: int
    raw_hypertable_id: int
    user_view_schema: str
    user_view_name: str

    @property
    def qualified_name(self) -> str:
        return f"{self.user_view_schema}.{self.user_view_name}"


@dataclass(frozen=True)
class RelationIndex:
    """An index and the table it is defined on."""

    index_id: int
    index_schema: str
    index_name: str
    table_schema: str
    table_name: str


class ObjectKind(str, Enum):
    """Kinds of objects a policy can act on."""

    HYPERTABLE = "hypertable"
    CONTINUOUS_AGGREGATE = "continuous_aggregate"


@dataclass(frozen=True)
class ObjectRef:
    """
    Reference to the object a retention policy acts on.

    For continuous aggregates this is the user-facing view, while
    hypertable_id still names the materialization hypertable.
    """

    kind: ObjectKind
    schema_name: str
    name: str
    hypertable_id: int

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


@dataclass(frozen=True)
class ChunkRunRecord:
    """Reorder ledger row: how often a job has processed a chunk."""

    job_id: int
    chunk_id: int
    num_times_job_run: int
    last_time_job_run: datetime


@dataclass
class RefreshRecord:
    """Result of one continuous aggregate refresh."""

    mat_hypertable_id: int
    window_start: int
    window_end: int
    refreshed_at: datetime = field(default_factory=utcnow)
