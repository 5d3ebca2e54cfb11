"""
Policy Config Validator.

Decodes a job's configuration blob into a typed, validated policy
descriptor. Validators fail fast with a ConfigError and never hand out a
partially built descriptor. Descriptors are frozen and re-derived from the
job's current config on every execution.

Config keys per policy:
- reorder:     hypertable_id, index_name
- retention:   hypertable_id, drop_after
- compression: hypertable_id, compress_after
- refresh:     mat_hypertable_id, start_offset, end_offset (offsets nullable)

Lags are ints for integer-partitioned hypertables and interval strings
("7 days", "PT1H") for timestamp-partitioned ones.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Annotated, Any, Iterator, Mapping, Optional, Union

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    StrictInt,
    StrictStr,
    ValidationError,
)

from .boundary import Lag, TimeBoundary, calculate_boundary, check_lag_type
from .entities import (
    ContinuousAggregate,
    Dimension,
    Hypertable,
    ObjectKind,
    ObjectRef,
    RelationIndex,
)
from .errors import ConfigError, NotFoundError
from .partitions import CacheHandle, HypertableCache, PartitionCatalog
from .routines import RoutineRegistry
from .timeutil import (
    Interval,
    PartitionType,
    internal_to_time_string,
    time_min,
    time_noend_or_max,
)
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


# =============================================================================
# Config blob models
# =============================================================================


def _parse_lag(value: Any) -> Lag:
    if isinstance(value, bool):
        raise ValueError("a boolean is not a valid lag")
    if isinstance(value, (int, Interval)):
        return value
    if isinstance(value, timedelta):
        return Interval.from_timedelta(value)
    if isinstance(value, str):
        return Interval.parse(value)
    raise ValueError(f"expected an integer or an interval, got {value!r}")


LagValue = Annotated[Union[int, Interval], BeforeValidator(_parse_lag)]


class _PolicyConfigModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, arbitrary_types_allowed=True)


class ReorderConfig(_PolicyConfigModel):
    hypertable_id: StrictInt
    index_name: StrictStr


class RetentionConfig(_PolicyConfigModel):
    hypertable_id: StrictInt
    drop_after: LagValue


class CompressionConfig(_PolicyConfigModel):
    hypertable_id: StrictInt
    compress_after: LagValue


class RefreshConfig(_PolicyConfigModel):
    mat_hypertable_id: StrictInt
    # keys are required, values may be null (open-ended window)
    start_offset: Optional[LagValue]
    end_offset: Optional[LagValue]


def decode_config(model: type[_PolicyConfigModel], config: Optional[Mapping], policy_name: str):
    """
    Decode a config blob with a pydantic model.

    Raises:
        ConfigError: If the config is missing, not a mapping, lacks a key
            or holds an invalid value
    """
    if config is None:
        raise ConfigError(f"configuration for {policy_name} policy is missing")
    if not isinstance(config, Mapping):
        raise ConfigError(
            f"configuration for {policy_name} policy must be an object",
            detail=f"got {type(config).__name__}",
        )

    try:
        return model.model_validate(dict(config))
    except ValidationError as exc:
        error = exc.errors()[0]
        key = ".".join(str(part) for part in error["loc"]) or "config"
        if error["type"] == "missing":
            raise ConfigError(
                f"could not find {key} in config for {policy_name} policy"
            ) from exc
        raise ConfigError(
            f"invalid value for {key} in config for {policy_name} policy",
            detail=error["msg"],
        ) from exc


# =============================================================================
# Policy descriptors
# =============================================================================


@dataclass(frozen=True)
class ReorderPolicy:
    hypertable: Hypertable
    index: RelationIndex


@dataclass(frozen=True)
class RetentionPolicy:
    hypertable: Hypertable
    drop_after: Lag
    boundary: TimeBoundary
    # object drop_chunks acts on: the hypertable or its continuous aggregate view
    target: ObjectRef


@dataclass(frozen=True)
class CompressionPolicy:
    """
    Compression descriptor. Holds a pinned hypertable cache handle that the
    code path which created the descriptor must release exactly once.
    """

    hypertable: Hypertable
    dimension: Dimension
    boundary_dimension: Dimension
    compress_after: Lag
    handle: CacheHandle = field(compare=False, repr=False)

    def release(self) -> None:
        self.handle.release()


@dataclass(frozen=True)
class RefreshWindow:
    """Half-open window [start, end) in internal key units."""

    start: int
    end: int
    partition_type: PartitionType

    def __str__(self) -> str:
        return (
            f"[{internal_to_time_string(self.start, self.partition_type)}, "
            f"{internal_to_time_string(self.end, self.partition_type)})"
        )


@dataclass(frozen=True)
class RefreshPolicy:
    materialization_id: int
    cagg: ContinuousAggregate
    window: RefreshWindow


PolicyDescriptor = Union[ReorderPolicy, RetentionPolicy, CompressionPolicy, RefreshPolicy]


# =============================================================================
# Validators
# =============================================================================


class PolicyValidator:
    """
    One validator per policy kind over shared catalog access.

    Args:
        partitions: Partition catalog and continuous aggregate resolver
        cache: Hypertable cache used by retention and compression
        routines: Registry used to evaluate integer now routines
    """

    def __init__(
        self,
        partitions: PartitionCatalog,
        cache: HypertableCache,
        routines: RoutineRegistry,
    ):
        self.partitions = partitions
        self.cache = cache
        self.routines = routines

    def _get_hypertable(self, hypertable_id: int) -> Hypertable:
        hypertable = self.partitions.get_hypertable(hypertable_id)
        if hypertable is None:
            raise NotFoundError(f"configuration hypertable id {hypertable_id} not found")
        return hypertable

    def get_open_dimension_for_hypertable(self, hypertable: Hypertable) -> Dimension:
        """
        Dimension to use for boundary math.

        Integer-partitioned hypertables (including continuous aggregate
        materializations) resolve to the dimension that carries an integer
        now routine, following the aggregate chain to its raw hypertable.

        Raises:
            ConfigError: If no integer now routine is registered on the chain
        """
        open_dim = self.partitions.get_open_dimension(hypertable)
        if not open_dim.column_type.is_integer:
            return open_dim

        now_dim = self.partitions.find_integer_now_func_by_materialization_id(
            hypertable.hypertable_id
        )
        if now_dim is None:
            raise ConfigError(
                f"missing integer now function for hypertable \"{hypertable.qualified_name}\""
            )
        return now_dim

    # -------------------------------------------------------------------------
    # Reorder
    # -------------------------------------------------------------------------

    def check_valid_index(self, hypertable: Hypertable, index_name: str) -> RelationIndex:
        """
        Raises:
            ConfigError: If the index is missing or belongs to another table
        """
        index = self.partitions.find_index(hypertable.schema_name, index_name)
        if index is None:
            raise ConfigError(
                "reorder index not found",
                detail=f"The index \"{index_name}\" could not be found",
            )

        if (index.table_schema, index.table_name) != (hypertable.schema_name, hypertable.table_name):
            raise ConfigError(
                "invalid reorder index",
                hint=f"The reorder index must be an index on hypertable "
                     f"\"{hypertable.table_name}\".",
            )
        return index

    def read_reorder(self, config: Optional[Mapping]) -> ReorderPolicy:
        cfg = decode_config(ReorderConfig, config, "reorder")
        hypertable = self._get_hypertable(cfg.hypertable_id)
        index = self.check_valid_index(hypertable, cfg.index_name)
        return ReorderPolicy(hypertable=hypertable, index=index)

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def read_retention(self, config: Optional[Mapping], ctx: TransactionContext) -> RetentionPolicy:
        """
        Validate a retention config and compute its drop boundary.

        If the hypertable is a continuous aggregate materialization, the
        target is the aggregate's user view.
        """
        cfg = decode_config(RetentionConfig, config, "retention")

        with self.cache.pin(cfg.hypertable_id) as handle:
            hypertable = handle.hypertable
            open_dim = self.get_open_dimension_for_hypertable(hypertable)
            boundary = calculate_boundary(
                open_dim, cfg.drop_after, ctx, self.routines, lag_name="drop_after"
            )

            cagg = self.partitions.find_by_materialization_id(hypertable.hypertable_id)
            if cagg is not None:
                target = ObjectRef(
                    kind=ObjectKind.CONTINUOUS_AGGREGATE,
                    schema_name=cagg.user_view_schema,
                    name=cagg.user_view_name,
                    hypertable_id=hypertable.hypertable_id,
                )
            else:
                target = ObjectRef(
                    kind=ObjectKind.HYPERTABLE,
                    schema_name=hypertable.schema_name,
                    name=hypertable.table_name,
                    hypertable_id=hypertable.hypertable_id,
                )

        return RetentionPolicy(
            hypertable=hypertable,
            drop_after=cfg.drop_after,
            boundary=boundary,
            target=target,
        )

    # -------------------------------------------------------------------------
    # Compression
    # -------------------------------------------------------------------------

    def read_compression(self, config: Optional[Mapping]) -> CompressionPolicy:
        """
        Validate a compression config.

        The returned descriptor holds a pinned cache handle; the caller
        must call release() on it. Prefer compression_policy().
        """
        cfg = decode_config(CompressionConfig, config, "compression")
        handle = self.cache.pin(cfg.hypertable_id)
        try:
            hypertable = handle.hypertable
            dimension = self.partitions.get_open_dimension(hypertable)
            boundary_dimension = self.get_open_dimension_for_hypertable(hypertable)
            check_lag_type(boundary_dimension, cfg.compress_after, "compress_after")
        except Exception:
            handle.release()
            raise

        return CompressionPolicy(
            hypertable=hypertable,
            dimension=dimension,
            boundary_dimension=boundary_dimension,
            compress_after=cfg.compress_after,
            handle=handle,
        )

    @contextmanager
    def compression_policy(self, config: Optional[Mapping]) -> Iterator[CompressionPolicy]:
        """Scoped compression descriptor; the cache handle is released on exit."""
        policy = self.read_compression(config)
        try:
            yield policy
        finally:
            policy.release()

    # -------------------------------------------------------------------------
    # Continuous aggregate refresh
    # -------------------------------------------------------------------------

    def read_refresh(self, config: Optional[Mapping], ctx: TransactionContext) -> RefreshPolicy:
        """
        Validate a refresh config and compute the refresh window.

        A null start_offset means "from the beginning", a null end_offset
        means "to the end".

        Raises:
            ConfigError: If start >= end ("invalid refresh window")
        """
        cfg = decode_config(RefreshConfig, config, "refresh continuous aggregate")
        mat_id = cfg.mat_hypertable_id

        mat_ht = self.partitions.get_hypertable(mat_id)
        if mat_ht is None:
            raise NotFoundError(f"configuration materialization hypertable id {mat_id} not found")

        cagg = self.partitions.find_by_materialization_id(mat_id)
        if cagg is None:
            raise NotFoundError(
                f"continuous aggregate for materialization hypertable id {mat_id} not found"
            )

        open_dim = self.get_open_dimension_for_hypertable(mat_ht)
        dim_type = open_dim.column_type

        if cfg.start_offset is None:
            refresh_start = time_min(dim_type)
        else:
            refresh_start = calculate_boundary(
                open_dim, cfg.start_offset, ctx, self.routines, lag_name="start_offset"
            ).value

        if cfg.end_offset is None:
            refresh_end = time_noend_or_max(dim_type)
        else:
            refresh_end = calculate_boundary(
                open_dim, cfg.end_offset, ctx, self.routines, lag_name="end_offset"
            ).value

        if refresh_start >= refresh_end:
            raise ConfigError(
                "invalid refresh window",
                detail=f"start_offset: {internal_to_time_string(refresh_start, dim_type)}, "
                       f"end_offset: {internal_to_time_string(refresh_end, dim_type)}",
                hint="The start of the window must be before the end.",
            )

        return RefreshPolicy(
            materialization_id=mat_id,
            cagg=cagg,
            window=RefreshWindow(refresh_start, refresh_end, dim_type),
        )
