"""
Boundary Calculator.

Computes "now - lag" in a dimension's native key space:
- integer keys: now comes from the dimension's integer now routine and the
  lag must be an int
- timestamp keys: now is the transaction start timestamp and the lag must
  be an Interval

The result is not clamped. A boundary before every chunk simply selects
nothing.
"""

import logging
from dataclasses import dataclass
from typing import Union

from .entities import Dimension
from .errors import ConfigError
from .routines import RoutineRegistry
from .timeutil import (
    Interval,
    PartitionType,
    integer_range,
    internal_to_time_string,
    time_value_to_internal,
)
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


Lag = Union[int, Interval]


@dataclass(frozen=True)
class TimeBoundary:
    """A boundary in a dimension's internal key representation."""

    value: int
    partition_type: PartitionType

    def __str__(self) -> str:
        return internal_to_time_string(self.value, self.partition_type)


def get_integer_now(dimension: Dimension, routines: RoutineRegistry) -> int:
    """
    Evaluate the integer now routine registered on a dimension.

    Raises:
        ConfigError: If the dimension has no integer now routine or it
            returns a non-integer
        NotFoundError: If the named routine is not registered
    """
    if not dimension.has_integer_now_func:
        raise ConfigError(
            "integer_now function not set",
            detail=f"dimension \"{dimension.column_name}\" is partitioned by "
                   f"{dimension.column_type.value}",
            hint="Register an integer now function for integer-partitioned hypertables.",
        )

    routine = routines.lookup(
        dimension.integer_now_func_schema,
        dimension.integer_now_func,
        arg_types=(),
    )
    now = routine.handler()
    if not isinstance(now, int) or isinstance(now, bool):
        raise ConfigError(
            f"integer now function {routine.qualified_name} must return an integer",
            detail=f"returned {now!r}",
        )
    return now


def subtract_integer_from_now(lag: int, partition_type: PartitionType, now: int) -> int:
    """
    Return now - lag, checked against the key type's range.

    Raises:
        ConfigError: If the result does not fit the partition type
    """
    result = now - lag
    low, high = integer_range(partition_type)
    if result < low or result > high:
        raise ConfigError(
            "integer time overflow",
            detail=f"now {now} minus lag {lag} does not fit {partition_type.value}",
        )
    return result


def subtract_interval_from_now(
    lag: Interval,
    partition_type: PartitionType,
    ctx: TransactionContext,
) -> int:
    """
    Return transaction start - lag as an internal time value.

    Raises:
        ConfigError: If the result is not a representable timestamp
    """
    now = ctx.transaction_start_timestamp
    try:
        boundary = lag.subtract_from(now)
    except (ValueError, OverflowError) as e:
        raise ConfigError(
            "timestamp out of range",
            detail=f"now {now.isoformat()} minus lag {lag} is out of range: {e}",
        ) from e
    return time_value_to_internal(boundary, partition_type)


def check_lag_type(dimension: Dimension, lag: Lag, lag_name: str = "lag") -> None:
    """
    Check that a lag matches the dimension's key type.

    Raises:
        ConfigError: int lag on a timestamp key or Interval lag on an integer key
    """
    partition_type = dimension.column_type
    if partition_type.is_integer:
        if not isinstance(lag, int) or isinstance(lag, bool):
            raise ConfigError(
                f"invalid value for {lag_name}",
                detail=f"expected an integer for a {partition_type.value} "
                       f"partitioned hypertable, got \"{lag}\"",
            )
    elif not isinstance(lag, Interval):
        raise ConfigError(
            f"invalid value for {lag_name}",
            detail=f"expected an interval for a {partition_type.value} "
                   f"partitioned hypertable, got \"{lag}\"",
        )


def calculate_boundary(
    dimension: Dimension,
    lag: Lag,
    ctx: TransactionContext,
    routines: RoutineRegistry,
    lag_name: str = "lag",
) -> TimeBoundary:
    """
    Compute now - lag for a dimension.

    Args:
        dimension: Dimension whose key type (and now routine) applies
        lag: int for integer keys, Interval for timestamp keys
        ctx: Transaction context supplying the timestamp "now"
        routines: Registry used to evaluate integer now routines
        lag_name: Config key name used in error messages

    Raises:
        ConfigError: On a lag/key type mismatch, a missing integer now
            routine, integer overflow or a timestamp out of range
    """
    check_lag_type(dimension, lag, lag_name)
    partition_type = dimension.column_type

    if partition_type.is_integer:
        now = get_integer_now(dimension, routines)
        value = subtract_integer_from_now(lag, partition_type, now)
    else:
        value = subtract_interval_from_now(lag, partition_type, ctx)

    boundary = TimeBoundary(value, partition_type)
    logger.debug(f"Boundary for dimension {dimension.dimension_id}: {boundary}")
    return boundary
