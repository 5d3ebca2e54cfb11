"""
Chunk/Window Selector.

Turns a validated policy descriptor plus current partition metadata into
one unit of work, or None when there is nothing to do. "Nothing to do" is
a normal outcome, never an error.
"""

import logging
from typing import Optional

from .boundary import TimeBoundary, calculate_boundary
from .entities import Dimension
from .partitions import PartitionCatalog
from .policy_config import CompressionPolicy, RefreshPolicy, RefreshWindow, RetentionPolicy
from .routines import RoutineRegistry
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


# Most recent slices are still being written to and are never reordered
REORDER_SKIP_RECENT_DIM_SLICES_N = 3


def get_chunk_id_to_reorder(
    job_id: int,
    partitions: PartitionCatalog,
    dimension: Dimension,
) -> Optional[int]:
    """
    Oldest chunk a reorder job should process next.

    Chunks on the REORDER_SKIP_RECENT_DIM_SLICES_N most recent slices are
    skipped. A chunk in the job's reorder ledger is excluded for good.
    """
    nth_slice = partitions.get_nth_latest_slice(
        dimension, REORDER_SKIP_RECENT_DIM_SLICES_N + 1
    )
    if nth_slice is None:
        return None

    return partitions.find_chunk_for_reorder(job_id, dimension, nth_slice.range_start)


def get_chunk_to_compress(
    partitions: PartitionCatalog,
    policy: CompressionPolicy,
    ctx: TransactionContext,
    routines: RoutineRegistry,
) -> Optional[int]:
    """Oldest chunk whose range ends strictly before now - compress_after."""
    boundary = calculate_boundary(
        policy.boundary_dimension,
        policy.compress_after,
        ctx,
        routines,
        lag_name="compress_after",
    )
    chunk_id = partitions.find_chunk_for_compression(policy.dimension, boundary.value)
    logger.debug(
        f"Compression candidate for hypertable {policy.hypertable.hypertable_id} "
        f"before {boundary}: {chunk_id}"
    )
    return chunk_id


def get_retention_boundary(policy: RetentionPolicy) -> TimeBoundary:
    """Chunks entirely before this boundary are dropped."""
    return policy.boundary


def get_refresh_window(policy: RefreshPolicy) -> RefreshWindow:
    """The window a refresh covers is always the validated [start, end)."""
    return policy.window
