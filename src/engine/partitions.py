"""
Partition Catalog (SQLite).

Read side used by the engine:
- get_hypertable / get_open_dimension
- get_nth_latest_slice
- find_chunk_for_reorder / find_chunk_for_compression
- resolve_chunk
- continuous aggregate lookups (find_by_materialization_id,
  find_integer_now_func_by_materialization_id)

Write side (create_hypertable, create_chunk, ...) exists to build metadata
and for the maintenance operations; the engine itself never calls it.

HypertableCache hands out pinned handles on hypertable metadata. Every
handle must be released exactly once.
"""

import logging
import threading
from typing import Optional

from .entities import (
    Chunk,
    ContinuousAggregate,
    Dimension,
    DimensionSlice,
    Hypertable,
    RelationIndex,
)
from .errors import InvariantViolation, NotFoundError
from .persistence import SqliteStore
from .timeutil import PartitionType


logger = logging.getLogger(__name__)


class PartitionCatalog(SqliteStore):
    """Hypertables, dimensions, slices, chunks, indexes and continuous aggregates."""

    # =========================================================================
    # Hypertables and Dimensions
    # =========================================================================

    def create_hypertable(
        self,
        schema_name: str,
        table_name: str,
        column_name: str,
        column_type: PartitionType,
        interval_length: Optional[int] = None,
        integer_now_func_schema: Optional[str] = None,
        integer_now_func: Optional[str] = None,
    ) -> Hypertable:
        """Create a hypertable together with its open dimension."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "INSERT INTO hypertables (schema_name, table_name) VALUES (?, ?)",
                (schema_name, table_name),
            )
            hypertable_id = cursor.lastrowid
            conn.execute(
                """
                INSERT INTO dimensions
                (hypertable_id, column_name, column_type, interval_length,
                 integer_now_func_schema, integer_now_func)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    hypertable_id,
                    column_name,
                    PartitionType(column_type).value,
                    interval_length,
                    integer_now_func_schema,
                    integer_now_func,
                ),
            )

        return Hypertable(hypertable_id, schema_name, table_name)

    def get_hypertable(self, hypertable_id: int) -> Optional[Hypertable]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM hypertables WHERE hypertable_id = ?",
                (hypertable_id,),
            ).fetchone()

        if row is None:
            return None
        return Hypertable(row["hypertable_id"], row["schema_name"], row["table_name"])

    def get_hypertable_by_name(self, schema_name: str, table_name: str) -> Optional[Hypertable]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM hypertables WHERE schema_name = ? AND table_name = ?",
                (schema_name, table_name),
            ).fetchone()

        if row is None:
            return None
        return Hypertable(row["hypertable_id"], row["schema_name"], row["table_name"])

    def get_open_dimension(self, hypertable: Hypertable) -> Dimension:
        """
        Get the open (time-like) dimension of a hypertable.

        Raises:
            NotFoundError: If the hypertable has no dimension
        """
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM dimensions WHERE hypertable_id = ?
                ORDER BY dimension_id ASC LIMIT 1
                """,
                (hypertable.hypertable_id,),
            ).fetchone()

        if row is None:
            raise NotFoundError(
                f"hypertable \"{hypertable.qualified_name}\" has no open dimension"
            )
        return self._row_to_dimension(row)

    def set_integer_now_func(
        self,
        hypertable_id: int,
        func_schema: str,
        func_name: str,
    ) -> Dimension:
        """Register the integer "now" routine on a hypertable's open dimension."""
        hypertable = self.get_hypertable(hypertable_id)
        if hypertable is None:
            raise NotFoundError(f"hypertable id {hypertable_id} not found")

        dimension = self.get_open_dimension(hypertable)
        if not dimension.column_type.is_integer:
            raise InvariantViolation(
                f"integer now function can only be set on integer dimensions, "
                f"\"{hypertable.qualified_name}\" is {dimension.column_type.value}"
            )

        with self._transaction() as conn:
            conn.execute(
                """
                UPDATE dimensions SET integer_now_func_schema = ?, integer_now_func = ?
                WHERE dimension_id = ?
                """,
                (func_schema, func_name, dimension.dimension_id),
            )
        return self.get_open_dimension(hypertable)

    @staticmethod
    def _row_to_dimension(row) -> Dimension:
        return Dimension(
            dimension_id=row["dimension_id"],
            hypertable_id=row["hypertable_id"],
            column_name=row["column_name"],
            column_type=PartitionType(row["column_type"]),
            interval_length=row["interval_length"],
            integer_now_func_schema=row["integer_now_func_schema"],
            integer_now_func=row["integer_now_func"],
        )

    # =========================================================================
    # Slices and Chunks
    # =========================================================================

    def create_chunk(
        self,
        hypertable_id: int,
        range_start: int,
        range_end: int,
        schema_name: str = "_hyper_internal",
        table_name: Optional[str] = None,
    ) -> Chunk:
        """
        Create a chunk covering [range_start, range_end) on the open dimension.

        Chunks with an identical range share one dimension slice.
        """
        if range_start >= range_end:
            raise InvariantViolation(
                f"invalid chunk range [{range_start}, {range_end})"
            )

        hypertable = self.get_hypertable(hypertable_id)
        if hypertable is None:
            raise NotFoundError(f"hypertable id {hypertable_id} not found")
        dimension = self.get_open_dimension(hypertable)

        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT slice_id FROM dimension_slices
                WHERE dimension_id = ? AND range_start = ? AND range_end = ?
                """,
                (dimension.dimension_id, range_start, range_end),
            ).fetchone()

            if row is not None:
                slice_id = row["slice_id"]
            else:
                slice_id = conn.execute(
                    """
                    INSERT INTO dimension_slices (dimension_id, range_start, range_end)
                    VALUES (?, ?, ?)
                    """,
                    (dimension.dimension_id, range_start, range_end),
                ).lastrowid

            cursor = conn.execute(
                """
                INSERT INTO chunks (hypertable_id, schema_name, table_name, slice_id)
                VALUES (?, ?, ?, ?)
                """,
                (hypertable_id, schema_name, table_name or "", slice_id),
            )
            chunk_id = cursor.lastrowid

            if table_name is None:
                table_name = f"_hyper_{hypertable_id}_{chunk_id}_chunk"
                conn.execute(
                    "UPDATE chunks SET table_name = ? WHERE chunk_id = ?",
                    (table_name, chunk_id),
                )

        return self.resolve_chunk(chunk_id)

    def list_slices(self, dimension: Dimension) -> list[DimensionSlice]:
        """All slices of a dimension, oldest first."""
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM dimension_slices WHERE dimension_id = ?
                ORDER BY range_start ASC, range_end ASC
                """,
                (dimension.dimension_id,),
            ).fetchall()
        return [self._row_to_slice(row) for row in rows]

    def get_nth_latest_slice(self, dimension: Dimension, n: int) -> Optional[DimensionSlice]:
        """
        Get the n-th most recent slice (1-based) by range start.

        Returns None if the dimension has fewer than n slices.
        """
        if n < 1:
            raise ValueError(f"n must be >= 1, got {n}")

        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM dimension_slices WHERE dimension_id = ?
                ORDER BY range_start DESC, range_end DESC
                LIMIT 1 OFFSET ?
                """,
                (dimension.dimension_id, n - 1),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_slice(row)

    def find_chunk_for_reorder(
        self,
        job_id: int,
        dimension: Dimension,
        range_start_max: int,
    ) -> Optional[int]:
        """
        Oldest chunk eligible for reordering, or None.

        Eligible: slice range_start <= range_start_max, not compressed, not
        dropped, and not yet in the job's reorder ledger.
        """
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT c.chunk_id FROM dimension_slices s
                JOIN chunks c ON c.slice_id = s.slice_id
                WHERE s.dimension_id = ?
                  AND s.range_start <= ?
                  AND c.compressed = 0
                  AND c.dropped = 0
                  AND NOT EXISTS (
                      SELECT 1 FROM policy_chunk_stats p
                      WHERE p.job_id = ? AND p.chunk_id = c.chunk_id
                  )
                ORDER BY s.range_start ASC, s.range_end ASC, c.chunk_id ASC
                LIMIT 1
                """,
                (dimension.dimension_id, range_start_max, job_id),
            ).fetchone()

        return row["chunk_id"] if row is not None else None

    def find_chunk_for_compression(
        self,
        dimension: Dimension,
        boundary: int,
    ) -> Optional[int]:
        """
        Oldest uncompressed, undropped chunk whose range ends before boundary.
        """
        with self._connection() as conn:
            row = conn.execute(
                """
                SELECT c.chunk_id FROM dimension_slices s
                JOIN chunks c ON c.slice_id = s.slice_id
                WHERE s.dimension_id = ?
                  AND s.range_end < ?
                  AND c.compressed = 0
                  AND c.dropped = 0
                ORDER BY s.range_start ASC, s.range_end ASC, c.chunk_id ASC
                LIMIT 1
                """,
                (dimension.dimension_id, boundary),
            ).fetchone()

        return row["chunk_id"] if row is not None else None

    def get_chunk(self, chunk_id: int) -> Optional[Chunk]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM chunks WHERE chunk_id = ?",
                (chunk_id,),
            ).fetchone()

        if row is None:
            return None
        return self._row_to_chunk(row)

    def resolve_chunk(self, chunk_id: int) -> Chunk:
        """
        Get a chunk by ID.

        Raises:
            NotFoundError: If the chunk does not exist
        """
        chunk = self.get_chunk(chunk_id)
        if chunk is None:
            raise NotFoundError(f"chunk id {chunk_id} not found")
        return chunk

    def get_chunk_slice(self, chunk: Chunk) -> DimensionSlice:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM dimension_slices WHERE slice_id = ?",
                (chunk.slice_id,),
            ).fetchone()
        return self._row_to_slice(row)

    def list_chunks(self, hypertable_id: int, include_dropped: bool = False) -> list[Chunk]:
        """Chunks of a hypertable, oldest range first."""
        query = """
            SELECT c.* FROM chunks c
            JOIN dimension_slices s ON s.slice_id = c.slice_id
            WHERE c.hypertable_id = ?
        """
        if not include_dropped:
            query += " AND c.dropped = 0"
        query += " ORDER BY s.range_start ASC, c.chunk_id ASC"

        with self._connection() as conn:
            rows = conn.execute(query, (hypertable_id,)).fetchall()
        return [self._row_to_chunk(row) for row in rows]

    def set_chunk_compressed(self, chunk_id: int, compressed: bool = True) -> Chunk:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE chunks SET compressed = ? WHERE chunk_id = ?",
                (1 if compressed else 0, chunk_id),
            )
        return self.resolve_chunk(chunk_id)

    def drop_chunks_before(self, hypertable_id: int, boundary: int) -> list[Chunk]:
        """Mark dropped every chunk whose range ends at or before boundary."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT c.chunk_id FROM chunks c
                JOIN dimension_slices s ON s.slice_id = c.slice_id
                WHERE c.hypertable_id = ? AND c.dropped = 0 AND s.range_end <= ?
                ORDER BY s.range_start ASC, c.chunk_id ASC
                """,
                (hypertable_id, boundary),
            ).fetchall()
            chunk_ids = [row["chunk_id"] for row in rows]
            conn.executemany(
                "UPDATE chunks SET dropped = 1 WHERE chunk_id = ?",
                [(chunk_id,) for chunk_id in chunk_ids],
            )

        return [self.resolve_chunk(chunk_id) for chunk_id in chunk_ids]

    @staticmethod
    def _row_to_slice(row) -> DimensionSlice:
        return DimensionSlice(
            slice_id=row["slice_id"],
            dimension_id=row["dimension_id"],
            range_start=row["range_start"],
            range_end=row["range_end"],
        )

    @staticmethod
    def _row_to_chunk(row) -> Chunk:
        return Chunk(
            chunk_id=row["chunk_id"],
            hypertable_id=row["hypertable_id"],
            schema_name=row["schema_name"],
            table_name=row["table_name"],
            slice_id=row["slice_id"],
            compressed=bool(row["compressed"]),
            dropped=bool(row["dropped"]),
        )

    # =========================================================================
    # Indexes
    # =========================================================================

    def create_index(
        self,
        index_schema: str,
        index_name: str,
        table_schema: str,
        table_name: str,
    ) -> RelationIndex:
        with self._transaction() as conn:
            index_id = conn.execute(
                """
                INSERT INTO relation_indexes (index_schema, index_name, table_schema, table_name)
                VALUES (?, ?, ?, ?)
                """,
                (index_schema, index_name, table_schema, table_name),
            ).lastrowid
        return RelationIndex(index_id, index_schema, index_name, table_schema, table_name)

    def find_index(self, index_schema: str, index_name: str) -> Optional[RelationIndex]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM relation_indexes WHERE index_schema = ? AND index_name = ?",
                (index_schema, index_name),
            ).fetchone()

        if row is None:
            return None
        return RelationIndex(
            index_id=row["index_id"],
            index_schema=row["index_schema"],
            index_name=row["index_name"],
            table_schema=row["table_schema"],
            table_name=row["table_name"],
        )

    # =========================================================================
    # Continuous Aggregates
    # =========================================================================

    def register_continuous_aggregate(
        self,
        mat_hypertable_id: int,
        raw_hypertable_id: int,
        user_view_schema: str,
        user_view_name: str,
    ) -> ContinuousAggregate:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO continuous_aggs
                (mat_hypertable_id, raw_hypertable_id, user_view_schema, user_view_name)
                VALUES (?, ?, ?, ?)
                """,
                (mat_hypertable_id, raw_hypertable_id, user_view_schema, user_view_name),
            )
        return ContinuousAggregate(
            mat_hypertable_id, raw_hypertable_id, user_view_schema, user_view_name
        )

    def find_by_materialization_id(self, mat_hypertable_id: int) -> Optional[ContinuousAggregate]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM continuous_aggs WHERE mat_hypertable_id = ?",
                (mat_hypertable_id,),
            ).fetchone()

        if row is None:
            return None
        return ContinuousAggregate(
            mat_hypertable_id=row["mat_hypertable_id"],
            raw_hypertable_id=row["raw_hypertable_id"],
            user_view_schema=row["user_view_schema"],
            user_view_name=row["user_view_name"],
        )

    def find_integer_now_func_by_materialization_id(
        self,
        mat_hypertable_id: int,
    ) -> Optional[Dimension]:
        """
        Find the dimension that carries an integer "now" routine.

        Starts at the given hypertable and follows continuous aggregates
        down to their raw hypertables until an open dimension with an
        integer now routine is found. Returns None if the chain ends first.
        """
        hypertable_id: Optional[int] = mat_hypertable_id
        visited = set()

        while hypertable_id is not None and hypertable_id not in visited:
            visited.add(hypertable_id)
            hypertable = self.get_hypertable(hypertable_id)
            if hypertable is None:
                return None

            dimension = self.get_open_dimension(hypertable)
            if dimension.has_integer_now_func:
                return dimension

            cagg = self.find_by_materialization_id(hypertable_id)
            hypertable_id = cagg.raw_hypertable_id if cagg is not None else None

        return None


class CacheHandle:
    """A pinned reference to hypertable metadata. Release exactly once."""

    def __init__(self, cache: "HypertableCache", hypertable: Hypertable):
        self._cache = cache
        self.hypertable = hypertable
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            raise InvariantViolation(
                f"cache handle for hypertable {self.hypertable.hypertable_id} released twice"
            )
        self._released = True
        self._cache._unpin()

    def __enter__(self) -> "CacheHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if not self._released:
            self.release()


class HypertableCache:
    """
    Pin-counted cache of hypertable metadata.

    pinned_count returning to zero after an execution shows every handle
    was released.
    """

    def __init__(self, partitions: PartitionCatalog):
        self.partitions = partitions
        self._entries: dict[int, Hypertable] = {}
        self._pins = 0
        self._lock = threading.Lock()

    @property
    def pinned_count(self) -> int:
        return self._pins

    def pin(self, hypertable_id: int) -> CacheHandle:
        """
        Pin a hypertable entry.

        Raises:
            NotFoundError: If the hypertable does not exist (nothing is pinned)
        """
        with self._lock:
            hypertable = self._entries.get(hypertable_id)

        if hypertable is None:
            hypertable = self.partitions.get_hypertable(hypertable_id)
            if hypertable is None:
                raise NotFoundError(f"configuration hypertable id {hypertable_id} not found")

        with self._lock:
            self._entries[hypertable_id] = hypertable
            self._pins += 1
        return CacheHandle(self, hypertable)

    def invalidate(self) -> None:
        with self._lock:
            self._entries.clear()

    def _unpin(self) -> None:
        with self._lock:
            if self._pins <= 0:
                raise InvariantViolation("hypertable cache released more often than pinned")
            self._pins -= 1
