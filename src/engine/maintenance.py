"""
Maintenance operations invoked by the built-in policies.

The policy engine only decides WHAT to process. How a chunk is reordered or
compressed, how chunks are dropped and how an aggregate is refreshed belongs
to the storage layer behind MaintenanceOperations. SqliteMaintenance is the
reference implementation over the partition catalog: it records the work
and flips chunk flags, which is all the engine can observe.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol

from .entities import Chunk, ContinuousAggregate, ObjectRef, RefreshRecord, RelationIndex, utcnow
from .partitions import PartitionCatalog
from .persistence import SqliteStore, dt_from_db, dt_to_db
from .policy_config import RefreshWindow
from .transaction import TransactionContext


logger = logging.getLogger(__name__)


class MaintenanceOperations(Protocol):
    """Storage-side actions the policies delegate to."""

    def reorder_chunk(self, chunk: Chunk, index: RelationIndex) -> None:
        ...

    def compress_chunk(self, chunk: Chunk) -> None:
        ...

    def drop_chunks(self, target: ObjectRef, boundary: int) -> list[Chunk]:
        """Drop every chunk of target whose range ends at or before boundary."""
        ...

    def refresh_continuous_aggregate(
        self,
        cagg: ContinuousAggregate,
        window: RefreshWindow,
        ctx: TransactionContext,
    ) -> None:
        """Refresh [start, end). May commit through ctx."""
        ...


class SqliteMaintenance(SqliteStore):
    """Maintenance operations over the SQLite partition catalog."""

    def __init__(
        self,
        db_path: str | Path,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(db_path)
        self.partitions = PartitionCatalog(db_path)
        self._clock = clock

    def reorder_chunk(self, chunk: Chunk, index: RelationIndex) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO chunk_reorders (chunk_id, index_name, reordered_at)
                VALUES (?, ?, ?)
                """,
                (chunk.chunk_id, index.index_name, dt_to_db(self._clock())),
            )
        logger.info(f"Reordered chunk {chunk.qualified_name} using index \"{index.index_name}\"")

    def compress_chunk(self, chunk: Chunk) -> None:
        self.partitions.set_chunk_compressed(chunk.chunk_id)
        logger.info(f"Compressed chunk {chunk.qualified_name}")

    def drop_chunks(self, target: ObjectRef, boundary: int) -> list[Chunk]:
        # a continuous aggregate is dropped through its materialization hypertable
        dropped = self.partitions.drop_chunks_before(target.hypertable_id, boundary)
        logger.info(
            f"Dropped {len(dropped)} chunk(s) from {target.kind.value} "
            f"{target.qualified_name}"
        )
        return dropped

    def refresh_continuous_aggregate(
        self,
        cagg: ContinuousAggregate,
        window: RefreshWindow,
        ctx: TransactionContext,
    ) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cagg_refreshes
                (mat_hypertable_id, window_start, window_end, refreshed_at)
                VALUES (?, ?, ?, ?)
                """,
                (cagg.mat_hypertable_id, window.start, window.end, dt_to_db(self._clock())),
            )
        logger.info(f"Refreshed continuous aggregate {cagg.qualified_name} over {window}")

        # materialization progress is committed before the procedure returns
        ctx.commit_internal()

    # =========================================================================
    # Queries
    # =========================================================================

    def list_reordered_chunk_ids(self) -> list[int]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT chunk_id FROM chunk_reorders ORDER BY rowid ASC"
            ).fetchall()
        return [row["chunk_id"] for row in rows]

    def list_refreshes(self, mat_hypertable_id: int) -> list[RefreshRecord]:
        with self._connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM cagg_refreshes WHERE mat_hypertable_id = ?
                ORDER BY refresh_id ASC
                """,
                (mat_hypertable_id,),
            ).fetchall()

        return [
            RefreshRecord(
                mat_hypertable_id=row["mat_hypertable_id"],
                window_start=row["window_start"],
                window_end=row["window_end"],
                refreshed_at=dt_from_db(row["refreshed_at"]),
            )
            for row in rows
        ]
