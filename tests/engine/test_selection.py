"""
Tests for chunk and window selection.

Reorder: the REORDER_SKIP_RECENT_DIM_SLICES_N most recent slices are never
chosen, the oldest eligible chunk comes first, and a chunk in the job's
reorder ledger is never chosen again.

Compression: oldest uncompressed chunk ending strictly before
now - compress_after.
"""

import itertools

import pytest

from src.engine import (
    REORDER_SKIP_RECENT_DIM_SLICES_N,
    PartitionType,
    get_chunk_id_to_reorder,
    get_chunk_to_compress,
)

from .conftest import FIXED_DATETIME


@pytest.fixture
def integer_table(partitions, create_hypertable):
    ht = create_hypertable(column_type=PartitionType.BIGINT, integer_now=True)
    return ht, partitions.get_open_dimension(ht)


class TestReorderSelection:
    """get_chunk_id_to_reorder."""

    def test_skip_constant(self):
        assert REORDER_SKIP_RECENT_DIM_SLICES_N == 3

    @pytest.mark.parametrize("count", [0, 1, 2, 3])
    def test_nothing_with_three_or_fewer_slices(
        self, partitions, integer_table, create_chunks, create_job, count
    ):
        ht, dimension = integer_table
        create_chunks(ht, count, 10)
        job = create_job()

        assert get_chunk_id_to_reorder(job.job_id, partitions, dimension) is None

    def test_four_slices_select_the_oldest(
        self, partitions, integer_table, create_chunks, create_job, catalog
    ):
        ht, dimension = integer_table
        chunks = create_chunks(ht, 4, 10)
        job = create_job()

        assert get_chunk_id_to_reorder(job.job_id, partitions, dimension) == chunks[0].chunk_id

        catalog.record_run(job.job_id, chunks[0].chunk_id, FIXED_DATETIME)
        assert get_chunk_id_to_reorder(job.job_id, partitions, dimension) is None

    def test_five_chunks_drain_oldest_first(
        self, partitions, integer_table, create_chunks, create_job, catalog
    ):
        ht, dimension = integer_table
        chunks = create_chunks(ht, 5, 10)
        job = create_job()

        selected = []
        while True:
            chunk_id = get_chunk_id_to_reorder(job.job_id, partitions, dimension)
            if chunk_id is None:
                break
            selected.append(chunk_id)
            catalog.record_run(job.job_id, chunk_id, FIXED_DATETIME)

        # only the 5th and 4th most recent chunks are ever eligible
        assert selected == [chunks[0].chunk_id, chunks[1].chunk_id]

    def test_never_selects_a_chunk_from_the_ledger(
        self, partitions, integer_table, create_chunks, create_job, catalog
    ):
        ht, dimension = integer_table
        chunks = create_chunks(ht, 7, 10)
        eligible = [c.chunk_id for c in chunks[:4]]

        for size in range(len(eligible) + 1):
            for ledger in itertools.combinations(eligible, size):
                job = create_job()
                for chunk_id in ledger:
                    catalog.record_run(job.job_id, chunk_id, FIXED_DATETIME)

                chunk_id = get_chunk_id_to_reorder(job.job_id, partitions, dimension)
                remaining = [c for c in eligible if c not in ledger]

                assert chunk_id not in ledger
                assert chunk_id == (remaining[0] if remaining else None)

    def test_ledger_is_per_job(self, partitions, integer_table, create_chunks, create_job, catalog):
        ht, dimension = integer_table
        chunks = create_chunks(ht, 4, 10)
        first = create_job()
        second = create_job()
        catalog.record_run(first.job_id, chunks[0].chunk_id, FIXED_DATETIME)

        assert get_chunk_id_to_reorder(first.job_id, partitions, dimension) is None
        assert get_chunk_id_to_reorder(second.job_id, partitions, dimension) == chunks[0].chunk_id

    def test_compressed_and_dropped_chunks_skipped(
        self, partitions, integer_table, create_chunks, create_job
    ):
        ht, dimension = integer_table
        chunks = create_chunks(ht, 6, 10)
        job = create_job()
        partitions.set_chunk_compressed(chunks[0].chunk_id)
        partitions.drop_chunks_before(ht.hypertable_id, 10)

        # chunk 0 is both compressed and dropped, chunk 1 is next in line
        assert get_chunk_id_to_reorder(job.job_id, partitions, dimension) == chunks[1].chunk_id

    def test_slices_shared_by_chunks_count_once(
        self, partitions, integer_table, create_chunks, create_job
    ):
        ht, dimension = integer_table
        create_chunks(ht, 3, 10)
        # a second chunk on the newest slice does not add a slice
        partitions.create_chunk(ht.hypertable_id, 20, 30)
        job = create_job()

        assert get_chunk_id_to_reorder(job.job_id, partitions, dimension) is None


class TestCompressionSelection:
    """get_chunk_to_compress."""

    def test_nothing_eligible(
        self, validator, routines, integer_table, create_chunks, integer_now, ctx
    ):
        ht, _ = integer_table
        create_chunks(ht, 3, 100, start=800)
        integer_now.value = 1000

        with validator.compression_policy(
            {"hypertable_id": ht.hypertable_id, "compress_after": 500}
        ) as policy:
            assert get_chunk_to_compress(validator.partitions, policy, ctx, routines) is None

    def test_range_end_equal_to_boundary_is_excluded(
        self, validator, routines, integer_table, create_chunks, integer_now, ctx
    ):
        ht, _ = integer_table
        chunks = create_chunks(ht, 3, 100)
        integer_now.value = 300

        with validator.compression_policy(
            {"hypertable_id": ht.hypertable_id, "compress_after": 100}
        ) as policy:
            # boundary 200: [0, 100) qualifies, [100, 200) does not
            assert get_chunk_to_compress(validator.partitions, policy, ctx, routines) == chunks[0].chunk_id

            validator.partitions.set_chunk_compressed(chunks[0].chunk_id)
            assert get_chunk_to_compress(validator.partitions, policy, ctx, routines) is None

    def test_oldest_first(
        self, validator, routines, partitions, create_hypertable, create_day_chunks, ctx
    ):
        ht = create_hypertable()
        chunks = create_day_chunks(ht, 10)

        with validator.compression_policy(
            {"hypertable_id": ht.hypertable_id, "compress_after": "7 days"}
        ) as policy:
            chosen = []
            while True:
                chunk_id = get_chunk_to_compress(partitions, policy, ctx, routines)
                if chunk_id is None:
                    break
                chosen.append(chunk_id)
                partitions.set_chunk_compressed(chunk_id)

        # boundary is now - 7 days; the third oldest chunk ends exactly on it
        assert chosen == [chunks[0].chunk_id, chunks[1].chunk_id]
