"""
Policy Engine Test Fixtures.

Base fixtures:
  - Empty database in a temp file (one connection per operation, so
    ":memory:" would not persist between calls)
  - Mocked clock at fixed time
  - Fully wired EngineService on that clock

Factory fixtures:
  - Hypertables (integer or timestamp partitioned), chunks, indexes
  - Continuous aggregates over a raw hypertable
  - Integer "now" routines
  - Plain jobs and built-in policy jobs
"""

import pytest
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Generator, Optional

from src.engine import (
    EngineService,
    Hypertable,
    Job,
    PartitionType,
    POLICY_SCHEMA,
    TransactionContext,
)
from src.engine.timeutil import USECS_PER_DAY, time_value_to_internal


# Fixed time for deterministic tests
FIXED_DATETIME = datetime(2026, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
FIXED_USECS = time_value_to_internal(FIXED_DATETIME, PartitionType.TIMESTAMPTZ)


class MockClock:
    """
    Mock clock for deterministic time control.

    - Starts at fixed epoch (aware UTC)
    - Advances only when explicitly ticked
    """

    def __init__(self, start_time: datetime = FIXED_DATETIME):
        self._current = start_time

    def now(self) -> datetime:
        return self._current

    def tick(self, seconds: int = 1) -> None:
        """Advance time by specified seconds."""
        self._current += timedelta(seconds=seconds)

    def set(self, time: datetime) -> None:
        """Set time to specific value."""
        self._current = time


class IntegerNow:
    """Integer "now" routine whose value tests can move."""

    def __init__(self, value: int):
        self.value = value
        self.calls = 0

    def __call__(self) -> int:
        self.calls += 1
        return self.value


# =============================================================================
# Database and Service Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    Path(db_path).unlink(missing_ok=True)
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock()


@pytest.fixture
def service(temp_db_path: str, mock_clock: MockClock) -> EngineService:
    """EngineService with built-in policies registered, on the mock clock."""
    return EngineService.create(temp_db_path, poll_interval=0.05, clock=mock_clock.now)


@pytest.fixture
def catalog(service):
    return service.catalog


@pytest.fixture
def partitions(service):
    return service.partitions


@pytest.fixture
def routines(service):
    return service.routines


@pytest.fixture
def validator(service):
    return service.policies.validator


@pytest.fixture
def ctx(mock_clock: MockClock) -> TransactionContext:
    """A context with an open transaction started at FIXED_DATETIME."""
    context = TransactionContext(clock=mock_clock.now)
    context.begin()
    return context


# =============================================================================
# Factory Fixtures
# =============================================================================


@pytest.fixture
def integer_now(routines) -> IntegerNow:
    """Integer now routine public.integer_now returning 1000 by default."""
    func = IntegerNow(1000)
    routines.register("public", "integer_now", func, arg_types=())
    return func


@pytest.fixture
def create_hypertable(partitions) -> Callable:
    """
    Factory fixture for hypertables.

    integer_now=True registers public.integer_now on the dimension
    (the routine itself comes from the integer_now fixture).
    """

    def _create(
        table_name: str = "conditions",
        column_type: PartitionType = PartitionType.TIMESTAMPTZ,
        integer_now: bool = False,
        schema_name: str = "public",
    ) -> Hypertable:
        return partitions.create_hypertable(
            schema_name,
            table_name,
            "time",
            column_type,
            integer_now_func_schema="public" if integer_now else None,
            integer_now_func="integer_now" if integer_now else None,
        )

    return _create


@pytest.fixture
def create_chunks(partitions) -> Callable:
    """
    Factory fixture for consecutive chunks, returned oldest first.

    Ranges are [start + i * width, start + (i + 1) * width).
    """

    def _create(hypertable: Hypertable, count: int, width: int, start: int = 0) -> list:
        return [
            partitions.create_chunk(
                hypertable.hypertable_id,
                start + i * width,
                start + (i + 1) * width,
            )
            for i in range(count)
        ]

    return _create


@pytest.fixture
def create_day_chunks(create_chunks) -> Callable:
    """Daily chunks on a timestamp hypertable ending at FIXED_DATETIME."""

    def _create(hypertable: Hypertable, days: int) -> list:
        return create_chunks(
            hypertable,
            days,
            USECS_PER_DAY,
            start=FIXED_USECS - days * USECS_PER_DAY,
        )

    return _create


@pytest.fixture
def create_cagg(partitions, create_hypertable) -> Callable:
    """Factory fixture for a continuous aggregate over a raw hypertable."""

    def _create(
        raw: Hypertable,
        view_name: str = "conditions_summary",
        column_type: Optional[PartitionType] = None,
    ):
        dimension = partitions.get_open_dimension(raw)
        mat = create_hypertable(
            table_name=f"_materialized_hypertable_{raw.hypertable_id}",
            column_type=column_type or dimension.column_type,
            schema_name="_policy_internal",
        )
        cagg = partitions.register_continuous_aggregate(
            mat.hypertable_id, raw.hypertable_id, "public", view_name
        )
        return mat, cagg

    return _create


@pytest.fixture
def create_job(catalog) -> Callable:
    """Factory fixture for plain job rows."""

    def _create(
        proc_schema: str = "public",
        proc_name: str = "custom_action",
        config: Optional[dict] = None,
        schedule_interval: str = "1 day",
    ) -> Job:
        from src.engine.timeutil import Interval

        return catalog.insert_job(
            Job.create(
                proc_schema=proc_schema,
                proc_name=proc_name,
                schedule_interval=Interval.parse(schedule_interval),
                owner="tester",
                config=config,
            )
        )

    return _create


@pytest.fixture
def create_policy_job(service) -> Callable:
    """Factory fixture for built-in policy jobs added through the job API."""

    def _create(proc_name: str, config: dict, schedule_interval: str = "1 day") -> Job:
        return service.jobs.add_job(
            POLICY_SCHEMA,
            proc_name,
            schedule_interval,
            config=config,
            owner="tester",
        )

    return _create
