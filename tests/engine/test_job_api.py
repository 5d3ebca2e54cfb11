"""
Tests for add_job / alter_job / delete_job / run_job and config checks.
"""

import pytest
from datetime import timedelta

from src.engine import (
    CompressionPolicy,
    ConfigError,
    Interval,
    JobNotFoundError,
    NotFoundError,
    POLICY_SCHEMA,
    ReorderPolicy,
)
from src.engine.job_api import DEFAULT_JOB_OWNER, as_interval
from src.engine.policies import POLICY_COMPRESSION, POLICY_REORDER, POLICY_RETENTION

from .conftest import FIXED_DATETIME


@pytest.fixture
def custom_action(routines):
    calls = []

    def handler(job_id, config, *, ctx):
        calls.append((job_id, config))

    routines.register("public", "custom_action", handler)
    return calls


@pytest.fixture
def reorder_config(partitions, create_hypertable):
    ht = create_hypertable()
    partitions.create_index("public", "conditions_time_idx", "public", "conditions")
    return {"hypertable_id": ht.hypertable_id, "index_name": "conditions_time_idx"}


class TestAsInterval:

    def test_accepts_interval_timedelta_and_text(self):
        assert as_interval(Interval(days=1), "x") == Interval(days=1)
        assert as_interval(timedelta(hours=1), "x") == Interval(microseconds=3600 * 1_000_000)
        assert as_interval("1 day", "x") == Interval(days=1)

    def test_rejects_garbage(self):
        with pytest.raises(ConfigError, match="invalid value for schedule_interval"):
            as_interval("often", "schedule_interval")
        with pytest.raises(ConfigError):
            as_interval(5, "schedule_interval")


class TestAddJob:

    def test_custom_action(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 hour", config={"a": 1})

        stored = service.catalog.get_job(job.job_id)
        assert stored.schedule_interval == Interval(microseconds=3600 * 1_000_000)
        assert stored.config == {"a": 1}
        assert stored.owner == DEFAULT_JOB_OWNER
        assert service.catalog.get_run_stat(job.job_id) is None

    def test_missing_routine_name(self, service):
        with pytest.raises(ConfigError, match="function or procedure cannot be NULL"):
            service.jobs.add_job("public", "", "1 day")

    def test_missing_schedule_interval(self, service, custom_action):
        with pytest.raises(ConfigError, match="schedule interval cannot be NULL"):
            service.jobs.add_job("public", "custom_action", None)

    def test_unknown_routine(self, service):
        with pytest.raises(NotFoundError, match="public.nope"):
            service.jobs.add_job("public", "nope", "1 day")

    def test_invalid_builtin_config_is_not_stored(self, service):
        with pytest.raises(ConfigError):
            service.jobs.add_job(POLICY_SCHEMA, POLICY_RETENTION, "1 day", config={"drop_after": "1 day"})
        assert service.catalog.list_jobs() == []

    def test_builtin_config_validated(self, service, reorder_config):
        job = service.jobs.add_job(POLICY_SCHEMA, POLICY_REORDER, "1 day", config=reorder_config)
        assert job.config == reorder_config

    def test_initial_start(self, service, custom_action):
        start = FIXED_DATETIME + timedelta(hours=2)
        job = service.jobs.add_job("public", "custom_action", "1 day", initial_start=start)

        stat = service.catalog.get_run_stat(job.job_id)
        assert stat.next_start == start
        assert not stat.next_start_pinned
        assert service.catalog.list_due_jobs(FIXED_DATETIME) == []

    def test_custom_config_not_interpreted(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day", config={"drop_after": True})
        assert job.config == {"drop_after": True}


class TestJobConfigCheck:

    def test_non_builtin_schema(self, service):
        assert service.jobs.job_config_check("public", POLICY_REORDER, {}) is None

    def test_reorder(self, service, reorder_config):
        result = service.jobs.job_config_check(POLICY_SCHEMA, POLICY_REORDER, reorder_config)
        assert isinstance(result, ReorderPolicy)

    def test_compression_pin_released(self, service, create_hypertable):
        ht = create_hypertable()
        result = service.jobs.job_config_check(
            POLICY_SCHEMA,
            POLICY_COMPRESSION,
            {"hypertable_id": ht.hypertable_id, "compress_after": "1 day"},
        )

        assert isinstance(result, CompressionPolicy)
        assert result.handle.released
        assert service.cache.pinned_count == 0

    def test_invalid_config(self, service):
        with pytest.raises(ConfigError, match="could not find hypertable_id"):
            service.jobs.job_config_check(POLICY_SCHEMA, POLICY_REORDER, {"index_name": "x"})


class TestAlterJob:

    def test_missing_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.jobs.alter_job(404, scheduled=False)

    def test_missing_job_if_exists(self, service):
        assert service.jobs.alter_job(404, scheduled=False, if_exists=True) is None

    def test_alter_fields(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day")

        result = service.jobs.alter_job(
            job.job_id,
            max_runtime="5 minutes",
            max_retries=3,
            retry_period=timedelta(minutes=1),
            scheduled=False,
        )

        assert result.max_runtime == Interval(microseconds=5 * 60 * 1_000_000)
        assert result.max_retries == 3
        assert result.retry_period == Interval(microseconds=60 * 1_000_000)
        assert result.scheduled is False
        assert service.catalog.get_job(job.job_id).max_retries == 3

    def test_new_interval_moves_next_start(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day")
        service.scheduler.run_scheduled_job(job)

        result = service.jobs.alter_job(job.job_id, schedule_interval="2 hours")

        assert result.next_start == FIXED_DATETIME + timedelta(hours=2)
        assert service.catalog.get_run_stat(job.job_id).next_start == FIXED_DATETIME + timedelta(hours=2)

    def test_new_interval_without_runs(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day")
        result = service.jobs.alter_job(job.job_id, schedule_interval="2 hours")
        assert result.next_start is None

    def test_explicit_next_start(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day")
        target = FIXED_DATETIME + timedelta(minutes=10)

        result = service.jobs.alter_job(job.job_id, next_start=target)

        assert result.next_start == target

    def test_invalid_builtin_config_rejected(self, service, reorder_config):
        job = service.jobs.add_job(POLICY_SCHEMA, POLICY_REORDER, "1 day", config=reorder_config)

        with pytest.raises(ConfigError, match="reorder index not found"):
            service.jobs.alter_job(job.job_id, config={**reorder_config, "index_name": "gone"})

        assert service.catalog.get_job(job.job_id).config == reorder_config

    def test_valid_config_replaced(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day", config={"v": 1})
        result = service.jobs.alter_job(job.job_id, config={"v": 2})
        assert result.config == {"v": 2}


class TestDeleteAndRun:

    def test_delete(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day")
        assert service.jobs.delete_job(job.job_id) is True
        assert service.catalog.find_job(job.job_id) is None

    def test_delete_missing(self, service):
        with pytest.raises(JobNotFoundError):
            service.jobs.delete_job(404)
        assert service.jobs.delete_job(404, if_exists=True) is False

    def test_run_job(self, service, custom_action):
        job = service.jobs.add_job("public", "custom_action", "1 day", config={"k": "v"})

        assert service.jobs.run_job(job.job_id) is True

        assert custom_action[0][0] == job.job_id
        assert dict(custom_action[0][1]) == {"k": "v"}
        assert service.catalog.get_run_stat(job.job_id) is None

    def test_run_missing_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.jobs.run_job(404)
