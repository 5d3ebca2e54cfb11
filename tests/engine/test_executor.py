"""
Tests for the job execution driver.

Covers:
- Transaction and snapshot ownership (only what the driver opened is closed)
- Procedures that commit on their own
- Functions run atomically
- Unsupported routine kinds
- Cleanup and error propagation on failure
- Read-only config handed to routines
"""

import threading

import pytest

from src.engine import (
    ExecutionState,
    InvariantViolation,
    JobExecutor,
    NotFoundError,
    RoutineKind,
    TransactionContext,
    UnsupportedActionError,
    job_execute,
)


class RecordingHandler:
    """Routine handler that records its calls and optionally acts on ctx."""

    def __init__(self, action=None):
        self.action = action
        self.calls = []

    def __call__(self, job_id, config, *, ctx):
        self.calls.append({
            "job_id": job_id,
            "config": config,
            "in_transaction": ctx.in_transaction,
            "snapshot_active": ctx.snapshot_active,
            "atomic": ctx.is_atomic,
        })
        if self.action is not None:
            self.action(ctx)


@pytest.fixture
def executor(routines) -> JobExecutor:
    return JobExecutor(routines)


@pytest.fixture
def register(routines):
    def _register(handler, kind=RoutineKind.FUNCTION, name="custom_action"):
        routines.register("public", name, handler, kind=kind)
        return handler
    return _register


@pytest.fixture
def fresh_ctx(mock_clock) -> TransactionContext:
    return TransactionContext(clock=mock_clock.now)


def fail(ctx):
    raise RuntimeError("routine failed")


class TestTransactionOwnership:
    """The driver only closes what it opened."""

    def test_fresh_context_gets_transaction_and_snapshot(
        self, executor, register, create_job, fresh_ctx
    ):
        handler = register(RecordingHandler())
        job = create_job()

        assert executor.execute(job, fresh_ctx) is True

        call = handler.calls[0]
        assert call["in_transaction"] and call["snapshot_active"]
        assert not fresh_ctx.in_transaction
        assert not fresh_ctx.snapshot_active
        assert fresh_ctx.commits == 1
        assert fresh_ctx.execution.state == ExecutionState.COMPLETED
        assert fresh_ctx.execution.started_transaction
        assert fresh_ctx.execution.pushed_snapshot

    def test_caller_transaction_is_left_open(self, executor, register, create_job, ctx):
        register(RecordingHandler())
        job = create_job()

        executor.execute(job, ctx)

        assert ctx.in_transaction
        assert ctx.transaction_number == 1
        assert ctx.commits == 0
        assert ctx.snapshot_depth == 0

    def test_caller_snapshot_is_reused(self, executor, register, create_job, ctx):
        register(RecordingHandler())
        job = create_job()
        ctx.push_snapshot()

        executor.execute(job, ctx)

        assert ctx.snapshot_depth == 1

    def test_not_executing_after_run(self, executor, register, create_job, fresh_ctx):
        seen = []
        register(RecordingHandler(lambda ctx: seen.append(ctx.execution.state)))
        executor.execute(create_job(), fresh_ctx)

        assert seen == [ExecutionState.DISPATCHING]
        assert not fresh_ctx.execution.is_executing

    def test_caller_transaction_not_marked_as_owned(self, executor, register, create_job, ctx):
        register(RecordingHandler())
        executor.execute(create_job(), ctx)

        assert not ctx.execution.started_transaction
        assert ctx.execution.pushed_snapshot


class TestConcurrentExecutions:
    """One executor shared by overlapping calls keeps their states apart."""

    def test_overlapping_runs_do_not_share_state(
        self, executor, register, create_job, mock_clock
    ):
        entered = threading.Event()
        release = threading.Event()

        def slow(ctx):
            entered.set()
            assert release.wait(timeout=5)

        register(RecordingHandler(slow), kind=RoutineKind.PROCEDURE, name="slow_action")
        register(RecordingHandler(), name="fast_action")
        slow_job = create_job(proc_name="slow_action")
        fast_job = create_job(proc_name="fast_action")

        slow_ctx = TransactionContext(clock=mock_clock.now)
        fast_ctx = TransactionContext(clock=mock_clock.now)
        worker = threading.Thread(target=executor.execute, args=(slow_job, slow_ctx))
        worker.start()
        try:
            assert entered.wait(timeout=5)

            executor.execute(fast_job, fast_ctx)

            assert fast_ctx.execution.state == ExecutionState.COMPLETED
            assert slow_ctx.execution.state == ExecutionState.DISPATCHING
            assert slow_ctx.execution.job.job_id == slow_job.job_id
        finally:
            release.set()
            worker.join(timeout=5)

        assert slow_ctx.execution.state == ExecutionState.COMPLETED
        assert slow_ctx.commits == 1


class TestProcedures:
    """Procedures may commit; the driver must cope with a released snapshot."""

    def test_procedure_commit_in_driver_transaction(
        self, executor, register, create_job, fresh_ctx
    ):
        handler = register(
            RecordingHandler(lambda ctx: ctx.commit_internal()),
            kind=RoutineKind.PROCEDURE,
        )
        job = create_job()

        executor.execute(job, fresh_ctx)

        assert handler.calls[0]["atomic"] is False
        # one commit by the procedure, one by the driver for the follow-up transaction
        assert fresh_ctx.commits == 2
        assert not fresh_ctx.in_transaction

    def test_procedure_commit_in_caller_transaction(self, executor, register, create_job, ctx):
        register(RecordingHandler(lambda ctx: ctx.commit_internal()), kind=RoutineKind.PROCEDURE)
        job = create_job()

        executor.execute(job, ctx)

        assert ctx.in_transaction
        assert ctx.transaction_number == 2
        assert ctx.commits == 1
        assert not ctx.snapshot_active

    def test_procedure_commit_in_atomic_context_fails(
        self, executor, register, create_job, mock_clock
    ):
        register(RecordingHandler(lambda ctx: ctx.commit_internal()), kind=RoutineKind.PROCEDURE)
        ctx = TransactionContext(clock=mock_clock.now, atomic=True)

        with pytest.raises(InvariantViolation, match="invalid transaction termination"):
            executor.execute(create_job(), ctx)
        assert not ctx.in_transaction
        assert ctx.rollbacks == 1


class TestFunctions:
    """Functions run in an atomic scope."""

    def test_function_runs_atomic(self, executor, register, create_job, fresh_ctx):
        handler = register(RecordingHandler())
        executor.execute(create_job(), fresh_ctx)

        assert handler.calls[0]["atomic"] is True
        assert not fresh_ctx.is_atomic

    def test_function_commit_rejected_and_rolled_back(
        self, executor, register, create_job, fresh_ctx
    ):
        register(RecordingHandler(lambda ctx: ctx.commit_internal()))

        with pytest.raises(InvariantViolation):
            executor.execute(create_job(), fresh_ctx)

        assert not fresh_ctx.in_transaction
        assert fresh_ctx.rollbacks == 1
        assert fresh_ctx.execution.state == ExecutionState.FAILED


class TestDispatchErrors:
    """Lookup failures, unsupported kinds and routine errors."""

    def test_unregistered_routine(self, executor, create_job, fresh_ctx):
        with pytest.raises(NotFoundError, match="public.custom_action"):
            executor.execute(create_job(), fresh_ctx)
        assert not fresh_ctx.in_transaction

    @pytest.mark.parametrize("kind", [RoutineKind.AGGREGATE, RoutineKind.WINDOW])
    def test_unsupported_kind(self, executor, register, create_job, fresh_ctx, kind):
        handler = register(RecordingHandler(), kind=kind)

        with pytest.raises(UnsupportedActionError, match=f"unsupported function type '{kind.value}'"):
            executor.execute(create_job(), fresh_ctx)

        assert handler.calls == []
        assert not fresh_ctx.in_transaction

    def test_routine_error_propagates_unchanged(self, executor, register, create_job, fresh_ctx):
        error = RuntimeError("routine failed")

        def raise_error(ctx):
            raise error

        register(RecordingHandler(raise_error))

        with pytest.raises(RuntimeError) as exc_info:
            executor.execute(create_job(), fresh_ctx)

        assert exc_info.value is error
        assert fresh_ctx.rollbacks == 1
        assert not fresh_ctx.in_transaction

    def test_failure_in_caller_transaction_pops_snapshot_only(
        self, executor, register, create_job, ctx
    ):
        register(RecordingHandler(fail))

        with pytest.raises(RuntimeError):
            executor.execute(create_job(), ctx)

        assert ctx.in_transaction
        assert ctx.snapshot_depth == 0
        assert ctx.rollbacks == 0

    def test_executor_reusable_after_failure(self, executor, register, create_job, fresh_ctx, mock_clock):
        register(RecordingHandler(fail), name="failing")
        register(RecordingHandler(), name="working")

        with pytest.raises(RuntimeError):
            executor.execute(create_job(proc_name="failing"), fresh_ctx)

        assert executor.execute(
            create_job(proc_name="working"), TransactionContext(clock=mock_clock.now)
        )


class TestConfigHandling:
    """Routines get the job id and a read-only copy of the config."""

    def test_receives_job_id_and_config(self, executor, register, create_job, fresh_ctx):
        handler = register(RecordingHandler())
        job = create_job(config={"hypertable_id": 1, "tags": ["a", "b"], "nested": {"k": 1}})

        executor.execute(job, fresh_ctx)

        call = handler.calls[0]
        assert call["job_id"] == job.job_id
        assert call["config"]["hypertable_id"] == 1
        assert call["config"]["tags"] == ("a", "b")
        assert call["config"]["nested"]["k"] == 1

    def test_config_is_read_only(self, executor, register, create_job, fresh_ctx):
        handler = register(RecordingHandler())
        job = create_job(config={"nested": {"k": 1}})

        executor.execute(job, fresh_ctx)

        config = handler.calls[0]["config"]
        with pytest.raises(TypeError):
            config["new"] = 1
        with pytest.raises(TypeError):
            config["nested"]["k"] = 2
        assert job.config == {"nested": {"k": 1}}

    def test_null_config(self, executor, register, create_job, fresh_ctx):
        handler = register(RecordingHandler())
        executor.execute(create_job(config=None), fresh_ctx)
        assert handler.calls[0]["config"] is None

    def test_job_execute_helper(self, routines, register, create_job, fresh_ctx):
        handler = register(RecordingHandler())
        assert job_execute(create_job(), fresh_ctx, routines) is True
        assert len(handler.calls) == 1
