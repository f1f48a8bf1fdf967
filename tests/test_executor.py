"""
Unit tests for the migration executor.
"""

import asyncio

import pytest

from doc_migrator.core.cost_tracker import BudgetExceeded, CostTracker
from doc_migrator.core.executor import (
    ExecutionState,
    ExecutorCancelled,
    ExecutorOptions,
    MigrationExecutor,
)
from doc_migrator.core.rate_limiter import RateLimiter, Tier
from doc_migrator.core.request_queue import QueueCancelled, RequestQueue
from doc_migrator.core.tasks import MigrationPlan, MigrationResult, MigrationTask, TaskStatus
from doc_migrator.core.token_counter import TokenUsage

SONNET = "claude-sonnet-4-5-20250929"
UNLIMITED = Tier("unlimited", requests_per_minute=10000, tokens_per_minute=10_000_000)


class FakeWorker:
    """Worker that succeeds unless the source path is listed as failing."""

    def __init__(self, failing=(), raising=(), billed_failing=(), usage=None, gate=None):
        self.failing = set(failing)
        self.billed_failing = set(billed_failing)
        self.raising = set(raising)
        self.usage = usage or TokenUsage(input_tokens=1000, output_tokens=100)
        self.gate = gate
        self.started = []

    async def execute(self, task):
        self.started.append(task.source_path)
        if self.gate is not None:
            await self.gate.wait()
        else:
            await asyncio.sleep(0)
        if task.source_path in self.raising:
            raise RuntimeError(f"crashed on {task.source_path}")
        if task.source_path in self.failing:
            return MigrationResult(task=task, success=False, error="bad document")
        if task.source_path in self.billed_failing:
            # API was called but the reply was unusable
            return MigrationResult(
                task=task, success=False, model=SONNET, usage=self.usage, error="no frontmatter"
            )
        return MigrationResult(
            task=task,
            success=True,
            output_path=task.target_path,
            model=SONNET,
            usage=self.usage,
        )


def _tasks(*names, priorities=None):
    priorities = priorities or [0] * len(names)
    return [
        MigrationTask(source_path=n, target_path=f"out/{n}", doc_type="guide", priority=p)
        for n, p in zip(names, priorities)
    ]


def _executor(fake_clock, worker, max_concurrent=1, cost_tracker=None, **options):
    queue = RequestQueue(RateLimiter(UNLIMITED, clock=fake_clock, sleep=fake_clock.sleep), max_concurrent)
    return MigrationExecutor(
        worker,
        queue,
        cost_tracker=cost_tracker,
        options=ExecutorOptions(**options),
        clock=fake_clock,
    )


class TestMigrationExecutor:
    """Test execution, aggregation and control."""

    @pytest.mark.asyncio
    async def test_empty_plan_settles_immediately(self, fake_clock):
        executor = _executor(fake_clock, FakeWorker())
        result = await executor.execute(MigrationPlan(tasks=[]))

        assert result.completed == []
        assert result.failed == []
        assert result.total_cost == 0.0
        assert result.total_tokens == 0
        assert executor.state == ExecutionState.COMPLETED

    @pytest.mark.asyncio
    async def test_successful_tasks_are_charged(self, fake_clock):
        tracker = CostTracker()
        executor = _executor(fake_clock, FakeWorker(), max_concurrent=2, cost_tracker=tracker)
        tasks = _tasks("a.md", "b.md")

        result = await executor.execute(MigrationPlan(tasks=tasks))

        assert len(result.completed) == 2
        assert result.total_tokens == 2200
        # 1000 in at $3/M + 100 out at $15/M = $0.0045 each
        assert result.total_cost == pytest.approx(0.009)
        assert tracker.total_cost == pytest.approx(0.009)
        assert all(t.status == TaskStatus.COMPLETED for t in tasks)

    @pytest.mark.asyncio
    async def test_tasks_start_in_priority_order(self, fake_clock):
        worker = FakeWorker()
        executor = _executor(fake_clock, worker)
        plan = MigrationPlan(tasks=_tasks("c.md", "a.md", "b.md", "d.md", priorities=[3, 1, 2, 1]))

        await executor.execute(plan)

        assert worker.started == ["a.md", "d.md", "b.md", "c.md"]

    @pytest.mark.asyncio
    async def test_failures_are_collected_not_raised(self, fake_clock):
        errors = []
        executor = _executor(
            fake_clock,
            FakeWorker(failing={"b.md"}, raising={"c.md"}),
            on_task_error=lambda task, error: errors.append((task.source_path, str(error))),
        )
        tasks = _tasks("a.md", "b.md", "c.md")

        result = await executor.execute(MigrationPlan(tasks=tasks))

        assert [r.task.source_path for r in result.completed] == ["a.md"]
        assert sorted(r.task.source_path for r in result.failed) == ["b.md", "c.md"]
        assert tasks[1].status == TaskStatus.FAILED
        assert tasks[1].error == "bad document"
        assert tasks[2].error == "crashed on c.md"
        assert ("b.md", "bad document") in errors

    @pytest.mark.asyncio
    async def test_progress_callback_counts_settled_tasks(self, fake_clock):
        progress = []
        completed = []
        executor = _executor(
            fake_clock,
            FakeWorker(failing={"b.md"}),
            on_progress=lambda done, total, task: progress.append((done, total, task.source_path)),
            on_task_complete=completed.append,
        )

        await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md")))

        assert progress == [(1, 3, "a.md"), (2, 3, "b.md"), (3, 3, "c.md")]
        assert [r.task.source_path for r in completed] == ["a.md", "c.md"]

    @pytest.mark.asyncio
    async def test_stop_on_error_cancels_pending_tasks(self, fake_clock):
        worker = FakeWorker(failing={"a.md"})
        executor = _executor(fake_clock, worker, stop_on_error=True)

        result = await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md")))

        assert worker.started == ["a.md"]
        assert result.completed == []
        assert len(result.failed) == 3
        cancelled = [r for r in result.failed if r.task.source_path != "a.md"]
        assert all("cancelled" in r.error for r in cancelled)

    @pytest.mark.asyncio
    async def test_stop_on_error_lets_in_flight_tasks_finish(self, fake_clock):
        worker = FakeWorker(failing={"a.md"})
        executor = _executor(fake_clock, worker, max_concurrent=2, stop_on_error=True)

        result = await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md")))

        assert worker.started == ["a.md", "b.md"]
        assert [r.task.source_path for r in result.completed] == ["b.md"]
        assert len(result.failed) == 2

    @pytest.mark.asyncio
    async def test_budget_stop_halts_run(self, fake_clock):
        # Each task costs $0.0045; the budget fits one
        tracker = CostTracker(max_cost=0.006)
        worker = FakeWorker()
        executor = _executor(fake_clock, worker, cost_tracker=tracker)

        result = await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md")))

        assert len(result.completed) == 1
        assert len(result.failed) == 2
        assert isinstance(result.budget_error, BudgetExceeded)
        assert worker.started == ["a.md", "b.md"]
        assert tracker.total_cost == pytest.approx(0.0045)
        assert result.total_cost == pytest.approx(0.0045)

    @pytest.mark.asyncio
    async def test_failed_tasks_with_usage_are_charged(self, fake_clock):
        tracker = CostTracker()
        charged = []
        worker = FakeWorker(billed_failing={"b.md"}, failing={"c.md"})
        executor = _executor(fake_clock, worker, cost_tracker=tracker, on_usage=charged.append)

        result = await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md")))

        assert sorted(r.task.source_path for r in result.failed) == ["b.md", "c.md"]
        billed = next(r for r in result.failed if r.task.source_path == "b.md")
        assert billed.cost == pytest.approx(0.0045)
        assert billed.error == "no frontmatter"
        assert [r.task.source_path for r in charged] == ["a.md", "b.md"]
        assert tracker.total_cost == pytest.approx(0.009)
        assert result.total_cost == pytest.approx(0.009)
        assert result.total_tokens == 2200

    @pytest.mark.asyncio
    async def test_failed_task_spend_trips_budget(self, fake_clock):
        tracker = CostTracker(max_cost=0.006)
        worker = FakeWorker(billed_failing={"a.md", "b.md", "c.md", "d.md"})
        executor = _executor(fake_clock, worker, cost_tracker=tracker)

        result = await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md", "c.md", "d.md")))

        assert isinstance(result.budget_error, BudgetExceeded)
        assert worker.started == ["a.md", "b.md"]
        assert len(result.failed) == 4
        assert tracker.total_cost == pytest.approx(0.0045)
        assert result.total_cost == pytest.approx(0.0045)

    @pytest.mark.asyncio
    async def test_cancel_rejects_further_execution(self, fake_clock):
        gate = asyncio.Event()
        worker = FakeWorker(gate=gate)
        executor = _executor(fake_clock, worker)

        run = asyncio.ensure_future(executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md"))))
        for _ in range(5):
            await asyncio.sleep(0)
        assert executor.state == ExecutionState.RUNNING

        executor.cancel()
        gate.set()
        result = await run

        assert executor.state == ExecutionState.CANCELLED
        assert [r.task.source_path for r in result.completed] == ["a.md"]
        assert isinstance(result.failed[0].error, str)
        with pytest.raises(ExecutorCancelled):
            await executor.execute(MigrationPlan(tasks=[]))

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, fake_clock):
        worker = FakeWorker()
        executor = _executor(fake_clock, worker)
        executor.pause()
        assert executor.state == ExecutionState.IDLE

        run = asyncio.ensure_future(executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md"))))
        await asyncio.sleep(0)
        executor.pause()
        assert executor.state == ExecutionState.PAUSED
        for _ in range(5):
            await asyncio.sleep(0)
        assert len(worker.started) <= 1

        executor.resume()
        result = await run
        assert len(result.completed) == 2

    @pytest.mark.asyncio
    async def test_cleared_items_settle_as_queue_cancelled(self, fake_clock):
        errors = []
        executor = _executor(
            fake_clock,
            FakeWorker(failing={"a.md"}),
            stop_on_error=True,
            on_task_error=lambda task, error: errors.append(error),
        )
        await executor.execute(MigrationPlan(tasks=_tasks("a.md", "b.md")))
        assert isinstance(errors[-1], QueueCancelled)
