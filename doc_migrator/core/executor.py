"""
Parallel migration executor.

Runs a migration plan through the rate-limited request queue, records
the API spend of every settled task and aggregates the outcome.

State machine:
    idle -> running -> {paused <-> running} -> (cancelled | completed)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Optional, Protocol

from .cost_tracker import BudgetExceeded, CostTracker
from .request_queue import QueueCancelled, RequestQueue
from .tasks import ExecutionResult, MigrationPlan, MigrationResult, MigrationTask, TaskStatus

logger = logging.getLogger(__name__)


class ExecutionState(Enum):
    """Lifecycle of an executor."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ExecutorCancelled(Exception):
    """Raised when execute() is called on a cancelled executor."""


class Worker(Protocol):
    """Executes a single migration task."""

    async def execute(self, task: MigrationTask) -> MigrationResult:
        ...


@dataclass
class ExecutorOptions:
    """Callbacks and failure policy for an executor."""
    on_progress: Optional[Callable[[int, int, Optional[MigrationTask]], None]] = None
    on_task_complete: Optional[Callable[[MigrationResult], None]] = None
    on_task_error: Optional[Callable[[MigrationTask, Exception], None]] = None
    # Called for every result that carried API usage, after it is charged
    on_usage: Optional[Callable[[MigrationResult], None]] = None
    stop_on_error: bool = False


class MigrationExecutor:
    """Executes migration plans with bounded concurrency.

    Worker failures never escape ``execute``; they are collected in the
    ``failed`` list. A BudgetExceeded from the cost tracker halts the run:
    pending tasks are cleared and the error is returned on the result.
    """

    def __init__(
        self,
        worker: Worker,
        request_queue: RequestQueue,
        cost_tracker: Optional[CostTracker] = None,
        options: Optional[ExecutorOptions] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.worker = worker
        self.request_queue = request_queue
        self.cost_tracker = cost_tracker
        self.options = options or ExecutorOptions()
        self._clock = clock
        self._state = ExecutionState.IDLE
        self._halted = False
        self._result = ExecutionResult()
        self._total = 0

    @property
    def state(self) -> ExecutionState:
        return self._state

    async def execute(self, plan: MigrationPlan) -> ExecutionResult:
        """Execute every task in the plan and aggregate the results.

        Tasks are admitted in ascending priority; discovery order breaks ties.

        Raises:
            ExecutorCancelled: If the executor was cancelled
            RuntimeError: If a plan is already executing
        """
        if self._state == ExecutionState.CANCELLED:
            raise ExecutorCancelled("Executor has been cancelled")
        if self._state in (ExecutionState.RUNNING, ExecutionState.PAUSED):
            raise RuntimeError("Executor is already running a plan")

        start = self._clock()
        self._state = ExecutionState.RUNNING
        self._halted = False
        self._result = result = ExecutionResult()

        tasks = sorted(plan.tasks, key=lambda t: t.priority)
        self._total = len(tasks)
        for task in tasks:
            task.status = TaskStatus.PENDING
            task.error = None

        futures = [
            self.request_queue.enqueue(
                partial(self._run_task, task),
                task.estimated_tokens,
                task.priority,
            )
            for task in tasks
        ]
        outcomes = await asyncio.gather(*futures, return_exceptions=True)

        for task, outcome in zip(tasks, outcomes):
            if not isinstance(outcome, BaseException):
                continue
            if task.status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
                # Settled already; the exception came from a callback
                logger.error("Callback raised for %s: %s", task.source_path, outcome)
                continue
            if isinstance(outcome, (QueueCancelled, asyncio.CancelledError)):
                error: Exception = QueueCancelled(f"Migration cancelled: {task.source_path}")
            else:
                error = outcome
            self._fail(task, MigrationResult(task=task, success=False, error=str(error)), error)

        result.total_time = self._clock() - start
        if self._state != ExecutionState.CANCELLED:
            self._state = ExecutionState.COMPLETED
        return result

    async def _run_task(self, task: MigrationTask) -> MigrationResult:
        if self._state == ExecutionState.CANCELLED or self._halted:
            # Dispatched before the queue was cleared
            raise QueueCancelled(f"Migration cancelled: {task.source_path}")

        task.status = TaskStatus.IN_PROGRESS
        try:
            result = await self.worker.execute(task)
        except Exception as e:
            result = MigrationResult(task=task, success=False, error=str(e))

        try:
            self._charge(result)
        except BudgetExceeded as e:
            logger.error("Stopping run: %s", e)
            self._result.budget_error = e
            self._halted = True
            self.request_queue.clear()
            result.success = False
            result.error = str(e)
            self._fail(task, result, e)
            return result

        if result.success:
            self._complete(task, result)
        else:
            self._fail(task, result, RuntimeError(result.error or "Migration failed"))
            if self.options.stop_on_error:
                self.request_queue.clear()
        return result

    def _charge(self, result: MigrationResult) -> None:
        """Record the API spend a result carries, whether or not it succeeded."""
        if result.usage is None and not result.cost:
            return
        if self.cost_tracker is not None and result.model and result.usage is not None:
            result.cost = self.cost_tracker.record(result.model, result.usage)
        self._result.total_cost += result.cost
        self._result.total_tokens += result.tokens_used
        if self.options.on_usage:
            self.options.on_usage(result)

    def _complete(self, task: MigrationTask, result: MigrationResult) -> None:
        task.status = TaskStatus.COMPLETED
        task.error = None
        self._result.completed.append(result)
        if self.options.on_task_complete:
            self.options.on_task_complete(result)
        self._report_progress(task)

    def _fail(self, task: MigrationTask, result: MigrationResult, error: Exception) -> None:
        task.status = TaskStatus.FAILED
        task.error = result.error
        self._result.failed.append(result)
        logger.warning("Migration failed for %s: %s", task.source_path, result.error)
        if self.options.on_task_error:
            self.options.on_task_error(task, error)
        self._report_progress(task)

    def _report_progress(self, task: MigrationTask) -> None:
        if self.options.on_progress:
            settled = len(self._result.completed) + len(self._result.failed)
            self.options.on_progress(settled, self._total, task)

    def pause(self) -> None:
        """Stop admitting tasks; in-flight tasks complete."""
        if self._state == ExecutionState.RUNNING:
            self._state = ExecutionState.PAUSED
            self.request_queue.pause()

    def resume(self) -> None:
        """Resume admitting tasks."""
        if self._state == ExecutionState.PAUSED:
            self._state = ExecutionState.RUNNING
            self.request_queue.resume()

    def cancel(self) -> None:
        """Cancel pending tasks. In-flight tasks may still complete."""
        if self._state in (ExecutionState.RUNNING, ExecutionState.PAUSED):
            self._state = ExecutionState.CANCELLED
            self.request_queue.clear()
