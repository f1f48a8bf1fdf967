"""
Run orchestration.

A MigrationRun holds the project lock for its whole duration, resumes
persisted state, executes the remaining tasks and checkpoints progress
after every settled task.
"""

import asyncio
import logging
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, Union

from ..config.loader import MigratorConfig
from ..storage.lock import LockManager
from ..storage.models import WorkflowStage, WorkflowState
from ..storage.state_migration import StateError
from ..storage.workflow_state import WorkflowStateManager
from .cost_tracker import CostTracker
from .executor import ExecutorOptions, MigrationExecutor, Worker
from .rate_limiter import RateLimiter, get_tier
from .request_queue import RequestQueue
from .tasks import ExecutionResult, MigrationPlan, MigrationResult, MigrationTask, TaskStatus

logger = logging.getLogger(__name__)

TaskKey = Tuple[str, str]


@dataclass
class RunSummary:
    """Outcome of one MigrationRun."""
    result: ExecutionResult
    skipped: int
    state: WorkflowState


def _task_key(task: MigrationTask) -> TaskKey:
    return task.source_path, task.target_path


class MigrationRun:
    """Executes a migration plan for one project directory."""

    def __init__(
        self,
        working_dir: Union[str, Path],
        worker: Worker,
        config: MigratorConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_progress: Optional[Callable[[int, int, Optional[MigrationTask]], None]] = None,
        lock_manager: Optional[LockManager] = None,
        state_manager: Optional[WorkflowStateManager] = None,
    ):
        self.working_dir = Path(working_dir)
        self.worker = worker
        self.config = config
        self.on_progress = on_progress
        self.lock_manager = lock_manager or LockManager(self.working_dir)
        self.state_manager = state_manager or WorkflowStateManager(self.working_dir)
        self.rate_limiter = RateLimiter(get_tier(config.api_tier), clock=clock, sleep=sleep)
        self._clock = clock
        self._state: Optional[WorkflowState] = None
        self._records: Dict[TaskKey, dict] = {}
        self._persist_error: Optional[Exception] = None
        self.executor: Optional[MigrationExecutor] = None

    async def run(self, plan: MigrationPlan) -> RunSummary:
        """Run the plan under the project lock.

        Raises:
            LockError: If another run holds the lock
            StateError: If persisted state is unreadable or cannot be saved
            BudgetExceeded: If the budget stopped the run (after state is saved)
        """
        with self.lock_manager:
            loop = asyncio.get_running_loop()
            installed = self._install_signal_handlers(loop)
            try:
                return await self._run_locked(plan)
            finally:
                for sig in installed:
                    loop.remove_signal_handler(sig)

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> List[int]:
        current = asyncio.current_task()
        if current is None:
            return []
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, current.cancel)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                continue
            installed.append(sig)
        return installed

    def _prepare_state(self) -> WorkflowState:
        state = self.state_manager.load()
        if state is not None and state.current_stage == WorkflowStage.COMPLETED:
            logger.info("Previous run completed; starting a new run")
            state = None
        elif state is not None and state.current_stage == WorkflowStage.FAILED:
            # Completed tasks and recorded spend carry over
            logger.info("Previous run failed; resuming with its completed tasks")
        if state is None:
            state = self.state_manager.create_initial_state(self.config.max_cost)
        state.max_cost = self.config.max_cost
        return state

    async def _run_locked(self, plan: MigrationPlan) -> RunSummary:
        state = self._state = self._prepare_state()

        previous = (state.migration or {}).get("tasks", [])
        done = {
            (t["source_path"], t["target_path"])
            for t in previous
            if t.get("status") == TaskStatus.COMPLETED.value
        }

        self._records = {}
        pending: List[MigrationTask] = []
        for task in plan.tasks:
            if _task_key(task) in done:
                task.status = TaskStatus.COMPLETED
            else:
                pending.append(task)
            self._records[_task_key(task)] = task.to_dict()
        skipped = len(plan.tasks) - len(pending)
        if skipped:
            logger.info("Resuming run: skipping %d completed task(s)", skipped)

        state.migration = {
            "complete": False,
            "tasks": list(self._records.values()),
            "completed_count": skipped,
            "total_count": len(plan.tasks),
        }
        self.state_manager.save(state)
        self.state_manager.checkpoint(
            WorkflowStage.MIGRATING,
            f"Migrating {len(pending)} document(s)",
            {"total": len(plan.tasks), "skipped": skipped},
        )

        remaining_budget = None
        if self.config.max_cost is not None:
            remaining_budget = max(0.0, self.config.max_cost - state.total_cost)

        self._persist_error = None
        self.executor = MigrationExecutor(
            self.worker,
            RequestQueue(self.rate_limiter, self.config.workers),
            CostTracker(remaining_budget),
            ExecutorOptions(
                on_progress=self.on_progress,
                on_task_complete=self._on_task_complete,
                on_task_error=self._on_task_error,
                on_usage=self._on_usage,
                stop_on_error=self.config.stop_on_error,
            ),
            clock=self._clock,
        )

        try:
            result = await self.executor.execute(MigrationPlan(tasks=pending))
        except asyncio.CancelledError:
            logger.warning("Run interrupted; progress is saved and can be resumed")
            self.executor.cancel()
            # In-flight work must settle before the lock is released
            queue = self.executor.request_queue
            queue.cancel_active()
            await queue.join()
            raise

        if self._persist_error is not None:
            raise self._persist_error

        state.migration["complete"] = not result.failed
        if result.failed or result.budget_error is not None:
            reason = "budget exceeded" if result.budget_error is not None else f"{len(result.failed)} task(s) failed"
            self.state_manager.checkpoint(
                WorkflowStage.FAILED,
                f"Migration stopped: {reason}",
                {"completed": len(result.completed), "failed": len(result.failed)},
            )
        else:
            self.state_manager.checkpoint(
                WorkflowStage.COMPLETED,
                f"Migrated {len(result.completed)} document(s)",
                {"completed": len(result.completed), "skipped": skipped},
            )

        if result.budget_error is not None:
            raise result.budget_error
        return RunSummary(result=result, skipped=skipped, state=state)

    def _update_task(self, task: MigrationTask) -> None:
        self._records[_task_key(task)] = task.to_dict()
        self._state.migration["tasks"] = list(self._records.values())
        self._state.migration["completed_count"] = sum(
            1 for t in self._records.values() if t["status"] == TaskStatus.COMPLETED.value
        )

    def _persist(self) -> None:
        try:
            self.state_manager.save(self._state)
        except (StateError, OSError) as e:
            if self._persist_error is None:
                self._persist_error = e
            raise

    def _on_usage(self, result: MigrationResult) -> None:
        if result.usage is not None:
            self._state.api_call_count += 1
        self._state.total_cost += result.cost
        self._state.total_tokens += result.tokens_used

    def _on_task_complete(self, result: MigrationResult) -> None:
        self._update_task(result.task)
        self._persist()

    def _on_task_error(self, task: MigrationTask, error: Exception) -> None:
        self._update_task(task)
        self._persist()
