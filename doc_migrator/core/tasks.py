"""
Migration task, plan and result types.

Tasks are produced by an external planner and owned by the executor
while a run is in progress.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .token_counter import TokenUsage

DEFAULT_ESTIMATED_TOKENS = 1000


class TaskStatus(Enum):
    """Lifecycle of a migration task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class MigrationTask:
    """One document to migrate."""
    source_path: str
    target_path: str
    doc_type: str
    status: TaskStatus = TaskStatus.PENDING
    error: Optional[str] = None
    priority: int = 0  # Lower is more urgent
    estimated_tokens: int = DEFAULT_ESTIMATED_TOKENS

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "source_path": self.source_path,
            "target_path": self.target_path,
            "doc_type": self.doc_type,
            "status": self.status.value,
            "priority": self.priority,
            "estimated_tokens": self.estimated_tokens,
        }
        if self.error is not None:
            data["error"] = self.error
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MigrationTask":
        return cls(
            source_path=data["source_path"],
            target_path=data["target_path"],
            doc_type=data["doc_type"],
            status=TaskStatus(data.get("status", TaskStatus.PENDING.value)),
            error=data.get("error"),
            priority=data.get("priority", 0),
            estimated_tokens=data.get("estimated_tokens", DEFAULT_ESTIMATED_TOKENS),
        )


@dataclass
class MigrationPlan:
    """Ordered list of tasks with optional pre-computed estimates."""
    tasks: List[MigrationTask]
    total_estimated_tokens: Optional[int] = None
    estimated_cost: Optional[float] = None


@dataclass
class MigrationResult:
    """Outcome of migrating one task.

    ``model`` and ``usage`` are set when the worker called the API; the
    executor uses them to record cost.
    """
    task: MigrationTask
    success: bool
    output_path: Optional[str] = None
    model: Optional[str] = None
    usage: Optional[TokenUsage] = None
    cost: float = 0.0
    error: Optional[str] = None

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens if self.usage else 0


@dataclass
class ExecutionResult:
    """Aggregate outcome of executing a plan."""
    completed: List[MigrationResult] = field(default_factory=list)
    failed: List[MigrationResult] = field(default_factory=list)
    total_time: float = 0.0  # seconds
    total_cost: float = 0.0
    total_tokens: int = 0
    budget_error: Optional[Exception] = None
