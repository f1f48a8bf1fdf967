"""
Data models for the storage layer.

Defines the persisted run state and the lock record.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

STAGE_RECORD_KEYS = ("analysis", "design", "implementation", "migration")


class WorkflowStage(Enum):
    """Stages of a documentation migration workflow."""
    NOT_STARTED = "not_started"
    ANALYZING = "analyzing"
    DESIGNING = "designing"
    IMPLEMENTING = "implementing"
    MIGRATING = "migrating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowStage.COMPLETED, WorkflowStage.FAILED)


@dataclass(frozen=True)
class Checkpoint:
    """Immutable record of workflow progress.

    Checkpoints are append-only; once written they are never modified.
    """
    stage: WorkflowStage
    timestamp: str  # ISO 8601
    description: str
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "stage": self.stage.value,
            "timestamp": self.timestamp,
            "description": self.description,
        }
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            stage=WorkflowStage(data["stage"]),
            timestamp=data["timestamp"],
            description=data["description"],
            data=data.get("data"),
        )


@dataclass
class WorkflowState:
    """Durable record of a run's progress.

    Stage sub-records (analysis, design, implementation, migration) are
    opaque maps owned by the stage that writes them. Keys not known to
    this version are kept in ``extra`` and written back unchanged.
    """
    version: str
    started_at: str
    updated_at: str
    current_stage: WorkflowStage
    checkpoints: List[Checkpoint] = field(default_factory=list)
    api_call_count: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    max_cost: Optional[float] = None
    analysis: Optional[Dict[str, Any]] = None
    design: Optional[Dict[str, Any]] = None
    implementation: Optional[Dict[str, Any]] = None
    migration: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data.update({
            "version": self.version,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "current_stage": self.current_stage.value,
            "checkpoints": [c.to_dict() for c in self.checkpoints],
            "api_call_count": self.api_call_count,
            "total_cost": self.total_cost,
            "total_tokens": self.total_tokens,
        })
        if self.max_cost is not None:
            data["max_cost"] = self.max_cost
        for key in STAGE_RECORD_KEYS:
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkflowState":
        known = {
            "version", "started_at", "updated_at", "current_stage", "checkpoints",
            "api_call_count", "total_cost", "total_tokens", "max_cost",
        } | set(STAGE_RECORD_KEYS)
        return cls(
            version=data["version"],
            started_at=data["started_at"],
            updated_at=data["updated_at"],
            current_stage=WorkflowStage(data["current_stage"]),
            checkpoints=[Checkpoint.from_dict(c) for c in data["checkpoints"]],
            api_call_count=data["api_call_count"],
            total_cost=data["total_cost"],
            total_tokens=data["total_tokens"],
            max_cost=data.get("max_cost"),
            analysis=data.get("analysis"),
            design=data.get("design"),
            implementation=data.get("implementation"),
            migration=data.get("migration"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass(frozen=True)
class LockRecord:
    """Contents of the lock file."""
    pid: int
    timestamp: int  # epoch milliseconds
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {"pid": self.pid, "timestamp": self.timestamp, "version": self.version}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockRecord":
        return cls(pid=int(data["pid"]), timestamp=int(data["timestamp"]), version=str(data["version"]))
