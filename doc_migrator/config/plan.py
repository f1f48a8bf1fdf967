"""
Migration plan file loading.

A plan is a YAML document listing the documents to migrate:

    tasks:
      - source_path: docs/old/guide.md
        target_path: docs/guides/guide.md
        doc_type: guide
        priority: 1
        estimated_tokens: 1500
    total_estimated_tokens: 1500   # optional
    estimated_cost: 0.02           # optional
"""

from pathlib import Path
from typing import Any, Dict, Union

import yaml

from ..core.tasks import DEFAULT_ESTIMATED_TOKENS, MigrationPlan, MigrationTask

_PLAN_KEYS = {"tasks", "total_estimated_tokens", "estimated_cost"}
_TASK_KEYS = {"source_path", "target_path", "doc_type", "priority", "estimated_tokens"}
_REQUIRED_TASK_KEYS = ("source_path", "target_path", "doc_type")


def load_migration_plan(path: Union[str, Path]) -> MigrationPlan:
    """Load and validate a migration plan file.

    Raises:
        FileNotFoundError: If the plan file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If the plan is invalid
    """
    plan_path = Path(path)
    if not plan_path.exists():
        raise FileNotFoundError(f"Migration plan not found: {path}")

    with open(plan_path, 'r', encoding='utf-8') as f:
        try:
            raw_plan = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in plan file {path}: {e}")

    if not isinstance(raw_plan, dict):
        raise ValueError("Migration plan must be a mapping")

    unknown_keys = set(raw_plan.keys()) - _PLAN_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown plan keys: {sorted(unknown_keys)}")

    if 'tasks' not in raw_plan:
        raise ValueError("Missing required 'tasks' list")
    tasks_data = raw_plan['tasks'] or []
    if not isinstance(tasks_data, list):
        raise ValueError("'tasks' must be a list")

    tasks = [_parse_task(data, f"tasks[{i}]") for i, data in enumerate(tasks_data)]

    total_tokens = raw_plan.get('total_estimated_tokens')
    if total_tokens is not None and (isinstance(total_tokens, bool) or not isinstance(total_tokens, int) or total_tokens < 0):
        raise ValueError("'total_estimated_tokens' must be a non-negative integer")

    estimated_cost = raw_plan.get('estimated_cost')
    if estimated_cost is not None:
        if isinstance(estimated_cost, bool) or not isinstance(estimated_cost, (int, float)) or estimated_cost < 0:
            raise ValueError("'estimated_cost' must be a non-negative number")
        estimated_cost = float(estimated_cost)

    return MigrationPlan(
        tasks=tasks,
        total_estimated_tokens=total_tokens,
        estimated_cost=estimated_cost,
    )


def _parse_task(data: Any, path: str) -> MigrationTask:
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a mapping")

    unknown_keys = set(data.keys()) - _TASK_KEYS
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {sorted(unknown_keys)}")

    for key in _REQUIRED_TASK_KEYS:
        value = data.get(key)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"Missing required '{key}' in {path}")

    priority = data.get('priority', 0)
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValueError(f"'priority' in {path} must be an integer")

    estimated_tokens = data.get('estimated_tokens', DEFAULT_ESTIMATED_TOKENS)
    if isinstance(estimated_tokens, bool) or not isinstance(estimated_tokens, int) or estimated_tokens < 0:
        raise ValueError(f"'estimated_tokens' in {path} must be a non-negative integer")

    return MigrationTask(
        source_path=data['source_path'],
        target_path=data['target_path'],
        doc_type=data['doc_type'],
        priority=priority,
        estimated_tokens=estimated_tokens,
    )


def plan_to_dict(plan: MigrationPlan) -> Dict[str, Any]:
    """Render a plan in the file layout accepted by load_migration_plan."""
    data: Dict[str, Any] = {
        "tasks": [
            {
                "source_path": t.source_path,
                "target_path": t.target_path,
                "doc_type": t.doc_type,
                "priority": t.priority,
                "estimated_tokens": t.estimated_tokens,
            }
            for t in plan.tasks
        ]
    }
    if plan.total_estimated_tokens is not None:
        data["total_estimated_tokens"] = plan.total_estimated_tokens
    if plan.estimated_cost is not None:
        data["estimated_cost"] = plan.estimated_cost
    return data
