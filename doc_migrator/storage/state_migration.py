"""
Versioned migrations for persisted workflow state.

Migrations are pure functions over the raw state mapping, registered
under keys of the form ``"<from>-to-<to>"`` and composed along the
path from the stored version to the current one.
"""

import logging
import re
from collections import deque
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import WorkflowStage

logger = logging.getLogger(__name__)

CURRENT_STATE_VERSION = "1.1.0"
LEGACY_STATE_VERSION = "1.0.0"  # Assumed for state written before versioning

StateMigrationFunction = Callable[[Dict[str, Any]], Dict[str, Any]]

_VERSION_PATTERN = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")

_migrations: Dict[str, StateMigrationFunction] = {}


class StateError(Exception):
    """Persisted state is unreadable, invalid or cannot be migrated."""


class StateValidationError(StateError):
    """State failed the structural shape check."""


class StateMigrationError(StateError):
    """State version cannot be brought to the target version."""


def parse_version(version: Any) -> Tuple[int, int, int]:
    """Parse a ``MAJOR.MINOR.PATCH`` version string.

    Raises:
        StateMigrationError: If the version is not a valid version string
    """
    if not isinstance(version, str):
        raise StateMigrationError(f"Invalid version: {version!r}")
    match = _VERSION_PATTERN.match(version)
    if not match:
        raise StateMigrationError(f"Invalid version: {version!r}")
    major, minor, patch = match.groups()
    return int(major), int(minor), int(patch)


def migration_key(from_version: str, to_version: str) -> str:
    return f"{from_version}-to-{to_version}"


def parse_migration_key(key: str) -> Tuple[str, str]:
    """Split a migration key into its from and to versions."""
    parts = key.split("-to-")
    if len(parts) != 2:
        raise ValueError(f"Invalid migration key format: {key}")
    return parts[0], parts[1]


def register_migration(from_version: str, to_version: str):
    """Decorator registering a migration between two versions."""
    if parse_version(from_version) >= parse_version(to_version):
        raise ValueError(f"Migration must move forward: {from_version} -> {to_version}")

    def decorator(func: StateMigrationFunction) -> StateMigrationFunction:
        _migrations[migration_key(from_version, to_version)] = func
        return func

    return decorator


@register_migration("1.0.0", "1.1.0")
def _migrate_1_0_0_to_1_1_0(state: Dict[str, Any]) -> Dict[str, Any]:
    # 1.1.0 adds the version field; the rest of the shape is unchanged
    return {**state, "version": "1.1.0"}


def get_available_migrations() -> List[str]:
    return sorted(_migrations)


def needs_migration(current_version: str, target_version: str = CURRENT_STATE_VERSION) -> bool:
    try:
        return parse_version(current_version) != parse_version(target_version)
    except StateMigrationError:
        return False


def _find_path(
    current: str,
    target: str,
    migrations: Dict[str, StateMigrationFunction],
) -> Optional[List[str]]:
    """Breadth-first search for the shortest chain of migration keys."""
    target_parsed = parse_version(target)
    edges: Dict[str, List[Tuple[str, str]]] = {}
    for key in migrations:
        from_version, to_version = parse_migration_key(key)
        if parse_version(to_version) <= target_parsed:
            edges.setdefault(from_version, []).append((to_version, key))

    queue = deque([(current, [])])
    seen = {current}
    while queue:
        version, path = queue.popleft()
        if version == target:
            return path
        for next_version, key in sorted(edges.get(version, [])):
            if next_version not in seen:
                seen.add(next_version)
                queue.append((next_version, path + [key]))
    return None


def migrate_state(
    state: Dict[str, Any],
    target_version: str = CURRENT_STATE_VERSION,
    migrations: Optional[Dict[str, StateMigrationFunction]] = None,
) -> Dict[str, Any]:
    """Bring a raw state mapping to ``target_version``.

    The input mapping is not modified.

    Raises:
        StateMigrationError: On an invalid version, a downgrade, or when
            no chain of registered migrations reaches the target
    """
    registry = _migrations if migrations is None else migrations

    if not state.get("version"):
        state = {**state, "version": LEGACY_STATE_VERSION}

    current_version = state["version"]
    current = parse_version(current_version)
    target = parse_version(target_version)

    if current == target:
        return state
    if current > target:
        raise StateMigrationError(
            f"Cannot downgrade state from {current_version} to {target_version}"
        )

    path = _find_path(current_version, target_version, registry)
    if path is None:
        raise StateMigrationError(
            f"No migration path found from {current_version} to {target_version}"
        )

    migrated = state
    for key in path:
        migrated = registry[key](migrated)
        expected = parse_migration_key(key)[1]
        if migrated.get("version") != expected:
            raise StateMigrationError(f"Migration {key} did not produce version {expected}")
        logger.info("Migrated workflow state %s", key)
    return migrated


def get_state_errors(candidate: Any) -> List[str]:
    """List structural problems with a raw state mapping."""
    if not isinstance(candidate, dict):
        return ["state must be a mapping"]

    errors = []
    expected_types = {
        "version": str,
        "started_at": str,
        "updated_at": str,
        "current_stage": str,
        "checkpoints": list,
        "api_call_count": int,
        "total_cost": (int, float),
        "total_tokens": int,
    }
    for name, expected in expected_types.items():
        if name not in candidate:
            errors.append(f"missing required field '{name}'")
            continue
        value = candidate[name]
        if isinstance(value, bool) or not isinstance(value, expected):
            errors.append(f"field '{name}' has wrong type {type(value).__name__}")

    stages = {s.value for s in WorkflowStage}
    stage = candidate.get("current_stage")
    if isinstance(stage, str) and stage not in stages:
        errors.append(f"unknown stage '{stage}'")

    max_cost = candidate.get("max_cost")
    if max_cost is not None and (isinstance(max_cost, bool) or not isinstance(max_cost, (int, float))):
        errors.append("field 'max_cost' must be a number")

    checkpoints = candidate.get("checkpoints")
    if isinstance(checkpoints, list):
        for i, checkpoint in enumerate(checkpoints):
            if not isinstance(checkpoint, dict):
                errors.append(f"checkpoint {i} must be a mapping")
                continue
            for name in ("stage", "timestamp", "description"):
                if not isinstance(checkpoint.get(name), str):
                    errors.append(f"checkpoint {i} missing '{name}'")
            if isinstance(checkpoint.get("stage"), str) and checkpoint["stage"] not in stages:
                errors.append(f"checkpoint {i} has unknown stage '{checkpoint['stage']}'")
    return errors


def validate_state(candidate: Any) -> bool:
    """True if the candidate has the WorkflowState shape."""
    return not get_state_errors(candidate)
