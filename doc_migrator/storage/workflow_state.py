"""
Workflow state persistence.

Manages the run state file with checkpointing and atomic saves. State is
written to a sibling temporary file and then renamed over the canonical
path, so a partially written file is never visible under that name.
"""

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Union

from .models import Checkpoint, WorkflowStage, WorkflowState
from .state_migration import (
    CURRENT_STATE_VERSION,
    StateError,
    StateValidationError,
    get_state_errors,
    migrate_state,
)

logger = logging.getLogger(__name__)

STATE_FILE_NAME = ".doc-migrator-state.json"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStateManager:
    """Owns the persisted state of a single run.

    Stage transitions happen only through ``checkpoint``.
    """

    def __init__(
        self,
        working_dir: Union[str, Path, None] = None,
        now: Callable[[], datetime] = _utc_now,
    ):
        """Initialize the manager.

        Args:
            working_dir: Directory holding the state file (defaults to cwd)
            now: Clock used for timestamps
        """
        self.working_dir = Path(working_dir) if working_dir is not None else Path.cwd()
        self.state_path = self.working_dir / STATE_FILE_NAME
        self._now = now
        self._state: Optional[WorkflowState] = None

    @property
    def state(self) -> Optional[WorkflowState]:
        return self._state

    def _timestamp(self) -> str:
        return self._now().isoformat()

    def load(self) -> Optional[WorkflowState]:
        """Load state from disk, migrating older versions.

        Returns:
            Loaded state, or None if no state file exists

        Raises:
            StateError: If the file is corrupt or unreadable, fails validation, or
                cannot be migrated to the current version
        """
        if not self.state_path.exists():
            self._state = None
            return None

        try:
            with open(self.state_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise StateError(f"Corrupt state file {self.state_path}: {e}") from e
        except OSError as e:
            raise StateError(f"Cannot read state file {self.state_path}: {e}") from e

        if not isinstance(raw, dict):
            raise StateValidationError(f"State file {self.state_path} does not contain an object")

        if raw.get("version") != CURRENT_STATE_VERSION:
            logger.info(
                "State file %s is version %s, migrating to %s",
                self.state_path, raw.get("version", "unversioned"), CURRENT_STATE_VERSION,
            )
            raw = migrate_state(raw, CURRENT_STATE_VERSION)

        errors = get_state_errors(raw)
        if errors:
            raise StateValidationError(f"Invalid state in {self.state_path}: {'; '.join(errors)}")

        self._state = WorkflowState.from_dict(raw)
        return self._state

    def save(self, state: WorkflowState) -> None:
        """Persist state atomically.

        Raises:
            StateValidationError: If the state does not have a valid shape
        """
        state.updated_at = self._timestamp()
        raw = state.to_dict()
        errors = get_state_errors(raw)
        if errors:
            raise StateValidationError(f"Refusing to save invalid state: {'; '.join(errors)}")

        self.working_dir.mkdir(parents=True, exist_ok=True)
        temp_path = self.state_path.with_name(self.state_path.name + ".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(raw, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.state_path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

        self._state = state

    def checkpoint(
        self,
        stage: WorkflowStage,
        description: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> Checkpoint:
        """Append a checkpoint, move to ``stage`` and persist.

        Loads existing state first, or creates initial state if none exists.
        """
        if self._state is None:
            self.load()
        if self._state is None:
            self._state = self.create_initial_state()

        checkpoint = Checkpoint(
            stage=stage,
            timestamp=self._timestamp(),
            description=description,
            data=dict(data) if data is not None else None,
        )
        self._state.checkpoints.append(checkpoint)
        self._state.current_stage = stage
        self.save(self._state)
        return checkpoint

    def can_resume(self) -> bool:
        """True if persisted state exists and its stage is not terminal."""
        if self._state is None:
            self.load()
        if self._state is None:
            return False
        return not self._state.current_stage.is_terminal

    def clear(self) -> None:
        """Delete the state file."""
        self.state_path.unlink(missing_ok=True)
        self._state = None

    def create_initial_state(self, max_cost: Optional[float] = None) -> WorkflowState:
        now = self._timestamp()
        return WorkflowState(
            version=CURRENT_STATE_VERSION,
            started_at=now,
            updated_at=now,
            current_stage=WorkflowStage.NOT_STARTED,
            max_cost=max_cost,
        )
