"""
CheckpointManager: saves and restores kernel variable snapshots.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import dill

logger = logging.getLogger("notebook_session.checkpoint")


class CheckpointManager:
    """
    Manages saving/loading of kernel variable snapshots.

    Uses dill for serialization which can handle:
    - Functions and lambdas
    - Class instances
    - Most Python objects

    Variables dill cannot serialize are skipped and reported by name.
    """

    def __init__(self, sessions_dir: Path):
        self.sessions_dir = Path(sessions_dir)
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def save_session(
        self,
        variables: dict[str, Any],
        execution_count: int = 0,
        path: Optional[Path] = None,
        name: Optional[str] = None,
    ) -> Path:
        """
        Save a variable snapshot to a file.

        Args:
            variables: Kernel variables to save
            execution_count: Session execution counter at save time
            path: Optional specific path to save to
            name: Optional name for the session

        Returns:
            Path to saved session file
        """
        saved = {}
        unpicklable = []
        for key, value in variables.items():
            try:
                dill.dumps(value)
                saved[key] = value
            except Exception:  # noqa: BLE001
                unpicklable.append(key)

        state = {
            "variables": saved,
            "execution_count": execution_count,
            "saved_at": datetime.now().isoformat(),
            "unpicklable_vars": unpicklable,
        }

        if path is None:
            name = name or f"session_{datetime.now().strftime('%Y%m%d_%H%M%S')}"
            path = self.sessions_dir / f"{name}.session"

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            dill.dump(state, f)

        if unpicklable:
            logger.warning("Skipped unpicklable variables: %s", ", ".join(unpicklable))
        logger.info("Saved %d variables to %s", len(saved), path)
        return path

    def load_session(self, path: Path) -> dict[str, Any]:
        """
        Load a variable snapshot from a file.

        Returns:
            Dictionary with ``variables``, ``execution_count``,
            ``unpicklable_vars`` and ``saved_at``
        """
        with open(Path(path), "rb") as f:
            state = dill.load(f)
        return {
            "variables": state.get("variables", {}),
            "execution_count": state.get("execution_count", 0),
            "unpicklable_vars": state.get("unpicklable_vars", []),
            "saved_at": state.get("saved_at"),
        }

    def list_sessions(self) -> list[dict[str, Any]]:
        """List available saved sessions, newest first."""
        sessions = []
        for path in self.sessions_dir.glob("*.session"):
            try:
                with open(path, "rb") as f:
                    state = dill.load(f)
                sessions.append({
                    "path": str(path),
                    "name": path.stem,
                    "saved_at": state.get("saved_at"),
                    "var_count": len(state.get("variables", {})),
                })
            except Exception as e:  # noqa: BLE001
                logger.warning("Skipping unreadable session: %s", path)
                sessions.append({
                    "path": str(path),
                    "name": path.stem,
                    "error": str(e),
                })
        return sorted(sessions, key=lambda x: x.get("saved_at") or "", reverse=True)

    def delete_session(self, path: Path) -> bool:
        """Delete a session file."""
        path = Path(path)
        if path.exists():
            path.unlink()
            return True
        return False

    def get_checkpoint_path(self, notebook_path: Path) -> Path:
        """Get the checkpoint path for a notebook file."""
        return self.sessions_dir / "checkpoints" / f"{Path(notebook_path).stem}.checkpoint"

    def save_checkpoint(self, variables: dict[str, Any], notebook_path: Path, execution_count: int = 0) -> Path:
        """Save the checkpoint that belongs to a notebook file."""
        return self.save_session(
            variables,
            execution_count=execution_count,
            path=self.get_checkpoint_path(notebook_path),
        )

    def load_checkpoint(self, notebook_path: Path) -> Optional[dict[str, Any]]:
        """Load the checkpoint for a notebook file, or None if there is none."""
        checkpoint_path = self.get_checkpoint_path(notebook_path)
        if checkpoint_path.exists():
            return self.load_session(checkpoint_path)
        return None
