"""Configuration management for notebook-session."""

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel


def _config_dir() -> Path:
    return Path.home() / ".notebook_session"


def _config_path() -> Path:
    return _config_dir() / "config.json"


class SessionConfig(BaseModel):
    autosave_delay: float = 2.0
    history_limit: int = 50
    notification_limit: int = 100
    default_kernel: Optional[str] = "python"
    sessions_dir: Path = _config_dir() / "sessions"
    notebooks_dir: Path = _config_dir() / "notebooks"


def ensure_dirs(config: SessionConfig) -> None:
    """Create the directories the config points at."""
    config.sessions_dir.mkdir(parents=True, exist_ok=True)
    config.notebooks_dir.mkdir(parents=True, exist_ok=True)


def load_config(path: Optional[Path] = None) -> SessionConfig:
    """Load config from ~/.notebook_session/config.json, returning defaults if missing."""
    path = path or _config_path()
    if not path.exists():
        return SessionConfig()
    return SessionConfig.model_validate_json(path.read_text())


def save_config(config: SessionConfig, path: Optional[Path] = None) -> None:
    """Save config to ~/.notebook_session/config.json."""
    path = path or _config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.model_dump(mode="json"), indent=2) + "\n")
