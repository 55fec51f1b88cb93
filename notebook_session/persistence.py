"""
Import/export of the JSON notebook format and the file-backed save collaborator.
"""

import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from notebook_session.errors import NotebookImportError
from notebook_session.notebook import Notebook

logger = logging.getLogger("notebook_session.persistence")

SaveCallback = Callable[[Notebook], Union[None, Awaitable[None]]]


def export_notebook(notebook: Notebook, indent: Optional[int] = 2) -> str:
    """Serialize a notebook to JSON text."""
    return json.dumps(notebook.to_dict(), indent=indent)


def import_notebook(text: Union[str, bytes]) -> Notebook:
    """
    Parse JSON text into a notebook.

    The top level must be an object with a ``cells`` list and string
    ``name`` and ``id``; anything else raises NotebookImportError before a
    notebook is built.
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise NotebookImportError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise NotebookImportError("Notebook data must be a JSON object")
    if not isinstance(data.get("cells"), list):
        raise NotebookImportError("Notebook 'cells' must be a list")
    for key in ("id", "name"):
        if not isinstance(data.get(key), str):
            raise NotebookImportError(f"Notebook '{key}' must be a string")

    try:
        notebook = Notebook.from_dict(data)
    except ValidationError as e:
        raise NotebookImportError(f"Invalid notebook: {e.error_count()} validation error(s)") from e

    ids = notebook.cell_ids()
    if len(ids) != len(set(ids)):
        raise NotebookImportError("Notebook contains duplicate cell ids")
    return notebook


def save_notebook(notebook: Notebook, path: Path) -> Path:
    """Atomic write: write to .tmp, then rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(export_notebook(notebook) + "\n")
    tmp_path.replace(path)
    logger.info("Saved notebook %s (%d cells) to %s", notebook.id, len(notebook.cells), path)
    return path


def load_notebook(path: Path) -> Notebook:
    """Load a notebook file, raising NotebookImportError if it is malformed."""
    return import_notebook(Path(path).read_text())


class FileSaver:
    """Save collaborator that writes the notebook to a fixed path."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def __call__(self, notebook: Notebook) -> None:
        save_notebook(notebook, self.path)
