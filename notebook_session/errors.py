"""
Exceptions raised by the notebook session core.
"""


class NotebookSessionError(Exception):
    """Base class for all notebook-session errors."""


class CellNotFoundError(NotebookSessionError, KeyError):
    """A cell id did not resolve to a cell in the notebook."""

    def __init__(self, cell_id: str):
        self.cell_id = cell_id
        super().__init__(f"Cell {cell_id} not found")

    def __str__(self) -> str:
        return self.args[0]


class DuplicateCellError(NotebookSessionError, ValueError):
    """A cell with the same id is already in the notebook."""

    def __init__(self, cell_id: str):
        self.cell_id = cell_id
        super().__init__(f"Cell {cell_id} already exists in notebook")


class ExecutionRejected(NotebookSessionError):
    """A run request was refused before anything changed."""


class NotebookImportError(NotebookSessionError, ValueError):
    """Serialized notebook data failed validation."""


class InvalidCommandError(NotebookSessionError, ValueError):
    """A command was called with arguments it cannot act on."""
