"""
Notebook: cell and notebook models plus the JSON shape they serialize to.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from notebook_session.errors import DuplicateCellError


def generate_cell_id() -> str:
    """Generate a cell ID: 'cell_' + 12 hex chars from uuid4."""
    return "cell_" + uuid.uuid4().hex[:12]


def generate_notebook_id() -> str:
    """Generate a notebook ID: 'nb_' + 12 hex chars from uuid4."""
    return "nb_" + uuid.uuid4().hex[:12]


class CellType(str, Enum):
    """Type of notebook cell."""
    CODE = "code"
    MARKDOWN = "markdown"
    RAW = "raw"
    SQL = "sql"

    @property
    def is_runnable(self) -> bool:
        """Whether the scheduler may send this cell to a kernel."""
        return _RUNNABLE[self]

    def next_type(self) -> "CellType":
        """Type produced by a toggle: code -> markdown -> raw -> code."""
        return _TOGGLE_ORDER[self]


_RUNNABLE = {
    CellType.CODE: True,
    CellType.MARKDOWN: False,
    CellType.RAW: False,
    CellType.SQL: False,
}

_TOGGLE_ORDER = {
    CellType.CODE: CellType.MARKDOWN,
    CellType.MARKDOWN: CellType.RAW,
    CellType.RAW: CellType.CODE,
    CellType.SQL: CellType.CODE,
}

DEFAULT_CONTENT = {
    CellType.CODE: '# Write your code here\nprint("Hello, World!")',
    CellType.MARKDOWN: "# Markdown Cell\n\nWrite your markdown content here...",
    CellType.RAW: "Raw text content...",
    CellType.SQL: "SELECT * FROM table_name LIMIT 10",
}


def default_content(cell_type: CellType) -> str:
    """Template body a fresh cell of ``cell_type`` starts with."""
    return DEFAULT_CONTENT[CellType(cell_type)]


class CellStatus(str, Enum):
    """Execution status of a cell."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class CellOutput(BaseModel):
    """Structured result of the last run of a cell."""
    model_config = ConfigDict(extra="allow")

    output: Optional[str] = None
    stdout: Optional[str] = None
    stderr: Optional[str] = None
    error: Optional[str] = None
    details: Any = None
    html: Optional[str] = None
    images: list[dict[str, Any]] = Field(default_factory=list)
    tables: list[dict[str, Any]] = Field(default_factory=list)
    data: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_error(self) -> bool:
        return self.error is not None


class Cell(BaseModel):
    """A single notebook cell."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_cell_id)
    type: CellType = CellType.CODE
    content: str = ""
    status: CellStatus = CellStatus.IDLE
    output: Optional[CellOutput] = None
    execution_time: Optional[int] = Field(default=None, alias="executionTime")
    execution_count: Optional[int] = Field(default=None, alias="executionCount")
    timestamp: datetime = Field(default_factory=datetime.now)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, cell_type: CellType = CellType.CODE, **kwargs) -> "Cell":
        """Create an idle cell of ``cell_type`` holding the type's default template."""
        cell_type = CellType(cell_type)
        kwargs.setdefault("content", default_content(cell_type))
        return cls(type=cell_type, **kwargs)

    def set_content(self, content: str) -> "Cell":
        """Replace the content. Status and output are left alone."""
        self.content = content
        self.timestamp = datetime.now()
        return self

    def toggle_type(self) -> "Cell":
        """
        Cycle to the next cell type.

        The content is reset to the new type's default template, so whatever
        the cell held before is discarded.
        """
        self.type = self.type.next_type()
        self.content = default_content(self.type)
        self.timestamp = datetime.now()
        return self

    def clear_output(self):
        """Drop the run result and return to idle."""
        self.output = None
        self.status = CellStatus.IDLE
        self.execution_count = None
        self.execution_time = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        """Create from dictionary."""
        return cls.model_validate(data)


class ExecutionMode(str, Enum):
    """How run-all and run-selected schedule their cells."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"


class NotebookSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auto_save: bool = Field(default=True, alias="autoSave")
    execution_mode: ExecutionMode = Field(default=ExecutionMode.SEQUENTIAL, alias="executionMode")
    font_size: int = Field(default=14, alias="fontSize")
    tab_size: int = Field(default=2, alias="tabSize")
    word_wrap: bool = Field(default=True, alias="wordWrap")
    show_line_numbers: bool = Field(default=True, alias="showLineNumbers")


class Notebook(BaseModel):
    """
    An ordered collection of cells plus notebook-level metadata.

    Cell position is the index in ``cells``; there is no separate order
    field. Every cell or metadata mutation bumps ``updated_at``.
    """
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=generate_notebook_id)
    name: str = "Untitled Notebook"
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    cells: list[Cell] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now, alias="createdAt")
    updated_at: datetime = Field(default_factory=datetime.now, alias="updatedAt")
    settings: NotebookSettings = Field(default_factory=NotebookSettings)

    def touch(self):
        """Update the modified timestamp."""
        self.updated_at = datetime.now()

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        for cell in self.cells:
            if cell.id == cell_id:
                return cell
        return None

    def index_of(self, cell_id: str) -> int:
        """Position of the cell, or -1 if it is not in the notebook."""
        for i, cell in enumerate(self.cells):
            if cell.id == cell_id:
                return i
        return -1

    def cell_ids(self) -> list[str]:
        return [cell.id for cell in self.cells]

    def add_cell(self, cell: Optional[Cell] = None, **kwargs) -> Cell:
        """Append a cell, creating one from ``kwargs`` if none is given."""
        return self.insert_cell(cell, **kwargs)

    def insert_cell(
        self,
        cell: Optional[Cell] = None,
        target_id: Optional[str] = None,
        position: str = "below",
        **kwargs,
    ) -> Cell:
        """
        Insert a cell next to another one.

        Args:
            cell: Cell to insert, or None to build one from kwargs
            target_id: Cell to insert relative to
            position: "above" or "below" the target

        Returns:
            The inserted cell. It is appended when ``target_id`` does not
            resolve to a cell in this notebook.
        """
        if cell is None:
            cell = Cell(**kwargs)
        if self.get_cell(cell.id) is not None:
            raise DuplicateCellError(cell.id)

        index = self.index_of(target_id) if target_id else -1
        if index == -1:
            self.cells.append(cell)
        elif position == "above":
            self.cells.insert(index, cell)
        else:
            self.cells.insert(index + 1, cell)
        self.touch()
        return cell

    def delete_cell(self, cell_id: str) -> Optional[Cell]:
        """Remove a cell by id. Unknown ids are ignored but still touch the notebook."""
        index = self.index_of(cell_id)
        removed = self.cells.pop(index) if index != -1 else None
        self.touch()
        return removed

    def move_cell(self, cell_id: str, direction: str) -> bool:
        """
        Swap a cell with its neighbour above or below.

        Returns False, leaving the notebook untouched, when the cell is not
        found or is already at that boundary.
        """
        index = self.index_of(cell_id)
        if index == -1:
            return False
        new_index = index - 1 if direction == "up" else index + 1
        if new_index < 0 or new_index >= len(self.cells):
            return False
        self.cells[index], self.cells[new_index] = self.cells[new_index], self.cells[index]
        self.touch()
        return True

    def update_cell(self, cell_id: str, **patch) -> Optional[Cell]:
        """Merge ``patch`` into the matching cell. ``id`` is never patched."""
        cell = self.get_cell(cell_id)
        if cell is None:
            return None
        for key, value in patch.items():
            if key == "id" or key not in Cell.model_fields:
                continue
            if key == "metadata":
                value = {**cell.metadata, **value}
            elif key == "output" and isinstance(value, dict):
                value = CellOutput.model_validate(value)
            elif key == "type":
                value = CellType(value)
            elif key == "status":
                value = CellStatus(value)
            setattr(cell, key, value)
        self.touch()
        return cell

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: dict) -> "Notebook":
        """Create from dictionary."""
        return cls.model_validate(data)

    @classmethod
    def new(cls, name: str = "Untitled Notebook", **kwargs) -> "Notebook":
        """Create a new empty notebook."""
        return cls(name=name, **kwargs)
