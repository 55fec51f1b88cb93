"""
SessionStore: the single owner of notebook, kernel and UI session state.

Views and commands read ``store.state`` and change it only through the
action methods below, so every mutation site is listed in this module.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from notebook_session.errors import CellNotFoundError
from notebook_session.kernel import ExecutionResult, Kernel, KernelRegistry, KernelStatus
from notebook_session.notebook import Cell, CellOutput, CellStatus, Notebook

logger = logging.getLogger("notebook_session.session")

INTERRUPTED_MESSAGE = "Execution interrupted"


@dataclass(frozen=True)
class Change:
    """
    What an action changed.

    kind is "notebook" for anything that bumps ``updated_at``, "selection"
    for active/selected cell changes, "execution" for run flags and "kernel"
    for kernel status and variables.
    """
    kind: str
    action: str
    cell_id: Optional[str] = None


Subscriber = Callable[["SessionState", Change], None]


class SessionState(BaseModel):
    """
    In-memory aggregate for one open notebook. Never persisted as a whole.

    ``output_generation`` goes up each time every output is cleared; run
    results captured under an older generation are stale.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    notebook: Notebook
    active_cell_id: Optional[str] = None
    selected_cell_ids: set[str] = Field(default_factory=set)
    execution_count: int = 0
    output_generation: int = 0
    kernel_status: KernelStatus = KernelStatus.IDLE
    is_executing: bool = False
    data_sources: dict[str, Any] = Field(default_factory=dict)


class SessionStore:
    """
    Holds the session state and exposes the actions that mutate it.

    Subscribers are called synchronously after every action with the state
    and a ``Change`` describing it.
    """

    def __init__(self, notebook: Optional[Notebook] = None, registry: Optional[KernelRegistry] = None):
        self.state = SessionState(notebook=notebook or Notebook.new())
        self.registry = registry or KernelRegistry()
        self._subscribers: list[Subscriber] = []
        self._in_flight = 0

    # ------------------------------------------------------------------ #
    # Access
    # ------------------------------------------------------------------ #

    @property
    def notebook(self) -> Notebook:
        return self.state.notebook

    @property
    def current_kernel(self) -> Optional[Kernel]:
        return self.registry.current

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def get_cell(self, cell_id: str) -> Optional[Cell]:
        return self.notebook.get_cell(cell_id)

    def require_cell(self, cell_id: str) -> Cell:
        cell = self.notebook.get_cell(cell_id)
        if cell is None:
            raise CellNotFoundError(cell_id)
        return cell

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a change callback. Returns a function that removes it."""
        self._subscribers.append(subscriber)

        def unsubscribe():
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def _emit(self, kind: str, action: str, cell_id: Optional[str] = None):
        change = Change(kind=kind, action=action, cell_id=cell_id)
        for subscriber in list(self._subscribers):
            subscriber(self.state, change)

    # ------------------------------------------------------------------ #
    # Notebook actions
    # ------------------------------------------------------------------ #

    def set_notebook(self, notebook: Notebook):
        """Swap in another notebook (load, import, template)."""
        self.state.notebook = notebook
        self.state.active_cell_id = None
        self.state.selected_cell_ids = set()
        self._emit("notebook", "set_notebook")

    def insert_cell(self, cell: Cell, target_id: Optional[str] = None, position: str = "below") -> Cell:
        self.notebook.insert_cell(cell, target_id=target_id, position=position)
        self._emit("notebook", "insert_cell", cell.id)
        return cell

    def delete_cell(self, cell_id: str) -> Optional[Cell]:
        removed = self.notebook.delete_cell(cell_id)
        self.state.selected_cell_ids.discard(cell_id)
        if self.state.active_cell_id == cell_id:
            self.state.active_cell_id = None
        self._emit("notebook", "delete_cell", cell_id)
        return removed

    def move_cell(self, cell_id: str, direction: str) -> bool:
        moved = self.notebook.move_cell(cell_id, direction)
        if moved:
            self._emit("notebook", "move_cell", cell_id)
        return moved

    def update_cell(self, cell_id: str, **patch) -> Optional[Cell]:
        cell = self.notebook.update_cell(cell_id, **patch)
        if cell is not None:
            self._emit("notebook", "update_cell", cell_id)
        return cell

    def set_cell_content(self, cell_id: str, content: str) -> Cell:
        cell = self.require_cell(cell_id).set_content(content)
        self.notebook.touch()
        self._emit("notebook", "set_cell_content", cell_id)
        return cell

    def toggle_cell_type(self, cell_id: str) -> Cell:
        cell = self.require_cell(cell_id).toggle_type()
        self.notebook.touch()
        self._emit("notebook", "toggle_cell_type", cell_id)
        return cell

    def set_cell_metadata(self, cell_id: str, key: str, value: Any) -> Cell:
        """Set one metadata entry of a cell. A value of None removes the key."""
        cell = self.require_cell(cell_id)
        if value is None:
            cell.metadata.pop(key, None)
        else:
            cell.metadata[key] = value
        self.notebook.touch()
        self._emit("notebook", "set_cell_metadata", cell_id)
        return cell

    def replace_cells(self, cells: list[Cell], action: str = "replace_cells"):
        """Replace the whole cell list, e.g. when undoing a bulk edit."""
        self.notebook.cells = list(cells)
        ids = set(self.notebook.cell_ids())
        self.state.selected_cell_ids &= ids
        if self.state.active_cell_id not in ids:
            self.state.active_cell_id = None
        self.notebook.touch()
        self._emit("notebook", action)

    def rename(self, name: Optional[str] = None, description: Optional[str] = None,
               tags: Optional[list[str]] = None):
        if name is not None:
            self.notebook.name = name
        if description is not None:
            self.notebook.description = description
        if tags is not None:
            self.notebook.tags = list(tags)
        self.notebook.touch()
        self._emit("notebook", "rename")

    def update_settings(self, **changes):
        settings = self.notebook.settings
        self.notebook.settings = settings.model_validate({**settings.model_dump(), **changes})
        self.notebook.touch()
        self._emit("notebook", "update_settings")

    # ------------------------------------------------------------------ #
    # Selection actions
    # ------------------------------------------------------------------ #

    def set_active_cell(self, cell_id: Optional[str]):
        """Focus a cell. The multi-cell selection is left as it is."""
        self.state.active_cell_id = cell_id
        self._emit("selection", "set_active_cell", cell_id)

    def select_cell(self, cell_id: str):
        self.state.selected_cell_ids.add(cell_id)
        self._emit("selection", "select_cell", cell_id)

    def deselect_cell(self, cell_id: str):
        self.state.selected_cell_ids.discard(cell_id)
        self._emit("selection", "deselect_cell", cell_id)

    def toggle_selection(self, cell_id: str):
        if cell_id in self.state.selected_cell_ids:
            self.deselect_cell(cell_id)
        else:
            self.select_cell(cell_id)

    def select_all(self):
        self.state.selected_cell_ids = set(self.notebook.cell_ids())
        self._emit("selection", "select_all")

    def clear_selection(self):
        self.state.selected_cell_ids = set()
        self._emit("selection", "clear_selection")

    # ------------------------------------------------------------------ #
    # Execution actions (called by the scheduler)
    # ------------------------------------------------------------------ #

    def set_kernel_status(self, status: KernelStatus):
        self.state.kernel_status = status
        kernel = self.current_kernel
        if kernel is not None:
            kernel.status = status
        self._emit("kernel", "set_kernel_status")

    def begin_run(self, cell_id: str) -> Cell:
        cell = self.require_cell(cell_id)
        cell.status = CellStatus.RUNNING
        self._in_flight += 1
        self.state.is_executing = True
        self.set_kernel_status(KernelStatus.BUSY)
        self._emit("execution", "begin_run", cell_id)
        return cell

    def complete_run(self, cell_id: str, result: ExecutionResult, elapsed_ms: int) -> Optional[Cell]:
        """Record a successful run: output, timing, variables and the global count."""
        kernel = self.current_kernel
        if kernel is not None:
            kernel.variables.update(result.variables)
        self.state.execution_count += 1

        cell = self.get_cell(cell_id)
        if cell is None:
            logger.debug("Cell %s was removed while running", cell_id)
        else:
            cell.status = CellStatus.SUCCESS
            cell.output = CellOutput.model_validate(result.to_output())
            cell.execution_time = elapsed_ms
            cell.execution_count = self.state.execution_count
            cell.timestamp = datetime.now()
            self.notebook.touch()

        self.set_kernel_status(KernelStatus.BUSY if self._in_flight > 1 else KernelStatus.IDLE)
        self._emit("notebook", "complete_run", cell_id)
        return cell

    def fail_run(self, cell_id: str, error: str, details: Any = None) -> Optional[Cell]:
        """Record a failed run. The global execution count is not touched."""
        cell = self.get_cell(cell_id)
        if cell is not None:
            cell.status = CellStatus.ERROR
            cell.output = CellOutput(error=error, details=details)
            cell.timestamp = datetime.now()
            self.notebook.touch()
        self.set_kernel_status(KernelStatus.ERROR)
        self._emit("notebook", "fail_run", cell_id)
        return cell

    def interrupt_run(self, cell_id: str) -> Optional[Cell]:
        """Move a cancelled run to its terminal error state."""
        cell = self.get_cell(cell_id)
        if cell is not None:
            cell.status = CellStatus.ERROR
            cell.output = CellOutput(
                error=INTERRUPTED_MESSAGE,
                details={"ename": "KeyboardInterrupt", "evalue": INTERRUPTED_MESSAGE, "traceback": []},
            )
            cell.timestamp = datetime.now()
            self.notebook.touch()
        self._emit("notebook", "interrupt_run", cell_id)
        return cell

    def end_run(self, cell_id: str):
        self._in_flight = max(0, self._in_flight - 1)
        self.state.is_executing = self._in_flight > 0
        self._emit("execution", "end_run", cell_id)

    def interrupt(self):
        """Flip the session out of its executing state."""
        self.state.is_executing = False
        self.set_kernel_status(KernelStatus.IDLE)
        self._emit("execution", "interrupt")

    def clear_outputs(self):
        """Reset every cell to idle without output and the execution count to 0."""
        for cell in self.notebook.cells:
            cell.clear_output()
        self.state.execution_count = 0
        self.state.output_generation += 1
        self.notebook.touch()
        self._emit("notebook", "clear_outputs")

    def reset_execution_count(self):
        self.state.execution_count = 0
        self._emit("execution", "reset_execution_count")

    def restore_kernel_variables(self, variables: dict[str, Any]):
        kernel = self.current_kernel
        if kernel is None:
            return
        kernel.variables.update(variables)
        self._emit("kernel", "restore_kernel_variables")

    def clear_kernel_variables(self):
        kernel = self.current_kernel
        if kernel is not None:
            kernel.variables.clear()
        self._emit("kernel", "clear_kernel_variables")

    def set_data_sources(self, data_sources: dict[str, Any]):
        self.state.data_sources = dict(data_sources)
        self._emit("execution", "set_data_sources")
