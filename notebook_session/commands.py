"""
NotebookCommands: user intents mapped onto session store actions.

Each command composes store and scheduler calls and reports the outcome as a
notification. Failures never propagate past a command; they become a cell
error (via the scheduler) or an error notification.
"""

import asyncio
import copy
import functools
import inspect
import json
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError

from notebook_session.errors import InvalidCommandError, NotebookImportError, NotebookSessionError
from notebook_session.history import Edit, EditHistory
from notebook_session.notebook import Cell, CellStatus, CellType, generate_cell_id
from notebook_session.notifications import Notifier
from notebook_session.persistence import SaveCallback, export_notebook, import_notebook
from notebook_session.scheduler import ExecutionScheduler
from notebook_session.session import SessionStore
from notebook_session.templates import get_template

logger = logging.getLogger("notebook_session.commands")


class Clipboard:
    """In-memory stand-in for the system clipboard."""

    def __init__(self):
        self._text: Optional[str] = None

    def write(self, text: str):
        self._text = text

    def read(self) -> Optional[str]:
        return self._text


_RUN_FIELDS = ("status", "output", "execution_time", "execution_count")


def _guarded(method):
    """Turn session errors and bad arguments raised inside a command into error notifications."""
    if asyncio.iscoroutinefunction(method):
        @functools.wraps(method)
        async def async_wrapper(self, *args, **kwargs):
            try:
                return await method(self, *args, **kwargs)
            except (NotebookSessionError, ValueError) as e:
                logger.warning("Command %s failed: %s", method.__name__, e)
                self.notifier.error(str(e))
                return None
        return async_wrapper

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (NotebookSessionError, ValueError) as e:
            logger.warning("Command %s failed: %s", method.__name__, e)
            self.notifier.error(str(e))
            return None
    return wrapper


def _copy_cells(cells: list[Cell]) -> list[Cell]:
    return [cell.model_copy(deep=True) for cell in cells]


def _cell_type(value: Any) -> CellType:
    try:
        return CellType(value)
    except ValueError:
        raise InvalidCommandError(f"Unknown cell type: {value}") from None


def _comment_id() -> str:
    return "comment_" + uuid.uuid4().hex[:12]


class NotebookCommands:
    """Command layer for one notebook session."""

    def __init__(
        self,
        store: SessionStore,
        scheduler: ExecutionScheduler,
        notifier: Optional[Notifier] = None,
        save: Optional[SaveCallback] = None,
        clipboard: Optional[Clipboard] = None,
        history: Optional[EditHistory] = None,
    ):
        self.store = store
        self.scheduler = scheduler
        self.notifier = notifier or scheduler.notifier
        self.save_callback = save
        self.clipboard = clipboard or Clipboard()
        self.history = history or EditHistory()
        self._intents = {
            "create_cell": self.create_cell,
            "delete_cell": self.delete_cell,
            "update_content": self.update_content,
            "move_cell": self.move_cell,
            "toggle_cell_type": self.toggle_cell_type,
            "execute_cell": self.execute_cell,
            "execute_all": self.execute_all,
            "run_selected": self.run_selected,
            "clear_all_outputs": self.clear_all_outputs,
            "interrupt": self.interrupt,
            "restart": self.restart,
            "shutdown": self.shutdown,
            "focus_next": self.focus_next,
            "focus_previous": self.focus_previous,
            "set_active_cell": self.set_active_cell,
            "toggle_selection": self.toggle_selection,
            "select_all": self.select_all,
            "copy_cell": self.copy_cell,
            "cut_cell": self.cut_cell,
            "paste_cell": self.paste_cell,
            "merge_cells": self.merge_cells,
            "split_cell": self.split_cell,
            "find": self.find,
            "replace": self.replace,
            "undo": self.undo,
            "redo": self.redo,
            "save": self.save,
            "export_notebook": self.export_notebook,
            "import_notebook": self.import_notebook,
            "select_template": self.select_template,
            "rename_notebook": self.rename_notebook,
            "update_settings": self.update_settings,
            "rename_cell_title": self.rename_cell_title,
            "add_comment": self.add_comment,
            "add_tag": self.add_tag,
            "set_sql_variable_name": self.set_sql_variable_name,
            "set_sql_connection": self.set_sql_connection,
        }

    @property
    def notebook(self):
        return self.store.notebook

    async def dispatch(self, intent: str, **kwargs) -> Any:
        """Run the handler registered for ``intent``."""
        handler = self._intents.get(intent)
        if handler is None:
            self.notifier.warning(f"Unknown command: {intent}")
            return None
        try:
            inspect.signature(handler).bind(**kwargs)
        except TypeError as e:
            logger.warning("Bad arguments for %s: %s", intent, e)
            self.notifier.error(f"Invalid arguments for {intent}")
            return None
        result = handler(**kwargs)
        if inspect.isawaitable(result):
            result = await result
        return result

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    def _insert_at(self, cell: Cell, index: int):
        cells = self.notebook.cells
        if index < len(cells):
            self.store.insert_cell(cell, target_id=cells[index].id, position="above")
        else:
            self.store.insert_cell(cell)

    def _revive(self, cell: Cell, generation: int) -> Cell:
        """
        Copy of a cell that is coming back into the notebook.

        Run results are dropped if outputs were cleared since the copy was
        taken, so an undo never brings back a stale execution count.
        """
        cell = cell.model_copy(deep=True)
        if generation != self.store.state.output_generation:
            cell.clear_output()
        return cell

    def _replay_cells(self, snapshot: list[Cell], generation: int, action: str):
        """Restore content and order from a snapshot, keeping live run results."""
        live = {cell.id: cell for cell in self.notebook.cells}
        cells = []
        for saved in snapshot:
            current = live.get(saved.id)
            if current is None:
                cells.append(self._revive(saved, generation))
            else:
                run = {field: getattr(current, field) for field in _RUN_FIELDS}
                cells.append(saved.model_copy(update=run, deep=True))
        self.store.replace_cells(cells, action=action)

    def _apply_cells_edit(self, label: str, cells: list[Cell]):
        """Swap in an edited cell list as one undoable step."""
        generation = self.store.state.output_generation
        before = _copy_cells(self.notebook.cells)
        self.store.replace_cells(cells, action=label)
        after = _copy_cells(self.notebook.cells)
        self.history.record(Edit(
            label=label,
            undo=lambda: self._replay_cells(before, generation, f"undo_{label}"),
            redo=lambda: self._replay_cells(after, generation, f"redo_{label}"),
        ))

    def _record_metadata_edit(self, label: str, cell_id: str, key: str, old: Any, new: Any):
        self.history.record(Edit(
            label=label,
            undo=lambda: self.store.set_cell_metadata(cell_id, key, copy.deepcopy(old)),
            redo=lambda: self.store.set_cell_metadata(cell_id, key, copy.deepcopy(new)),
        ))

    def _selected_in_order(self) -> list[Cell]:
        selected = self.store.state.selected_cell_ids
        return [cell for cell in self.notebook.cells if cell.id in selected]

    # ------------------------------------------------------------------ #
    # Cell operations
    # ------------------------------------------------------------------ #

    @_guarded
    def create_cell(self, type: CellType = CellType.CODE, position: Optional[str] = None,
                    target_id: Optional[str] = None) -> Cell:
        cell_type = _cell_type(type)
        if position not in (None, "above", "below"):
            raise InvalidCommandError(f"Unknown position: {position}")
        cell = Cell.create(cell_type)
        self.store.insert_cell(cell, target_id=target_id, position=position or "below")
        index = self.notebook.index_of(cell.id)
        generation = self.store.state.output_generation
        self.history.record(Edit(
            label="create_cell",
            undo=lambda: self.store.delete_cell(cell.id),
            redo=lambda: self._insert_at(self._revive(cell, generation), index),
        ))
        self.store.set_active_cell(cell.id)
        self.notifier.success(f"{cell.type.value.capitalize()} cell added")
        return cell

    @_guarded
    def delete_cell(self, cell_id: str) -> Optional[Cell]:
        index = self.notebook.index_of(cell_id)
        removed = self.store.delete_cell(cell_id)
        if removed is not None:
            generation = self.store.state.output_generation
            self.history.record(Edit(
                label="delete_cell",
                undo=lambda: self._insert_at(self._revive(removed, generation), index),
                redo=lambda: self.store.delete_cell(cell_id),
            ))
        self.notifier.success("Cell deleted")
        return removed

    @_guarded
    def update_content(self, cell_id: str, content: str) -> Cell:
        old = self.store.require_cell(cell_id).content
        cell = self.store.set_cell_content(cell_id, content)
        self.history.record(Edit(
            label="update_content",
            undo=lambda: self.store.set_cell_content(cell_id, old),
            redo=lambda: self.store.set_cell_content(cell_id, content),
            key=f"content:{cell_id}",
        ))
        return cell

    @_guarded
    def move_cell(self, cell_id: str, direction: str) -> bool:
        if direction not in ("up", "down"):
            raise InvalidCommandError(f"Unknown direction: {direction}")
        moved = self.store.move_cell(cell_id, direction)
        if moved:
            opposite = "down" if direction == "up" else "up"
            self.history.record(Edit(
                label="move_cell",
                undo=lambda: self.store.move_cell(cell_id, opposite),
                redo=lambda: self.store.move_cell(cell_id, direction),
            ))
        return moved

    @_guarded
    def toggle_cell_type(self, cell_id: str) -> Cell:
        cell = self.store.require_cell(cell_id)
        old_type, old_content = cell.type, cell.content
        self.store.toggle_cell_type(cell_id)
        self.history.record(Edit(
            label="toggle_cell_type",
            undo=lambda: self.store.update_cell(cell_id, type=old_type, content=old_content),
            redo=lambda: self.store.toggle_cell_type(cell_id),
        ))
        self.notifier.success("Cell type changed")
        return cell

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #

    @_guarded
    async def execute_cell(self, cell_id: str) -> Optional[Cell]:
        return await self.scheduler.run_cell(cell_id)

    @_guarded
    async def execute_all(self) -> list[Cell]:
        if self.store.state.is_executing:
            self.notifier.warning("Execution already in progress")
            return []
        return await self.scheduler.run_all()

    @_guarded
    async def run_selected(self) -> list[Cell]:
        if self.store.state.is_executing:
            self.notifier.warning("Execution already in progress")
            return []
        return await self.scheduler.run_selected()

    def clear_all_outputs(self):
        self.scheduler.clear_outputs()
        self.notifier.success("All outputs cleared")

    def interrupt(self) -> int:
        return self.scheduler.interrupt()

    @_guarded
    async def restart(self):
        await self.scheduler.restart()
        self.notifier.success("Kernel restarted")

    @_guarded
    async def shutdown(self):
        await self.scheduler.shutdown()
        self.notifier.success("Kernel shutdown")

    # ------------------------------------------------------------------ #
    # Selection and navigation
    # ------------------------------------------------------------------ #

    def set_active_cell(self, cell_id: Optional[str]):
        self.history.seal()
        self.store.set_active_cell(cell_id)

    def focus_next(self) -> Optional[str]:
        ids = self.notebook.cell_ids()
        current = self.store.state.active_cell_id
        index = ids.index(current) if current in ids else -1
        if index < len(ids) - 1:
            self.set_active_cell(ids[index + 1])
        return self.store.state.active_cell_id

    def focus_previous(self) -> Optional[str]:
        ids = self.notebook.cell_ids()
        current = self.store.state.active_cell_id
        index = ids.index(current) if current in ids else -1
        if index > 0:
            self.set_active_cell(ids[index - 1])
        return self.store.state.active_cell_id

    def toggle_selection(self, cell_id: str):
        self.store.toggle_selection(cell_id)

    def select_all(self):
        self.store.select_all()

    # ------------------------------------------------------------------ #
    # Clipboard, merge and split
    # ------------------------------------------------------------------ #

    @_guarded
    def copy_cell(self, cell_id: str) -> bool:
        cell = self.store.get_cell(cell_id)
        if cell is None:
            self.notifier.error("Cell not found")
            return False
        self.clipboard.write(json.dumps(cell.to_dict()))
        self.notifier.success("Cell copied to clipboard")
        return True

    def cut_cell(self, cell_id: str) -> Optional[Cell]:
        if not self.copy_cell(cell_id):
            return None
        return self.delete_cell(cell_id)

    @_guarded
    def paste_cell(self) -> Optional[Cell]:
        """Append the clipboard cell under a fresh id."""
        text = self.clipboard.read()
        if not text:
            self.notifier.error("Clipboard is empty")
            return None
        try:
            copied = Cell.from_dict(json.loads(text))
        except (ValueError, ValidationError, TypeError):
            self.notifier.error("Invalid cell data in clipboard")
            return None

        update: dict[str, Any] = {"id": generate_cell_id()}
        if copied.status is CellStatus.RUNNING:
            update["status"] = CellStatus.IDLE
        cell = copied.model_copy(update=update)
        self.store.insert_cell(cell)
        generation = self.store.state.output_generation
        self.history.record(Edit(
            label="paste_cell",
            undo=lambda: self.store.delete_cell(cell.id),
            redo=lambda: self.store.insert_cell(self._revive(cell, generation)),
        ))
        self.store.set_active_cell(cell.id)
        self.notifier.success("Cell pasted")
        return cell

    @_guarded
    def merge_cells(self) -> Optional[Cell]:
        """
        Merge the selected cells into the first of them.

        Non-empty contents are joined in document order with a blank line.
        The first cell keeps its id and type; the others are deleted.
        """
        cells = self._selected_in_order()
        if len(cells) < 2:
            self.notifier.error("Select at least 2 cells to merge")
            return None

        merged_ids = {cell.id for cell in cells[1:]}
        first = cells[0].model_copy(deep=True)
        first.set_content("\n\n".join(cell.content for cell in cells if cell.content.strip()))
        self._apply_cells_edit("merge_cells", [
            first if cell.id == first.id else cell
            for cell in self.notebook.cells
            if cell.id not in merged_ids
        ])

        self.store.clear_selection()
        self.store.select_cell(first.id)
        self.store.set_active_cell(first.id)
        self.notifier.success(f"Merged {len(cells)} cells")
        return first

    @_guarded
    def split_cell(self, cell_id: str) -> Optional[Cell]:
        """Split a cell at its middle line; the second half goes into a new cell below."""
        cell = self.store.require_cell(cell_id)
        if not cell.content.strip():
            self.notifier.error("Cell is empty")
            return None
        lines = cell.content.split("\n")
        if len(lines) < 2:
            self.notifier.error("Cell must have at least 2 lines to split")
            return None

        middle = len(lines) // 2
        head = cell.model_copy(deep=True).set_content("\n".join(lines[:middle]))
        new_cell = Cell(type=cell.type, content="\n".join(lines[middle:]), metadata=copy.deepcopy(cell.metadata))
        edited = []
        for current in self.notebook.cells:
            if current.id == cell_id:
                edited.extend([head, new_cell])
            else:
                edited.append(current)
        self._apply_cells_edit("split_cell", edited)

        self.store.set_active_cell(new_cell.id)
        self.notifier.success("Cell split successfully")
        return new_cell

    # ------------------------------------------------------------------ #
    # Find / replace
    # ------------------------------------------------------------------ #

    @_guarded
    def find(self, text: str) -> list[dict[str, Any]]:
        """Case-insensitive search. Returns one entry per matching cell."""
        if not text:
            self.notifier.error("Search text is required")
            return []
        pattern = re.compile(re.escape(text), re.IGNORECASE)
        matches = []
        for index, cell in enumerate(self.notebook.cells):
            count = len(pattern.findall(cell.content))
            if count:
                matches.append({"cell_id": cell.id, "index": index, "count": count})
        if matches:
            self.notifier.success(f"Found {sum(m['count'] for m in matches)} match(es)")
        else:
            self.notifier.error("No matches found")
        return matches

    @_guarded
    def replace(self, search: str, replacement: str, replace_all: bool = True) -> int:
        """Replace occurrences of ``search`` (case-insensitive). Returns the count."""
        if not search:
            self.notifier.error("Search text is required")
            return 0
        pattern = re.compile(re.escape(search), re.IGNORECASE)
        edited = []
        replaced = 0
        for cell in self.notebook.cells:
            count = 0
            if replace_all or not replaced:
                content, count = pattern.subn(lambda m: replacement, cell.content, count=0 if replace_all else 1)
            if count:
                cell = cell.model_copy(deep=True).set_content(content)
                replaced += count
            edited.append(cell)

        if not replaced:
            self.notifier.error("No matches found to replace")
            return 0
        self._apply_cells_edit("replace", edited)
        self.notifier.success(f"Replaced {replaced} occurrence(s)")
        return replaced

    # ------------------------------------------------------------------ #
    # Undo / redo
    # ------------------------------------------------------------------ #

    @_guarded
    def undo(self) -> bool:
        if self.history.undo() is None:
            self.notifier.error("Nothing to undo")
            return False
        self.notifier.success("Undone")
        return True

    @_guarded
    def redo(self) -> bool:
        if self.history.redo() is None:
            self.notifier.error("Nothing to redo")
            return False
        self.notifier.success("Redone")
        return True

    # ------------------------------------------------------------------ #
    # Files, templates and metadata
    # ------------------------------------------------------------------ #

    async def save(self) -> bool:
        if self.save_callback is None:
            self.notifier.warning("No save target configured")
            return False
        try:
            result = self.save_callback(self.notebook)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            logger.error("Saving notebook %s failed: %s", self.notebook.id, e)
            self.notifier.error("Failed to save notebook")
            return False
        self.notifier.success("Notebook saved")
        return True

    def export_notebook(self) -> str:
        text = export_notebook(self.notebook)
        self.notifier.success("Notebook exported")
        return text

    def import_notebook(self, text: str) -> bool:
        """Replace the notebook with imported JSON. A bad import changes nothing."""
        try:
            notebook = import_notebook(text)
        except NotebookImportError as e:
            logger.warning("Rejected notebook import: %s", e)
            self.notifier.error(f"Failed to import notebook: {e}")
            return False
        self.store.set_notebook(notebook)
        self.history.clear()
        self.notifier.success("Notebook imported")
        return True

    def select_template(self, template_id: str) -> bool:
        template = get_template(template_id)
        if template is None:
            self.notifier.error(f"Unknown template: {template_id}")
            return False
        self.store.set_notebook(template.instantiate())
        self.history.clear()
        self.notifier.success(f'Template "{template.name}" loaded')
        return True

    def rename_notebook(self, name: str):
        self.store.rename(name=name)

    def update_settings(self, **changes) -> bool:
        try:
            self.store.update_settings(**changes)
        except ValidationError as e:
            self.notifier.error(f"Invalid settings: {e.error_count()} error(s)")
            return False
        return True

    # ------------------------------------------------------------------ #
    # Cell annotations
    # ------------------------------------------------------------------ #

    def _set_metadata(self, label: str, cell_id: str, key: str, value: Any) -> Cell:
        old = copy.deepcopy(self.store.require_cell(cell_id).metadata.get(key))
        cell = self.store.set_cell_metadata(cell_id, key, value)
        self._record_metadata_edit(label, cell_id, key, old, copy.deepcopy(value))
        return cell

    @_guarded
    def rename_cell_title(self, cell_id: str, title: str) -> Cell:
        """Set the cell's display title. An empty title removes it."""
        return self._set_metadata("rename_cell_title", cell_id, "title", title or None)

    @_guarded
    def add_comment(self, cell_id: str, content: str, author: str = "Current User") -> Optional[dict[str, Any]]:
        if not content.strip():
            self.notifier.error("Comment text is required")
            return None
        comments = list(self.store.require_cell(cell_id).metadata.get("comments", []))
        comment = {
            "id": _comment_id(),
            "content": content,
            "author": author,
            "timestamp": datetime.now().isoformat(),
        }
        self._set_metadata("add_comment", cell_id, "comments", comments + [comment])
        self.notifier.success("Comment added")
        return comment

    @_guarded
    def add_tag(self, cell_id: str, tag: str) -> Optional[Cell]:
        tag = tag.strip()
        if not tag:
            self.notifier.error("Tag is required")
            return None
        tags = list(self.store.require_cell(cell_id).metadata.get("tags", []))
        cell = self._set_metadata("add_tag", cell_id, "tags", tags + [tag])
        self.notifier.success("Tag added")
        return cell

    @_guarded
    def set_sql_variable_name(self, cell_id: str, variable_name: str) -> Cell:
        """Name of the variable a SQL cell's result is bound to."""
        if variable_name and not variable_name.isidentifier():
            raise InvalidCommandError(f"Invalid variable name: {variable_name}")
        return self._set_metadata("set_sql_variable_name", cell_id, "sqlVariableName", variable_name or None)

    @_guarded
    def set_sql_connection(self, cell_id: str, connection: str) -> Cell:
        return self._set_metadata("set_sql_connection", cell_id, "sqlConnection", connection or None)
