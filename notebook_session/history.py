"""
EditHistory: undo/redo as a log of inverse mutation pairs.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("notebook_session.history")

MAX_HISTORY = 50


@dataclass
class Edit:
    """
    One undoable command.

    ``undo`` reverts the mutation and ``redo`` applies it again. ``key``
    lets consecutive edits of the same kind coalesce, e.g. keystrokes in a
    single cell.
    """
    label: str
    undo: Callable[[], None]
    redo: Callable[[], None]
    key: Optional[str] = None


class EditHistory:
    """Bounded undo/redo stack. Recording a new edit drops the redo tail."""

    def __init__(self, limit: int = MAX_HISTORY):
        self.limit = limit
        self._done: list[Edit] = []
        self._undone: list[Edit] = []

    @property
    def can_undo(self) -> bool:
        return bool(self._done)

    @property
    def can_redo(self) -> bool:
        return bool(self._undone)

    def __len__(self) -> int:
        return len(self._done)

    def record(self, edit: Edit):
        """Push an edit that has already been applied."""
        self._undone.clear()
        last = self._done[-1] if self._done else None
        if edit.key is not None and last is not None and last.key == edit.key:
            # keep the oldest undo, take the newest redo
            self._done[-1] = Edit(label=last.label, undo=last.undo, redo=edit.redo, key=last.key)
            return
        self._done.append(edit)
        if len(self._done) > self.limit:
            self._done.pop(0)

    def undo(self) -> Optional[Edit]:
        if not self._done:
            return None
        edit = self._done.pop()
        edit.undo()
        self._undone.append(edit)
        logger.debug("Undid %s", edit.label)
        return edit

    def redo(self) -> Optional[Edit]:
        if not self._undone:
            return None
        edit = self._undone.pop()
        edit.redo()
        self._done.append(edit)
        logger.debug("Redid %s", edit.label)
        return edit

    def seal(self):
        """Stop the last edit from absorbing the next one."""
        if self._done and self._done[-1].key is not None:
            last = self._done[-1]
            self._done[-1] = Edit(label=last.label, undo=last.undo, redo=last.redo)

    def clear(self):
        self._done.clear()
        self._undone.clear()
