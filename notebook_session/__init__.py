"""
notebook-session: the core of a notebook editing session.

This package provides:
- An ordered cell collection (code, markdown, raw, sql) with stable ids
- An execution scheduler that runs cells against a pluggable kernel
- A session store for kernel status, execution counters and variables
- Debounced autosave, undo/redo and JSON import/export
"""

from notebook_session.commands import NotebookCommands
from notebook_session.kernel import ExecutionResult, IPythonExecutor, Kernel, KernelRegistry
from notebook_session.notebook import Cell, CellStatus, CellType, Notebook
from notebook_session.scheduler import ExecutionScheduler
from notebook_session.session import SessionStore

__version__ = "0.1.0"
__all__ = [
    "NotebookCommands",
    "ExecutionResult",
    "IPythonExecutor",
    "Kernel",
    "KernelRegistry",
    "Cell",
    "CellStatus",
    "CellType",
    "Notebook",
    "ExecutionScheduler",
    "SessionStore",
]
