"""Pytest fixtures shared across all test modules."""

import asyncio
import time

import pytest

from notebook_session.commands import NotebookCommands
from notebook_session.kernel import ExecutionResult, Kernel, KernelRegistry
from notebook_session.notebook import Cell, CellType, Notebook
from notebook_session.notifications import Notifier
from notebook_session.scheduler import ExecutionScheduler
from notebook_session.session import SessionStore


class FakeExecutor:
    """
    Executor double with per-content delays.

    ``x = 1`` style content reports ``x`` as a variable; content listed in
    ``errors`` fails, and content starting with ``raise`` makes the executor
    itself raise.
    """

    def __init__(self, delays=None, errors=None):
        self.delays = delays or {}
        self.errors = errors or {}
        self.calls: list[str] = []
        self.completed: list[str] = []
        self.contexts = []
        self.started_at: dict[str, float] = {}
        self.finished_at: dict[str, float] = {}
        self.active = 0
        self.max_active = 0
        self.resets = 0

    async def execute(self, content, language, context):
        self.calls.append(content)
        self.contexts.append(context)
        self.started_at[content] = time.monotonic()
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(content, 0))
        finally:
            self.active -= 1
        self.finished_at[content] = time.monotonic()
        self.completed.append(content)

        if content.startswith("raise"):
            raise RuntimeError("executor crashed")
        if content in self.errors:
            message = self.errors[content]
            return ExecutionResult(
                error=message,
                details={"ename": "Error", "evalue": message, "traceback": []},
            )

        variables = {}
        if "=" in content:
            name, value = content.split("=", 1)
            variables[name.strip()] = value.strip()
        return ExecutionResult(output=f"ran {content}", variables=variables)

    def reset(self):
        self.resets += 1


def add_cells(store: SessionStore, *contents: str, cell_type: CellType = CellType.CODE) -> list[Cell]:
    """Append cells holding ``contents`` and return them."""
    return [store.insert_cell(Cell(type=cell_type, content=content)) for content in contents]


@pytest.fixture
def executor():
    return FakeExecutor()


@pytest.fixture
def registry(executor):
    registry = KernelRegistry()
    registry.register(Kernel(id="fake", name="Fake Python"), executor)
    registry.select("fake")
    return registry


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def store(registry):
    return SessionStore(Notebook.new("Test"), registry=registry)


@pytest.fixture
def scheduler(store, notifier):
    return ExecutionScheduler(store, notifier)


@pytest.fixture
def commands(store, scheduler, notifier):
    return NotebookCommands(store, scheduler, notifier)
