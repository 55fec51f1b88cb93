"""
ExecutionScheduler: drives cells through idle -> running -> success/error.
"""

import asyncio
import logging
import time
from typing import Any, Iterable, Optional

from notebook_session.errors import ExecutionRejected
from notebook_session.kernel import ExecutionContext, ExecutionResult, KernelStatus
from notebook_session.notebook import Cell, ExecutionMode
from notebook_session.notifications import Notifier
from notebook_session.session import SessionStore

logger = logging.getLogger("notebook_session.scheduler")


class ExecutionScheduler:
    """
    Runs cells against the session's current kernel.

    In sequential mode runs hold one lock, so a run never starts before the
    previous one settled; run-all depends on this for variable chaining. In
    parallel mode run-all and run-selected start every target at once and
    results land in completion order.

    Each interrupt bumps a generation counter. A run remembers the
    generation it started in and skips its queued cells once that changes,
    so runs started after an interrupt are unaffected by it.
    """

    def __init__(self, store: SessionStore, notifier: Optional[Notifier] = None):
        self.store = store
        self.notifier = notifier or Notifier()
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Future] = set()
        self._cancelled: set[asyncio.Future] = set()
        self._generation = 0

    @property
    def mode(self) -> ExecutionMode:
        return self.store.notebook.settings.execution_mode

    def check_runnable(self, cell_id: str) -> Cell:
        """Return the cell if it can run now, else raise ExecutionRejected."""
        cell = self.store.get_cell(cell_id)
        if cell is None:
            raise ExecutionRejected("Cell not found")
        if not cell.type.is_runnable:
            raise ExecutionRejected(f"Cannot execute a {cell.type.value} cell")
        if self.store.current_kernel is None:
            raise ExecutionRejected("No kernel available")
        return cell

    async def run_cell(self, cell_id: str) -> Optional[Cell]:
        """
        Run one cell.

        Returns the cell after it settled, or None when the run was rejected
        or skipped because of an interrupt.
        """
        return await self._run(cell_id, self._generation)

    async def run_all(self) -> list[Cell]:
        """Run every code cell in document order."""
        ids = [cell.id for cell in self.store.notebook.cells if cell.type.is_runnable]
        return await self._run_many(ids)

    async def run_selected(self) -> list[Cell]:
        """Run the selected code cells in document order, not selection order."""
        selected = self.store.state.selected_cell_ids
        ids = [
            cell.id for cell in self.store.notebook.cells
            if cell.id in selected and cell.type.is_runnable
        ]
        if not ids:
            self.notifier.warning("No runnable cells selected")
            return []
        return await self._run_many(ids)

    async def _run_many(self, cell_ids: Iterable[str]) -> list[Cell]:
        if self.store.current_kernel is None:
            self.notifier.warning("No kernel available")
            return []
        generation = self._generation

        if self.mode is ExecutionMode.PARALLEL:
            settled = await asyncio.gather(*(self._run(cell_id, generation) for cell_id in cell_ids))
            return [cell for cell in settled if cell is not None]

        settled = []
        for cell_id in cell_ids:
            if generation != self._generation:
                break
            cell = await self._run(cell_id, generation)
            if cell is not None:
                settled.append(cell)
        return settled

    async def _run(self, cell_id: str, generation: int) -> Optional[Cell]:
        try:
            self.check_runnable(cell_id)
        except ExecutionRejected as e:
            self.notifier.warning(str(e))
            return None

        if self.mode is ExecutionMode.SEQUENTIAL:
            async with self._lock:
                return await self._execute(cell_id, generation)
        return await self._execute(cell_id, generation)

    async def _execute(self, cell_id: str, generation: int) -> Optional[Cell]:
        if generation != self._generation:
            logger.info("Skipping cell %s after interrupt", cell_id)
            return None
        # State may have moved on while waiting for the lock.
        try:
            cell = self.check_runnable(cell_id)
        except ExecutionRejected as e:
            self.notifier.warning(str(e))
            return None

        kernel = self.store.current_kernel
        executor = self.store.registry.current_executor
        context = ExecutionContext(
            kernel_id=kernel.id,
            variables=dict(kernel.variables),
            data_sources=dict(self.store.state.data_sources),
        )

        self.store.begin_run(cell_id)
        logger.debug("Running cell %s on kernel %s", cell_id, kernel.id)
        start = time.monotonic()
        task = asyncio.ensure_future(executor.execute(cell.content, kernel.language, context))
        self._tasks.add(task)
        try:
            try:
                result = await task
            except asyncio.CancelledError:
                self.store.interrupt_run(cell_id)
                if task in self._cancelled:
                    logger.info("Cell %s interrupted", cell_id)
                    return self.store.get_cell(cell_id)
                raise
            except Exception as exc:  # noqa: BLE001
                logger.warning("Executor raised for cell %s: %s", cell_id, exc)
                result = ExecutionResult(
                    error=str(exc) or type(exc).__name__,
                    details={"ename": type(exc).__name__, "evalue": str(exc), "traceback": []},
                )

            elapsed_ms = int((time.monotonic() - start) * 1000)
            if result.success:
                settled = self.store.complete_run(cell_id, result, elapsed_ms)
                self.notifier.success(f"Cell executed in {elapsed_ms}ms")
            else:
                settled = self.store.fail_run(cell_id, result.error, result.details)
                self.notifier.error("Cell execution failed")
            return settled
        finally:
            self._tasks.discard(task)
            self._cancelled.discard(task)
            self.store.end_run(cell_id)

    def interrupt(self) -> int:
        """
        Cancel every in-flight run and skip queued ones.

        Interrupted cells end in the error state. Returns how many runs were
        cancelled.
        """
        self._generation += 1
        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            if task.cancel():
                self._cancelled.add(task)
        self.store.interrupt()
        self.notifier.success("Execution interrupted")
        return len(pending)

    def clear_outputs(self):
        self.store.clear_outputs()

    async def restart(self):
        """Interrupt, reset the kernel back-end and clear every output."""
        if self._tasks:
            self.interrupt()
        executor = self.store.registry.current_executor
        reset = getattr(executor, "reset", None)
        if callable(reset):
            if asyncio.iscoroutinefunction(reset):
                await reset()
            else:
                await asyncio.to_thread(reset)
        self.store.clear_kernel_variables()
        self.store.clear_outputs()
        self.store.set_kernel_status(KernelStatus.IDLE)

    async def shutdown(self):
        await self.restart()
        self.store.registry.deselect()
        self.store.set_kernel_status(KernelStatus.IDLE)

    def restore_variables(self, variables: dict[str, Any]):
        """Seed the current kernel with variables from a checkpoint."""
        self.store.restore_kernel_variables(variables)
