"""
AutosaveBridge: debounced hand-off of the notebook to a save callback.
"""

import asyncio
import inspect
import logging
from typing import Optional

from notebook_session.notifications import Notifier
from notebook_session.persistence import SaveCallback
from notebook_session.session import Change, SessionState, SessionStore

logger = logging.getLogger("notebook_session.autosave")

DEFAULT_DELAY = 2.0


class AutosaveBridge:
    """
    Saves the notebook once edits have been quiet for ``delay`` seconds.

    Every notebook change restarts the timer, so nothing is saved while
    edits keep coming. Save failures become error notifications; the
    in-memory notebook is never rolled back. Changes made while no event
    loop is running only mark the notebook dirty; ``flush()`` saves them.
    """

    def __init__(
        self,
        store: SessionStore,
        save: SaveCallback,
        notifier: Optional[Notifier] = None,
        delay: float = DEFAULT_DELAY,
    ):
        self.store = store
        self.save = save
        self.notifier = notifier or Notifier()
        self.delay = delay
        self.save_count = 0
        self.dirty = False
        self._pending: Optional[asyncio.Task] = None
        self._unsubscribe = store.subscribe(self._on_change)

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def _on_change(self, state: SessionState, change: Change):
        if change.kind != "notebook":
            return
        if not state.notebook.settings.auto_save:
            return
        self.schedule()

    def schedule(self):
        """(Re)start the quiet-period timer."""
        self.cancel()
        self.dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, autosave deferred until flush")
            return
        self._pending = loop.create_task(self._save_later())

    def cancel(self):
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = None

    async def _save_later(self):
        await asyncio.sleep(self.delay)
        self._pending = None
        await self._save()

    async def _save(self) -> bool:
        notebook = self.store.notebook
        try:
            result = self.save(notebook)
            if inspect.isawaitable(result):
                await result
        except Exception as e:  # noqa: BLE001
            logger.error("Autosave of notebook %s failed: %s", notebook.id, e)
            self.notifier.error(f"Autosave failed: {e}")
            return False
        self.dirty = False
        self.save_count += 1
        logger.debug("Autosaved notebook %s", notebook.id)
        return True

    async def flush(self) -> bool:
        """Save now if there are unsaved changes. Returns whether a save happened."""
        if not self.dirty:
            return False
        self.cancel()
        return await self._save()

    def close(self):
        """Drop any pending save and stop listening to the store."""
        self.cancel()
        self.dirty = False
        self._unsubscribe()
