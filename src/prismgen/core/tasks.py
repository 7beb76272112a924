"""Background task tracking.

Fire-and-forget work (asset persistence, statistics updates, feedback
commits) runs as asyncio tasks owned by a :class:`TaskManager`. The manager
keeps a strong reference to every task until it finishes, logs exceptions
nobody awaited, and lets the session drain or cancel everything on shutdown.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TaskManager:
    """Owns the session's background tasks."""

    def __init__(self) -> None:
        self.background_tasks: set[asyncio.Task] = set()

    def create_task(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Schedule ``coro`` as a tracked background task."""
        task = asyncio.create_task(coro, name=name)
        self.background_tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self.background_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    @property
    def pending(self) -> int:
        return sum(1 for task in self.background_tasks if not task.done())

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for all current background tasks to finish.

        Tasks scheduled while draining are waited for as well.
        """
        while self.background_tasks:
            tasks = list(self.background_tasks)
            done, still_pending = await asyncio.wait(tasks, timeout=timeout)
            if still_pending:
                logger.warning(f"{len(still_pending)} background tasks still running")
                return
            self.background_tasks.difference_update(done)

    async def cancel_all(self) -> None:
        """Cancel every running task and wait for them to unwind."""
        for task in list(self.background_tasks):
            if not task.done():
                task.cancel()

        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)

        self.background_tasks.clear()
        logger.info("All background tasks cancelled")
