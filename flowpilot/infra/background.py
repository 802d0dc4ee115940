"""
Fire-and-forget task tracking.

Side effects (notifications, artifact export, distribution) run as
independent tasks spawned after the state transition they report on has been
committed. Their failures are logged and never reach the caller.
"""

import asyncio
import logging
from typing import Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Keeps strong references to spawned tasks until they finish."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                f"Background task {task.get_name()} failed: {exc}",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for every task currently running (tasks spawned meanwhile included)."""
        while self._tasks:
            pending = set(self._tasks)
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                logger.warning(f"{len(not_done)} background task(s) still running after {timeout}s")
                return

    async def cancel_all(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
