"""Tracked background tasks.

Downloads and summaries outlive the request that started them. Every one is
registered here under a name so it can be awaited, cancelled on shutdown, and
so its exceptions are logged instead of vanishing with a dropped task.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TaskRegistry:
    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, name: str, coro: Awaitable[Any],
              on_error: Optional[Callable[[BaseException], None]] = None) -> asyncio.Task:
        """Starts coro under name. While a task of that name is still running it is
        returned instead and coro is discarded."""
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            logger.debug(f"Background task {name} already running")
            coro.close()
            return existing
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task

        def _finished(t: asyncio.Task):
            if self._tasks.get(name) is t:
                del self._tasks[name]
            if t.cancelled():
                logger.debug(f"Background task {name} cancelled")
                return
            exc = t.exception()
            if exc is None:
                return
            if on_error:
                try:
                    on_error(exc)
                except Exception:
                    logger.exception(f"Error in on_error callback for task {name}")
            logger.error(f"Background task {name} failed", exc_info=exc)

        task.add_done_callback(_finished)
        return task

    def get(self, name: str) -> Optional[asyncio.Task]:
        return self._tasks.get(name)

    def active(self) -> Dict[str, asyncio.Task]:
        return dict(self._tasks)

    async def wait(self, name: str):
        """Waits for a named task if it is still running. Its errors are not re-raised."""
        task = self._tasks.get(name)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def join(self):
        while self._tasks:
            await asyncio.gather(*self._tasks.values(), return_exceptions=True)

    async def cancel_all(self):
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
