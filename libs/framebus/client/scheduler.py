"""Named fire-and-forget timers and background tasks on the running loop.

Cancellation is advisory: callbacks are expected to check at fire time
whether their work is still relevant.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable, Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class TaskScheduler:
    """Keeps timer handles keyed by name and tracks spawned coroutines."""

    def __init__(self) -> None:
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._timers)

    def is_scheduled(self, key: str) -> bool:
        return key in self._timers

    def call_later(self, key: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        """Run `callback(*args)` after `delay` seconds, replacing any timer with the same key."""
        loop = asyncio.get_running_loop()
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = loop.call_later(delay, self._fire, key, callback, args)

    def cancel(self, key: str) -> bool:
        handle = self._timers.pop(key, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str | None = None) -> asyncio.Task:
        """Run a coroutine in the background, logging (not raising) its failure."""
        task = asyncio.ensure_future(coro)
        if name:
            task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def cancel_all(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def cancel_tasks(self) -> None:
        """Cancel spawned background tasks that are still running.

        The calling task is left alone, so a handler may close its own bus.
        """
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current:
                task.cancel()

    async def drain(self) -> None:
        """Wait for spawned background tasks to finish."""
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def _fire(self, key: str, callback: Callable[..., Any], args: tuple) -> None:
        self._timers.pop(key, None)
        try:
            result = callback(*args)
        except Exception:
            logger.exception("Scheduled task %s failed", key)
            return
        if inspect.isawaitable(result):
            self.spawn(result, name=key)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc, exc_info=exc)
