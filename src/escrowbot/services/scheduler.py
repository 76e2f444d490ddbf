"""Deferred task scheduler.

Runs delayed background coroutines on the event loop. Tasks carry only
identifiers and must re-read state when they fire, so running one late, twice,
or after the state moved on is harmless.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class DeferredTaskScheduler:
    """Keeps track of delayed tasks so they can be awaited or cancelled."""

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of tasks scheduled and not yet finished."""
        return len(self._tasks)

    def schedule(
        self,
        delay: float,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> Optional[asyncio.Task]:
        """Run ``func(*args)`` after ``delay`` seconds.

        Returns:
            The task, or None if the scheduler is shut down
        """
        if self._closed:
            logger.warning(f"Scheduler closed, dropping task {name}{args}")
            return None

        task = asyncio.create_task(self._run(delay, name, func, args), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug(f"Scheduled {name}{args} in {delay}s")
        return task

    async def _run(self, delay: float, name: str, func, args) -> None:
        try:
            await asyncio.sleep(delay)
            await func(*args)
        except asyncio.CancelledError:
            logger.debug(f"Deferred task {name}{args} cancelled")
            raise
        except Exception as e:
            logger.error(f"Deferred task {name}{args} failed: {e}", exc_info=True)

    async def wait_idle(self) -> None:
        """Wait until every scheduled task (including ones they schedule) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel outstanding tasks. Restart recovery picks up their work."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Cancelled {len(tasks)} deferred task(s)")
