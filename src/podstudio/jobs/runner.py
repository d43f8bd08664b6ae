"""In-process background runner for job polling.

Every submitted job gets its own ``asyncio`` task, so jobs proceed in
parallel no matter how long each one polls. The FastAPI lifespan starts and
stops the runner; request handlers only submit.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Set, Tuple

logger = logging.getLogger(__name__)

TaskItem = Tuple[str, Callable[..., Awaitable[Any]], tuple]


class JobRunner:
    """Runs each submitted coroutine function as an independent task."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._pending: List[TaskItem] = []
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    @property
    def active(self) -> int:
        return len(self._tasks)

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        pending, self._pending = self._pending, []
        for item in pending:
            self._spawn(item)
        logger.info("Job runner started (%d queued tasks)", len(pending))

    async def stop(self) -> None:
        self._started = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        logger.info("Job runner stopped")

    def submit(self, name: str, fn: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Schedule ``fn(*args)``; returns immediately."""
        item = (name, fn, args)
        if not self._started:
            # Not started yet: spawned on start().
            self._pending.append(item)
        else:
            self._spawn(item)
        logger.debug("Queued %s", name)

    async def join(self) -> None:
        """Wait until every running task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, item: TaskItem) -> None:
        name = item[0]
        task = asyncio.create_task(self._run(*item), name=f"podstudio-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, name: str, fn: Callable[..., Awaitable[Any]], args: tuple) -> None:
        try:
            await fn(*args)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Background task %s crashed", name)
