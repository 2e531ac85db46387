"""FIFO admission of checks under a global concurrency budget."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)


class BoundedScheduler:
    """Queues check requests and runs at most ``max_concurrent`` of them at once.

    Requests are admitted strictly in arrival order. Each admitted request runs
    as its own task; when it finishes, successfully or not, the budget slot is
    released and the queue is drained again.
    """

    def __init__(self, run_check: Callable[[int], Awaitable[object]], max_concurrent: int = 3):
        if max_concurrent < 0:
            raise ValueError("max_concurrent must be >= 0")
        self._run_check = run_check
        self.max_concurrent = int(max_concurrent)
        self._queue: deque[int] = deque()
        self._active = 0
        self._tasks: set[asyncio.Task] = set()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return len(self._queue)

    def pending_ids(self) -> list[int]:
        return list(self._queue)

    def enqueue(self, item_id: int) -> int:
        """Queue a check for ``item_id``; returns its position counting running checks."""
        self._queue.append(item_id)
        self._idle.clear()
        position = self._active + len(self._queue)
        if position > 1:
            logger.info(
                "Check queued",
                item_id=item_id,
                position=position,
                active=self._active,
                max_concurrent=self.max_concurrent,
            )
        self._dispatch()
        return position

    def _dispatch(self) -> None:
        while self._active < self.max_concurrent and self._queue:
            item_id = self._queue.popleft()
            self._active += 1
            task = asyncio.get_running_loop().create_task(self._run(item_id), name=f"check-{item_id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        if self._active == 0 and not self._queue:
            self._idle.set()

    async def _run(self, item_id: int) -> None:
        logger.debug("Check started", item_id=item_id, active=self._active)
        try:
            await self._run_check(item_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Check crashed", item_id=item_id, error=str(e))
        finally:
            self._active -= 1
            self._dispatch()

    async def wait_idle(self) -> None:
        """Wait until nothing is queued or running."""
        await self._idle.wait()

    async def shutdown(self) -> None:
        """Drop queued requests and cancel running checks."""
        self._queue.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._idle.set()
        logger.info("Check scheduler stopped", cancelled=len(tasks))
