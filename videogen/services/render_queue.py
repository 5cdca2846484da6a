"""Work queue feeding render jobs to a fixed pool of worker tasks."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RenderQueue(Generic[T]):
    """asyncio.Queue drained by ``worker_count`` tasks.

    Each worker runs one item at a time, so at most ``worker_count`` render
    processes are alive at once.
    """

    def __init__(self, worker_count: int = 2) -> None:
        self.worker_count = max(1, worker_count)
        self._queue: asyncio.Queue[T] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def start(self, handler: Callable[[T], Awaitable[object]]) -> None:
        """Spawn the worker tasks on the running event loop."""
        if self.running:
            return
        self._queue = asyncio.Queue()
        self._workers = [
            asyncio.create_task(self._worker(i, handler), name=f"render-worker-{i}")
            for i in range(self.worker_count)
        ]
        logger.info(f"Render queue started with {self.worker_count} worker(s)")

    async def put(self, item: T) -> None:
        if self._queue is None or not self.running:
            raise RuntimeError("Render queue is not running")
        await self._queue.put(item)

    async def join(self) -> None:
        """Wait until every queued item has been handled."""
        if self._queue is not None:
            await self._queue.join()

    def drain(self) -> list[T]:
        """Remove and return items that never reached a worker."""
        items: list[T] = []
        if self._queue is None:
            return items
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items
            self._queue.task_done()

    async def stop(self) -> list[T]:
        """Cancel workers and return the items left unstarted."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        leftovers = self.drain()
        logger.info(f"Render queue stopped ({len(leftovers)} item(s) not started)")
        return leftovers

    async def _worker(self, index: int, handler: Callable[[T], Awaitable[object]]) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.get()
            try:
                await handler(item)
            except asyncio.CancelledError:
                raise
            except Exception:
                # The handler records failures itself; keep the worker alive.
                logger.exception(f"render-worker-{index}: unhandled error")
            finally:
                self._queue.task_done()
