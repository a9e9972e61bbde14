"""
In-process background task queue.

Jobs are coroutine functions run by a fixed pool of workers. A failed job is
logged and kept in a bounded dead-letter deque; it is never retried.
"""
import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

Job = Tuple[str, Callable[..., Awaitable[Any]], tuple, dict]


class BackgroundTaskQueue:
    """Bounded queue drained by ``concurrency`` workers"""

    def __init__(self, concurrency: int = 2, maxsize: int = 1000, dead_letter_size: int = 100):
        self.concurrency = max(1, concurrency)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._workers: List[asyncio.Task] = []
        self._running = False
        self.dead_letters: Deque[Dict[str, Any]] = deque(maxlen=dead_letter_size)
        self.completed = 0

    @property
    def running(self) -> bool:
        return self._running

    def submit(self, name: str, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> bool:
        """Enqueue a job without waiting; a full queue dead-letters it"""
        try:
            self._queue.put_nowait((name, func, args, kwargs))
            return True
        except asyncio.QueueFull:
            logger.error("Task queue full, dropping job %s", name)
            self._dead_letter(name, "queue full")
            return False

    async def start(self) -> None:
        if self._running:
            logger.warning("Task queue is already running")
            return

        self._running = True
        self._workers = [
            asyncio.create_task(self._worker(i)) for i in range(self.concurrency)
        ]
        logger.info("Task queue started with %d workers", self.concurrency)

    async def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._workers = []
        logger.info("Task queue stopped (%d jobs pending)", self._queue.qsize())

    async def join(self) -> None:
        """Wait until every submitted job has been processed"""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            name, func, args, kwargs = await self._queue.get()
            try:
                await func(*args, **kwargs)
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception("Background job %s failed on worker %d", name, index)
                self._dead_letter(name, str(e))
            finally:
                self._queue.task_done()

    def _dead_letter(self, name: str, error: str) -> None:
        self.dead_letters.append({
            "job": name,
            "error": error,
            "failed_at": datetime.utcnow(),
        })

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "workers": len(self._workers),
            "queue_size": self._queue.qsize(),
            "completed": self.completed,
            "dead_letters": len(self.dead_letters),
        }
