"""In-process job queue using asyncio.

A fixed number of worker tasks drain a queue of job ids, so at most
``concurrency`` backend processes run at once. Jobs waiting for a free worker
stay ``queued`` in the store.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List

from renderbridge.jobs.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class InProcessQueue(JobDispatcher):
    """Local bounded worker pool."""

    def __init__(self, worker_fn: Callable[[str], Awaitable], concurrency: int = 2):
        """
        worker_fn: async callable(job_id)
            Runs one job to completion. Exceptions are logged and do not
            stop the worker.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()
        self._worker_fn = worker_fn
        self._concurrency = concurrency
        self._tasks: List[asyncio.Task] = []
        self._active = 0

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def active(self) -> int:
        return self._active

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def submit(self, job_id: str) -> None:
        self._queue.put_nowait(job_id)

    async def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"render-worker-{i}")
            for i in range(self._concurrency)
        ]
        logger.info("Started %d render worker(s)", self._concurrency)

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._queue.qsize():
            logger.warning("Stopped with %d job(s) still queued", self._queue.qsize())

    async def join(self) -> None:
        """Wait until every submitted job has been processed."""
        await self._queue.join()

    async def _worker_loop(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            self._active += 1
            try:
                await self._worker_fn(job_id)
            except Exception:
                logger.exception("Worker %d: job %s raised", index, job_id)
            finally:
                self._active -= 1
                self._queue.task_done()
