"""Background task queue for work callers should not wait on."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class BackgroundTaskQueue:
    """FIFO queue drained by a fixed number of asyncio workers."""

    def __init__(self, workers: int = 1):
        self._queue: asyncio.Queue[tuple[str, Job]] = asyncio.Queue()
        self._worker_count = max(1, workers)
        self._workers: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        if self._workers:
            return
        for index in range(self._worker_count):
            self._workers.append(
                asyncio.create_task(self._worker(), name=f"background-worker-{index}")
            )

    async def stop(self) -> None:
        """Cancel the workers; queued jobs that never started are discarded."""

        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        for worker in workers:
            with suppress(asyncio.CancelledError):
                await worker

    def submit(self, name: str, job: Job) -> None:
        logger.debug("Queued background job %s", name)
        self._queue.put_nowait((name, job))

    async def join(self) -> None:
        """Wait until every submitted job has finished."""

        await self._queue.join()

    async def _worker(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await job()
            except Exception as exc:  # pragma: no cover - background safety net
                logger.exception("Background job %s failed: %s", name, exc)
            finally:
                self._queue.task_done()
