"""
Queue Worker — standalone drain loop for long-lived deployments.

Where a scheduler (cron hitting POST /api/v1/queue/drain) is not available,
the worker calls drain() on a fixed interval. A full batch means more work
is probably waiting, so the next drain runs immediately instead of sleeping.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from job_queue.job_queue import DrainResult, JobQueue

logger = structlog.get_logger()


class QueueWorker:
    """
    Usage:
        worker = QueueWorker(queue, batch_size=10, interval_seconds=30)
        await worker.start_background()
        ...
        await worker.stop()
    """

    def __init__(self, queue: JobQueue, batch_size: int = 10, interval_seconds: float = 30.0):
        self.queue = queue
        self.batch_size = batch_size
        self.interval = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self.totals = DrainResult()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> DrainResult:
        result = await self.queue.drain(self.batch_size)
        self.totals.processed += result.processed
        self.totals.failed += result.failed
        return result

    async def start_background(self) -> asyncio.Task:
        self._stopping.clear()
        self._task = asyncio.create_task(self._run())
        return self._task

    async def stop(self) -> None:
        """Let the in-flight drain finish, then exit the loop."""
        self._stopping.set()
        if self._task:
            await self._task
            self._task = None
        logger.info("queue_worker_stopped", **self.totals.to_dict())

    async def _run(self) -> None:
        logger.info("queue_worker_started",
                    queue=self.queue.queue_name,
                    batch_size=self.batch_size,
                    interval=self.interval)
        while not self._stopping.is_set():
            try:
                result = await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("queue_worker_drain_error", error=str(e), exc_info=True)
                result = DrainResult()

            if result.processed + result.failed >= self.batch_size:
                continue
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
