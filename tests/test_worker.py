"""Tests for the standalone queue worker loop."""
import asyncio

import pytest
from unittest.mock import AsyncMock

from job_queue.job_queue import DrainResult
from job_queue.worker import QueueWorker
from models.schemas import JobType


def low_stock(product_id: str) -> dict:
    return {"product_id": product_id, "product_name": "Canvas", "current_stock": 1, "threshold": 3}


class TestQueueWorker:
    @pytest.mark.asyncio
    async def test_run_once_accumulates_totals(self, job_queue, processors):
        processors.fail_times[JobType.LOW_STOCK_ALERT] = 1
        for i in range(3):
            await job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock(f"p{i}"))
        worker = QueueWorker(job_queue, batch_size=2)

        first = await worker.run_once()
        second = await worker.run_once()

        assert (first.processed, first.failed) == (1, 1)
        assert (second.processed, second.failed) == (1, 0)
        assert worker.totals.to_dict() == {"processed": 2, "failed": 1}

    @pytest.mark.asyncio
    async def test_background_loop_drains_and_stops(self, job_queue, processors):
        for i in range(5):
            await job_queue.enqueue(JobType.LOW_STOCK_ALERT, low_stock(f"p{i}"))
        worker = QueueWorker(job_queue, batch_size=2, interval_seconds=30)

        await worker.start_background()
        assert worker.running
        for _ in range(50):
            if len(processors.calls) == 5:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert len(processors.calls) == 5
        assert not worker.running

    @pytest.mark.asyncio
    async def test_stop_interrupts_idle_wait(self, job_queue):
        worker = QueueWorker(job_queue, batch_size=10, interval_seconds=3600)
        await worker.start_background()
        await asyncio.sleep(0)

        await asyncio.wait_for(worker.stop(), timeout=1)
        assert not worker.running

    @pytest.mark.asyncio
    async def test_drain_errors_do_not_kill_the_loop(self, job_queue):
        outcomes = [ConnectionError("store down")]

        async def drain(batch_size):
            if outcomes:
                raise outcomes.pop()
            return DrainResult()

        job_queue.drain = AsyncMock(side_effect=drain)
        worker = QueueWorker(job_queue, batch_size=10, interval_seconds=0.01)

        await worker.start_background()
        for _ in range(50):
            if job_queue.drain.await_count >= 2:
                break
            await asyncio.sleep(0.01)
        await worker.stop()

        assert job_queue.drain.await_count >= 2
