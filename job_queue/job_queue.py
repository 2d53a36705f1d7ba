"""
Durable Job Queue — at-least-once delivery of Job records over a shared list.

Store topology (all keys derive from the queue name):
  <queue>          — active list; producers LPUSH at the head, drain RPOPs the tail
  <queue>_delayed  — sorted set of jobs waiting for their retry time (score = epoch)
  <queue>_failed   — dead-letter list, appended to and never replayed automatically

Lifecycle of a job:

  enqueue ──▶ <queue> ──drain──▶ dispatch ──ok──▶ discarded
                 ▲                   │
                 │ promote           │ error, retries <= max_retries
                 │ (due)             ▼
            <queue>_delayed ◀────────┘
                                     │ error, retries > max_retries
                                     ▼
                              <queue>_failed

Retry times are persisted in the delayed set rather than held in a timer,
so a retry survives the process exiting. drain() promotes due retries
before popping.
"""
from __future__ import annotations

import json
import time
import structlog
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from pydantic import BaseModel, ValidationError

from core.errors import MalformedJobError
from job_queue.dispatch import JobDispatcher
from job_queue.store import KeyValueStore
from models.schemas import DeadLetterRecord, Job, JobType

logger = structlog.get_logger()

DEFAULT_QUEUE_NAME = "nextecom_tasks"


@dataclass
class DrainResult:
    processed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass
class QueueStats:
    pending: int = 0
    delayed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class JobQueue:
    """
    Usage:
        queue = JobQueue(store, dispatcher)
        job_id = await queue.enqueue(JobType.LOW_STOCK_ALERT, {...})
        result = await queue.drain(batch_size=10)     # from a scheduler
    """

    def __init__(
        self,
        store: KeyValueStore,
        dispatcher: JobDispatcher,
        queue_name: str = DEFAULT_QUEUE_NAME,
        max_retries: int = 3,
        retry_delay_seconds: float = 5.0,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.queue_name = queue_name
        self.max_retries = max_retries
        self.retry_delay_seconds = retry_delay_seconds
        self._clock = clock

    @property
    def failed_key(self) -> str:
        return f"{self.queue_name}_failed"

    @property
    def delayed_key(self) -> str:
        return f"{self.queue_name}_delayed"

    async def connect(self) -> None:
        """Verify the store is reachable. Startup fails loudly when it is not."""
        await self.store.connect()
        logger.info("job_queue_connected", queue=self.queue_name)

    async def close(self) -> None:
        await self.store.close()

    # ── Producer side ─────────────────────────────────────────

    async def enqueue(
        self,
        job_type: JobType,
        payload: BaseModel | dict[str, Any],
        max_retries: Optional[int] = None,
    ) -> str:
        """Tag, serialize, and push a job to the head of the list. Returns its id."""
        job = Job.create(
            job_type,
            payload,
            max_retries=self.max_retries if max_retries is None else max_retries,
        )
        await self.store.lpush(self.queue_name, job.to_json())
        logger.info("job_enqueued",
                    job_id=job.id,
                    type=job.type.value,
                    queue=self.queue_name)
        return job.id

    # ── Consumer side ─────────────────────────────────────────

    async def drain(self, batch_size: int = 10) -> DrainResult:
        """
        Pop and execute up to ``batch_size`` jobs, oldest first, one at a time.
        Stops early when the list is empty.
        """
        result = DrainResult()
        await self.promote_due_retries()

        for _ in range(batch_size):
            raw = await self.store.rpop(self.queue_name)
            if raw is None:
                break

            try:
                job = Job.from_raw(raw)
            except (ValueError, ValidationError) as e:
                result.failed += 1
                await self._quarantine_malformed(raw, e)
                continue

            try:
                await self.dispatcher.dispatch(job)
            except Exception as e:
                result.failed += 1
                await self._handle_failure(job, e)
                continue

            result.processed += 1
            logger.info("job_processed",
                        job_id=job.id,
                        type=job.type.value,
                        retries=job.retries)

        if result.processed or result.failed:
            logger.info("batch_processing_completed",
                        queue=self.queue_name,
                        **result.to_dict())
        return result

    async def promote_due_retries(self) -> int:
        """Move delayed retries whose time has come onto the active list."""
        now = self._clock()
        ready = await self.store.zrangebyscore(self.delayed_key, 0, now)
        promoted = 0
        for member in ready:
            # ZREM decides the winner when two drains race on the same retry.
            if not await self.store.zrem(self.delayed_key, member):
                continue
            await self.store.lpush(self.queue_name, member)
            promoted += 1

        if promoted:
            logger.info("delayed_jobs_promoted", queue=self.queue_name, count=promoted)
        return promoted

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        job.retries += 1
        message = str(error) or type(error).__name__

        try:
            if not job.exhausted:
                retry_at = self._clock() + self.retry_delay_seconds
                job.retry_after = datetime.fromtimestamp(retry_at, tz=timezone.utc)
                await self.store.zadd(self.delayed_key, job.to_json(), retry_at)
                logger.warning("job_retry_scheduled",
                               job_id=job.id,
                               type=job.type.value,
                               retries=job.retries,
                               max_retries=job.max_retries,
                               retry_after=job.retry_after.isoformat(),
                               error=message)
                return

            record = DeadLetterRecord(job=job, error=message)
            await self.store.lpush(self.failed_key, record.to_json())
            logger.error("job_failed_permanently",
                         job_id=job.id,
                         type=job.type.value,
                         retries=job.retries,
                         max_retries=job.max_retries,
                         error=message)
        except Exception as store_error:
            # The job is only in memory now; log it whole so it can be recovered.
            logger.error("job_requeue_failed",
                         job_id=job.id,
                         type=job.type.value,
                         job=job.to_json(),
                         error=str(store_error))
            raise

    async def _quarantine_malformed(self, raw: Any, error: Exception) -> None:
        if isinstance(raw, bytes):
            text = raw.decode("utf-8", "replace")
        elif isinstance(raw, str):
            text = raw
        else:
            text = json.dumps(raw, default=str)
        malformed = MalformedJobError(f"Undecodable job record: {error}", raw=text)
        record = DeadLetterRecord(raw=text, error=str(malformed))
        await self.store.lpush(self.failed_key, record.to_json())
        logger.error("job_record_malformed",
                     queue=self.queue_name,
                     raw=text[:500],
                     error=str(error))

    # ── Operator side ─────────────────────────────────────────

    async def stats(self) -> QueueStats:
        return QueueStats(
            pending=await self.store.llen(self.queue_name),
            delayed=await self.store.zcard(self.delayed_key),
            failed=await self.store.llen(self.failed_key),
        )

    async def peek(self, count: int = 10) -> list[Job]:
        """The next ``count`` pending jobs in drain order, without removing them."""
        if count <= 0:
            return []
        raw_items = await self.store.lrange(self.queue_name, -count, -1)
        jobs = []
        for raw in reversed(raw_items):
            try:
                jobs.append(Job.from_raw(raw))
            except (ValueError, ValidationError):
                logger.warning("peek_skipped_malformed", queue=self.queue_name)
        return jobs

    async def list_dead_letters(self, limit: int = 50) -> list[DeadLetterRecord]:
        """Most recent dead-letter records first."""
        if limit <= 0:
            return []
        raw_items = await self.store.lrange(self.failed_key, 0, limit - 1)
        records = []
        for raw in raw_items:
            try:
                records.append(DeadLetterRecord.from_raw(raw))
            except (ValueError, ValidationError) as e:
                logger.warning("dead_letter_unreadable", error=str(e))
        return records

    async def clear_dead_letters(self) -> int:
        count = await self.store.llen(self.failed_key)
        await self.store.delete(self.failed_key)
        logger.info("dead_letters_cleared", queue=self.queue_name, count=count)
        return count

    async def replay_dead_letters(self, limit: Optional[int] = None) -> int:
        """
        Operator action: move dead-lettered jobs back onto the active list with
        a fresh retry budget. Malformed records cannot be replayed and are kept.
        A store failure mid-replay puts every popped record back on the
        dead-letter list before the error propagates.
        """
        total = await self.store.llen(self.failed_key)
        to_scan = total if limit is None else min(limit, total)
        replayed = 0
        kept: list[Any] = []

        try:
            for _ in range(to_scan):
                raw = await self.store.rpop(self.failed_key)
                if raw is None:
                    break
                try:
                    record = DeadLetterRecord.from_raw(raw)
                except (ValueError, ValidationError):
                    kept.append(raw)
                    continue
                if not record.replayable:
                    kept.append(raw)
                    continue

                job = record.job
                job.retries = 0
                job.retry_after = None
                try:
                    await self.store.lpush(self.queue_name, job.to_json())
                except Exception:
                    kept.append(raw)
                    raise
                replayed += 1
                logger.info("dead_letter_replayed", job_id=job.id, type=job.type.value)
        finally:
            for raw in kept:
                await self.store.lpush(self.failed_key, raw)

        logger.info("dead_letter_replay_complete",
                    queue=self.queue_name,
                    replayed=replayed,
                    kept=len(kept))
        return replayed
