"""
Producer/consumer execution engine for queued jobs.

One producer keeps an in-memory deque of claimed jobs topped up; N consumers
pop from it and run the dispatcher. Stopping only prevents new claims:
consumers finish in-flight handlers and drain whatever is already buffered,
since those rows are already gone from the store in claim mode.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from .handlers import JobDispatcher
from .queue import JobStore
from .types import QueuedJob

LOGGER = logging.getLogger(__name__)

MIN_BACKOFF_SECONDS = 0.1
MAX_BACKOFF_SECONDS = 5.0


@dataclass
class SchedulerContext:
    """Processing switch handed to a pool; each pool instance gets its own."""

    processing: bool = False
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)

    def start_processing(self) -> None:
        self.processing = True
        self.stop_event.clear()

    def stop_processing(self) -> None:
        self.processing = False
        self.stop_event.set()

    async def sleep(self, seconds: float) -> None:
        """Sleep for `seconds`, waking early when processing is stopped."""

        try:
            await asyncio.wait_for(self.stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


@dataclass
class PoolStats:
    claimed: int = 0
    processed: int = 0
    failed: int = 0


class WorkerPool:
    """Runs jobs from a JobStore through a JobDispatcher."""

    def __init__(
        self,
        job_store: JobStore,
        dispatcher: JobDispatcher,
        *,
        workers: int = 25,
        ack_mode: Literal["claim", "complete"] = "claim",
        idle_sleep_seconds: float = 0.1,
        min_backoff_seconds: float = MIN_BACKOFF_SECONDS,
        max_backoff_seconds: float = MAX_BACKOFF_SECONDS,
    ) -> None:
        if workers <= 0:
            raise ValueError("workers must be positive.")
        self._job_store = job_store
        self._dispatcher = dispatcher
        self._workers = workers
        self._ack_mode = ack_mode
        self._idle_sleep = idle_sleep_seconds
        self._min_backoff = min_backoff_seconds
        self._max_backoff = max_backoff_seconds
        self._buffer: deque[QueuedJob] = deque()
        self._producer: asyncio.Task[None] | None = None
        self._consumers: list[asyncio.Task[None]] = []
        self.stats = PoolStats()

    @property
    def low_water_mark(self) -> int:
        return max(3, self._workers // 2)

    @property
    def batch_size(self) -> int:
        return max(5, self._workers * 2)

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def running(self) -> bool:
        return self._producer is not None and not self._producer.done()

    async def start(self, context: SchedulerContext) -> None:
        if self.running:
            raise RuntimeError("Worker pool is already running.")
        context.start_processing()
        LOGGER.info(
            "Starting worker pool: %d consumer(s), batch %d, low-water %d, ack mode %s.",
            self._workers,
            self.batch_size,
            self.low_water_mark,
            self._ack_mode,
        )
        self._producer = asyncio.create_task(self._produce(context), name="job-producer")
        self._consumers = [
            asyncio.create_task(self._consume(index), name=f"job-consumer-{index}")
            for index in range(self._workers)
        ]

    async def stop(self, context: SchedulerContext) -> None:
        """Stop claiming new jobs; in-flight and buffered jobs still run."""

        context.stop_processing()
        LOGGER.info("Worker pool stop requested; draining %d buffered job(s).", len(self._buffer))

    async def join(self) -> None:
        tasks = [task for task in (self._producer, *self._consumers) if task is not None]
        if tasks:
            await asyncio.gather(*tasks)
        self._producer = None
        self._consumers = []
        LOGGER.info(
            "Worker pool stopped: %d claimed, %d processed, %d failed.",
            self.stats.claimed,
            self.stats.processed,
            self.stats.failed,
        )

    async def _claim(self) -> list[QueuedJob]:
        if self._ack_mode == "complete":
            return await self._job_store.lease_batch(self.batch_size)
        return await self._job_store.claim_batch(self.batch_size)

    async def _produce(self, context: SchedulerContext) -> None:
        backoff = self._min_backoff
        while context.processing:
            if len(self._buffer) >= self.low_water_mark:
                await context.sleep(self._idle_sleep)
                continue
            try:
                jobs = await self._claim()
            except Exception:
                LOGGER.exception("Claiming jobs failed; backing off %.1fs.", backoff)
                await context.sleep(backoff)
                backoff = min(backoff * 2, self._max_backoff)
                continue
            if not jobs:
                await context.sleep(backoff)
                backoff = min(backoff * 2, self._max_backoff)
                continue
            backoff = self._min_backoff
            self.stats.claimed += len(jobs)
            self._buffer.extend(jobs)

    async def _consume(self, index: int) -> None:
        while True:
            if not self._buffer:
                if self._producer is None or self._producer.done():
                    return
                await asyncio.sleep(self._idle_sleep)
                continue
            job = self._buffer.popleft()
            await self._run(job, index)

    async def _run(self, job: QueuedJob, index: int) -> None:
        try:
            await self._dispatcher.dispatch(job)
            self.stats.processed += 1
        except Exception:
            self.stats.failed += 1
            LOGGER.exception("Consumer %d: job %s (%s) failed.", index, job.id, job.general_id)
        if self._ack_mode != "complete":
            return
        try:
            await self._job_store.complete(job)
        except Exception:
            LOGGER.exception("Consumer %d: completing job %s failed.", index, job.id)


__all__ = ["PoolStats", "SchedulerContext", "WorkerPool"]
