"""
Process wiring for the ingestion pipeline.

This module provides:
- Construction of the shared dependencies (engine, Redis, fetch stack, registry)
- An APScheduler-driven source scan for the `scheduler` process
- The worker process loop that runs the WorkerPool
- Graceful shutdown support
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..aggregator.fetcher import FetchClient
from ..aggregator.redirects import RedirectTracker
from ..aggregator.strategies import build_default_registry
from ..aggregator.throttle import DomainThrottle
from ..config import Settings
from ..db.cache import ResponseCache
from .handlers import IngestionDependencies, build_dispatcher
from .pool import SchedulerContext, WorkerPool
from .queue import JobStore
from .source_scheduler import SourceScheduler
from .types import JobName, TaskResult

LOGGER = logging.getLogger(__name__)

GATHER_SOURCES_JOB_ID = "gather-sources"


# -----------------------------------------------------------------------------
# Job Listener
# -----------------------------------------------------------------------------


def create_job_listener() -> Callable[[JobExecutionEvent], None]:
    """Create an APScheduler event listener that logs task outcomes."""

    def job_listener(event: JobExecutionEvent) -> None:
        job_id = event.job_id
        scheduled_time = event.scheduled_run_time

        if getattr(event, "exception", None):
            LOGGER.error(
                "Job %s failed at %s: %s",
                job_id,
                scheduled_time,
                event.exception,
                exc_info=event.exception,
            )
        elif hasattr(event, "retval"):
            result = event.retval
            if isinstance(result, TaskResult):
                status = "SUCCESS" if result.success else "FAILED"
                LOGGER.info(
                    "Job %s completed [%s] in %.2fs: %s",
                    job_id,
                    status,
                    result.duration_seconds,
                    result.message,
                )
            else:
                LOGGER.info("Job %s completed at %s", job_id, scheduled_time)
        else:
            LOGGER.warning("Job %s missed at %s", job_id, scheduled_time)

    return job_listener


# -----------------------------------------------------------------------------
# Dependencies
# -----------------------------------------------------------------------------


def build_dependencies(
    session_factory: async_sessionmaker[AsyncSession],
    redis_client: Redis,
    settings: Settings,
    *,
    fetcher: FetchClient | None = None,
) -> IngestionDependencies:
    """Wire every collaborator once; handlers receive the result explicitly."""

    throttle = DomainThrottle(
        redis_client,
        default_delay_seconds=settings.fetch.default_domain_delay_seconds,
        domain_delays=settings.fetch.domain_delays,
    )
    redirects = RedirectTracker(redis_client)
    if fetcher is None:
        fetcher = FetchClient(
            redirects=redirects,
            throttle=throttle,
            cache=ResponseCache(
                redis_client,
                stale_ttl_seconds=settings.fetch.cache_stale_ttl_seconds,
            ),
            timeout_seconds=settings.fetch.timeout_seconds,
            user_agent=settings.fetch.user_agent,
        )
    job_store = JobStore(session_factory, lease_seconds=settings.worker.lease_seconds)
    return IngestionDependencies(
        session_factory=session_factory,
        job_store=job_store,
        throttle=throttle,
        redirects=redirects,
        fetcher=fetcher,
        registry=build_default_registry(),
        source_scheduler=SourceScheduler(session_factory, job_store, settings.scheduler),
    )


@asynccontextmanager
async def create_ingestion_context(settings: Settings) -> AsyncIterator[IngestionDependencies]:
    """
    Create the engine, Redis client, and dependency set for one process.

    Yields:
        IngestionDependencies shared by the pool and the scheduler
    """
    engine = create_async_engine(
        str(settings.database.url),
        pool_size=settings.database.pool_size,
        echo=settings.database.echo,
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    redis_client = Redis.from_url(
        str(settings.redis.url),
        max_connections=settings.redis.max_connections,
        decode_responses=True,
    )
    deps: IngestionDependencies | None = None
    try:
        await redis_client.ping()
        LOGGER.info("Redis connection established")
        deps = build_dependencies(session_factory, redis_client, settings)
        LOGGER.info("Ingestion context initialized")
        yield deps
    finally:
        LOGGER.info("Cleaning up ingestion context...")
        if deps is not None:
            await deps.fetcher.aclose()
        await redis_client.aclose()  # type: ignore[attr-defined]
        await engine.dispose()
        LOGGER.info("Ingestion context cleaned up")


# -----------------------------------------------------------------------------
# Scheduler Factory
# -----------------------------------------------------------------------------


def create_scheduler(deps: IngestionDependencies, settings: Settings) -> AsyncIOScheduler:
    """Create an AsyncIOScheduler that runs the source scan on a fixed interval."""

    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_listener(
        create_job_listener(), EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED
    )

    interval = settings.scheduler.source_scan_interval_seconds
    scheduler.add_job(
        deps.source_scheduler.run_once,
        trigger=IntervalTrigger(seconds=interval),
        id="gather_sources",
        name="Gather Due Sources",
        replace_existing=True,
    )
    LOGGER.info("Registered job: gather_sources (every %d seconds)", interval)
    return scheduler


# -----------------------------------------------------------------------------
# Runners
# -----------------------------------------------------------------------------


async def _wait_forever() -> None:
    while True:
        await asyncio.sleep(1)


async def run_scheduler(settings: Settings) -> None:
    """Run the APScheduler-driven source scan in the foreground."""

    async with create_ingestion_context(settings) as deps:
        scheduler = create_scheduler(deps, settings)
        LOGGER.info("Starting scheduler...")
        scheduler.start()
        for job in scheduler.get_jobs():
            LOGGER.info("  - %s: %s", job.id, job.next_run_time)
        try:
            await _wait_forever()
        except asyncio.CancelledError:
            LOGGER.info("Scheduler cancelled, shutting down...")
        finally:
            if scheduler.running:
                scheduler.shutdown(wait=False)


async def run_worker(settings: Settings, context: SchedulerContext | None = None) -> None:
    """
    Run the worker pool until the context stops processing.

    Seeds the self-perpetuating GatherSources job; the unique general_id keeps
    concurrent workers from seeding it twice.
    """
    context = context or SchedulerContext()
    async with create_ingestion_context(settings) as deps:
        await deps.job_store.schedule(
            GATHER_SOURCES_JOB_ID,
            JobName.GATHER_SOURCES.value,
            every=settings.worker.gather_interval_seconds,
        )
        pool = WorkerPool(
            deps.job_store,
            build_dispatcher(deps),
            workers=settings.worker.concurrency,
            ack_mode=settings.worker.ack_mode,
            idle_sleep_seconds=settings.worker.idle_sleep_seconds,
        )
        await pool.start(context)
        try:
            await context.stop_event.wait()
        finally:
            LOGGER.info("Worker stopping, draining in-flight jobs...")
            await pool.stop(context)
            await pool.join()


__all__ = [
    "GATHER_SOURCES_JOB_ID",
    "build_dependencies",
    "create_ingestion_context",
    "create_job_listener",
    "create_scheduler",
    "run_scheduler",
    "run_worker",
]
