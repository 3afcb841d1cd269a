"""
Job handlers and the dispatcher that routes queued jobs to them.

Every per-job failure is caught at the handler boundary and turned into
source bookkeeping plus a log line; nothing propagates into the worker pool
except errors raised while recording that bookkeeping.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..aggregator.exceptions import FetchError, ParseError, RateLimitedError
from ..aggregator.fetcher import FetchClient
from ..aggregator.redirects import RedirectTracker
from ..aggregator.strategies import SourceRef, StrategyRegistry
from ..aggregator.throttle import DomainThrottle, domain_of
from ..db.repositories import ArticleRepository, SourceRepository
from ..db.repositories.source import FAILURE_KIND_FETCH, FAILURE_KIND_PARSE
from .queue import JobStore
from .source_scheduler import SourceScheduler
from .types import JobName, QueuedJob, TaskResult

LOGGER = logging.getLogger(__name__)

JobHandler = Callable[[QueuedJob], Awaitable[Any]]


class ParseOutcome(str, Enum):
    MISSING = "missing"
    SKIPPED = "skipped"
    CACHED = "cached"
    SUCCESS = "success"
    DEFERRED = "deferred"
    FAILED = "failed"


@dataclass(slots=True)
class IngestionDependencies:
    """Collaborators built once at process start and passed to handlers."""

    session_factory: async_sessionmaker[AsyncSession]
    job_store: JobStore
    throttle: DomainThrottle
    redirects: RedirectTracker
    fetcher: FetchClient
    registry: StrategyRegistry
    source_scheduler: SourceScheduler


def _describe(exc: BaseException) -> str:
    message = f"{type(exc).__name__}: {exc}"
    context = getattr(exc, "context", None)
    if context:
        details = ", ".join(f"{key}={value}" for key, value in context.items())
        message = f"{message} ({details})"
    return message


class ParseSourceHandler:
    """Fetches one source, parses it, and records the outcome."""

    def __init__(self, deps: IngestionDependencies) -> None:
        self._deps = deps

    async def __call__(self, job: QueuedJob) -> ParseOutcome:
        payload = job.payload
        try:
            source_id = int(payload["sourceId"])
        except (KeyError, TypeError, ValueError):
            LOGGER.warning("Job %s carries no usable sourceId: %r", job.general_id, payload)
            return ParseOutcome.MISSING
        skip_cache = bool(payload.get("skipCache", False))

        async with self._deps.session_factory() as session:
            source = await SourceRepository(session).get(source_id)
            if source is None:
                LOGGER.warning("Source %s not found, dropping job %s.", source_id, job.general_id)
                return ParseOutcome.MISSING
            source_url = source.url
            preference = source.strategy_type

        deps = self._deps
        candidate = deps.registry.resolve(source_url, preference)
        strategy = candidate.strategy
        preferred = None if candidate.is_fallback else strategy

        target = await deps.redirects.resolve_url(strategy.request_url(source_url))
        domain = domain_of(target)
        policy = strategy.rate_limit_policy()
        throttle_key = strategy.name.value if policy is not None else None
        if not await deps.throttle.try_acquire(domain, throttle_key, policy):
            LOGGER.debug("Skipping source %s: domain %s fetched too recently.", source_id, domain)
            return ParseOutcome.SKIPPED

        now = deps.throttle.now()
        try:
            response = await deps.fetcher.fetch(
                target,
                headers=strategy.request_headers(target),
                force_refresh=skip_cache,
            )
            if response.cached and not skip_cache:
                LOGGER.debug("%s was cached.", source_url)
                await self._record_success(source_id, now=now, cached=True)
                return ParseOutcome.CACHED

            used, result = await deps.registry.parse(
                response,
                SourceRef(id=source_id, url=source_url, fetched_at=now),
                preferred=preferred,
            )
            async with deps.session_factory() as session:
                saved = await ArticleRepository(session).batch_upsert(result.articles)
                await SourceRepository(session).mark_success(
                    source_id, now=now, cached=response.cached
                )
                await session.commit()
            LOGGER.info(
                "Source %s parsed with %s: %d article(s), %d upserted.",
                source_id,
                used.name.value,
                len(result.articles),
                saved,
            )
            return ParseOutcome.SUCCESS
        except RateLimitedError as exc:
            LOGGER.warning("Source %s deferred: %s", source_id, exc)
            await self._record_deferral(source_id, now=now, reason=_describe(exc))
            return ParseOutcome.DEFERRED
        except ParseError as exc:
            LOGGER.error("Source %s failed to parse: %s", source_id, exc)
            await self._record_failure(source_id, now=now, reason=_describe(exc), kind=FAILURE_KIND_PARSE)
            return ParseOutcome.FAILED
        except FetchError as exc:
            LOGGER.error("Source %s failed to fetch: %s", source_id, exc)
            await self._record_failure(source_id, now=now, reason=_describe(exc), kind=FAILURE_KIND_FETCH)
            return ParseOutcome.FAILED
        except Exception as exc:
            LOGGER.exception("Unexpected failure while processing source %s.", source_id)
            await self._record_failure(source_id, now=now, reason=_describe(exc), kind=FAILURE_KIND_FETCH)
            return ParseOutcome.FAILED

    async def _record_success(self, source_id: int, *, now: datetime, cached: bool) -> None:
        async with self._deps.session_factory() as session:
            await SourceRepository(session).mark_success(source_id, now=now, cached=cached)
            await session.commit()

    async def _record_failure(self, source_id: int, *, now: datetime, reason: str, kind: str) -> None:
        async with self._deps.session_factory() as session:
            await SourceRepository(session).mark_failure(source_id, now=now, reason=reason, kind=kind)
            await session.commit()

    async def _record_deferral(self, source_id: int, *, now: datetime, reason: str) -> None:
        async with self._deps.session_factory() as session:
            await SourceRepository(session).mark_deferred(source_id, now=now, reason=reason)
            await session.commit()


class GatherSourcesHandler:
    """Periodic job that runs one source scan."""

    def __init__(self, deps: IngestionDependencies) -> None:
        self._deps = deps

    async def __call__(self, job: QueuedJob) -> TaskResult:
        return await self._deps.source_scheduler.run_once()


class JobDispatcher:
    """Routes jobs to handlers by JobName."""

    def __init__(self, handlers: Mapping[JobName, JobHandler]) -> None:
        self._handlers = dict(handlers)

    @property
    def job_names(self) -> list[JobName]:
        return list(self._handlers)

    async def dispatch(self, job: QueuedJob) -> Any:
        try:
            name = JobName(job.name)
            handler = self._handlers[name]
        except (ValueError, KeyError):
            LOGGER.warning("No handler registered for job %s (%s).", job.general_id, job.name)
            return None
        return await handler(job)


def build_dispatcher(deps: IngestionDependencies) -> JobDispatcher:
    return JobDispatcher(
        {
            JobName.PARSE_SOURCE: ParseSourceHandler(deps),
            JobName.GATHER_SOURCES: GatherSourcesHandler(deps),
        }
    )


__all__ = [
    "GatherSourcesHandler",
    "IngestionDependencies",
    "JobDispatcher",
    "JobHandler",
    "ParseOutcome",
    "ParseSourceHandler",
    "build_dispatcher",
]
