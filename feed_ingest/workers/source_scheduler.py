"""
Selection of due sources and enqueueing of their ParseSource jobs.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import SchedulerSettings
from ..db.models import Source
from ..db.repositories import SourceRepository
from .queue import JobStore
from .types import JobName, TaskResult

LOGGER = logging.getLogger(__name__)


def parse_source_job_id(source_id: int) -> str:
    return f"parse-source:{source_id}"


class SourceScheduler:
    """Turns source backoff state into queued ParseSource jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        job_store: JobStore,
        settings: SchedulerSettings | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._job_store = job_store
        self._settings = settings or SchedulerSettings()

    @property
    def quiet_interval(self) -> timedelta:
        return timedelta(seconds=self._settings.quiet_interval_seconds)

    async def select_due_sources(self, now: datetime | None = None) -> list[Source]:
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            return await SourceRepository(session).select_due(
                now=now,
                quiet_interval=self.quiet_interval,
                max_multiplier=self._settings.max_backoff_multiplier,
                batch_fraction=self._settings.batch_fraction,
            )

    async def run_once(self, now: datetime | None = None) -> TaskResult:
        """
        Enqueue one ParseSource job per due source.

        Store errors are logged and reported in the result; source rows are
        never modified here.
        """
        started_at = datetime.now(UTC)
        now = now or started_at
        enqueued = 0
        absorbed = 0

        try:
            sources = await self.select_due_sources(now)
            for source in sources:
                inserted = await self._job_store.enqueue(
                    parse_source_job_id(source.id),
                    JobName.PARSE_SOURCE.value,
                    {"sourceId": source.id},
                    now=now,
                )
                if inserted:
                    enqueued += 1
                else:
                    absorbed += 1
        except Exception as exc:
            LOGGER.exception("Source scan failed; retrying on the next interval.")
            return TaskResult(
                task_name="gather_sources",
                success=False,
                message=f"Source scan failed: {exc}",
                details={"enqueued": enqueued, "already_pending": absorbed},
                started_at=started_at,
                finished_at=datetime.now(UTC),
            )

        LOGGER.info(
            "Source scan found %d due source(s): %d enqueued, %d already pending.",
            len(sources),
            enqueued,
            absorbed,
        )
        return TaskResult(
            task_name="gather_sources",
            success=True,
            message=f"Enqueued {enqueued} source(s)",
            details={"due": len(sources), "enqueued": enqueued, "already_pending": absorbed},
            started_at=started_at,
            finished_at=datetime.now(UTC),
        )

    async def register_source(
        self,
        url: str,
        home_url: str | None = None,
        *,
        strategy_type: str | None = None,
    ) -> Source:
        """Add a source (or reuse an existing one) and queue an immediate cache-bypassing parse."""

        async with self._session_factory() as session:
            repo = SourceRepository(session)
            source = await repo.find_by_url(url)
            if source is None:
                source = await repo.add(url=url, home_url=home_url or url, strategy_type=strategy_type)
                LOGGER.info("Registered source %s (%s).", source.id, url)
            await session.commit()
            await session.refresh(source)

        await self._job_store.enqueue(
            parse_source_job_id(source.id),
            JobName.PARSE_SOURCE.value,
            {"sourceId": source.id, "skipCache": True},
        )
        return source


__all__ = ["SourceScheduler", "parse_source_job_id"]
