"""
Durable job queue on top of the relational store.

Two acknowledgement modes are supported:

- claim: select, lock, delete, and reschedule periodic jobs in one
  transaction. A job that fails in its handler is gone; recovery is the
  source's own backoff.
- lease/complete: leasing only stamps locked_at and commits. The row is
  deleted (and a periodic successor inserted) when the handler finishes.
  A crashed worker's rows become claimable again once the lease expires.

Cross-process exclusivity relies on SELECT ... FOR UPDATE SKIP LOCKED.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db.models import Job
from ..db.repositories import JobRepository
from .types import QueuedJob

LOGGER = logging.getLogger(__name__)

DEFAULT_LEASE_SECONDS = 300


def _decode(row: Job, *, locked_at: datetime | None) -> QueuedJob:
    return QueuedJob(
        id=row.id,
        general_id=row.general_id,
        name=row.name,
        payload=dict(row.payload or {}),
        not_before=row.not_before,
        locked_at=locked_at,
    )


class JobStore:
    """Enqueue, claim, lease, and complete jobs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lease_seconds: int = DEFAULT_LEASE_SECONDS,
    ) -> None:
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive.")
        self._session_factory = session_factory
        self._lease = timedelta(seconds=lease_seconds)

    @property
    def lease(self) -> timedelta:
        return self._lease

    async def enqueue(
        self,
        general_id: str,
        name: str,
        payload: dict[str, Any] | None = None,
        *,
        delay: float = 0.0,
        now: datetime | None = None,
    ) -> bool:
        """
        Insert a job unless one with the same general_id is pending.

        Returns True when a new row was written; a duplicate is absorbed silently.
        """
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            try:
                inserted = await JobRepository(session).insert_ignore(
                    general_id=general_id,
                    name=name,
                    payload=dict(payload or {}),
                    not_before=now + timedelta(seconds=max(0.0, delay)),
                )
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if not inserted:
            LOGGER.debug("Job %s already pending, enqueue absorbed.", general_id)
        return inserted

    async def schedule(
        self,
        general_id: str,
        name: str,
        every: int,
        payload: dict[str, Any] | None = None,
        *,
        now: datetime | None = None,
    ) -> bool:
        """Enqueue a periodic job that reschedules itself every `every` seconds."""

        if every <= 0:
            raise ValueError("every must be a positive number of seconds.")
        body = dict(payload or {})
        body["every"] = int(every)
        return await self.enqueue(general_id, name, body, now=now)

    async def claim_batch(self, limit: int, now: datetime | None = None) -> list[QueuedJob]:
        """Claim up to `limit` due jobs, deleting them and inserting periodic successors."""

        if limit <= 0:
            return []
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            try:
                repo = JobRepository(session)
                rows = await repo.select_eligible(now=now, lease=self._lease, limit=limit)
                if not rows:
                    await session.commit()
                    return []
                ids = [row.id for row in rows]
                await repo.mark_locked(ids, now=now)
                jobs = [_decode(row, locked_at=now) for row in rows]
                await repo.delete_by_ids(ids)
                await self._insert_successors(repo, jobs, now)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        LOGGER.debug("Claimed %d job(s).", len(jobs))
        return jobs

    async def lease_batch(self, limit: int, now: datetime | None = None) -> list[QueuedJob]:
        """Lock up to `limit` due jobs without deleting them."""

        if limit <= 0:
            return []
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            try:
                repo = JobRepository(session)
                rows = await repo.select_eligible(now=now, lease=self._lease, limit=limit)
                jobs = [_decode(row, locked_at=now) for row in rows]
                await repo.mark_locked([job.id for job in jobs], now=now)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if jobs:
            LOGGER.debug("Leased %d job(s) for %s.", len(jobs), self._lease)
        return jobs

    async def complete(self, job: QueuedJob, now: datetime | None = None) -> bool:
        """
        Delete a leased job and insert its periodic successor.

        Returns False when the row was already gone, e.g. completed by another
        worker after this lease expired.
        """
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            try:
                repo = JobRepository(session)
                deleted = await repo.delete_by_ids([job.id])
                if deleted:
                    await self._insert_successors(repo, [job], now)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
        if not deleted:
            LOGGER.warning("Job %s (%s) was already completed elsewhere.", job.id, job.general_id)
        return bool(deleted)

    async def count_pending(self) -> int:
        async with self._session_factory() as session:
            return await JobRepository(session).count()

    @staticmethod
    async def _insert_successors(
        repo: JobRepository,
        jobs: Sequence[QueuedJob],
        now: datetime,
    ) -> None:
        for job in jobs:
            every = job.every
            if not every:
                continue
            await repo.insert_ignore(
                general_id=job.general_id,
                name=job.name,
                payload=job.payload,
                not_before=now + timedelta(seconds=every),
            )


__all__ = ["DEFAULT_LEASE_SECONDS", "JobStore"]
