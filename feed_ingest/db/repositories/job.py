"""
Job repository: row-level operations on the durable job queue.

The repository never commits; JobStore owns the transaction boundaries so
that claim, delete, and reschedule happen atomically.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.engine import CursorResult

from ..models import Job
from .base import BaseRepository


class JobRepository(BaseRepository):
    """Data access helpers for Job rows."""

    async def insert_ignore(
        self,
        *,
        general_id: str,
        name: str,
        payload: dict[str, Any],
        not_before: datetime,
    ) -> bool:
        """
        Insert a job unless one with the same general_id is already pending.

        Returns True when a row was written.
        """
        stmt = (
            self._insert(Job)
            .values(
                general_id=general_id,
                name=name,
                payload=payload,
                not_before=not_before,
            )
            .on_conflict_do_nothing(index_elements=["general_id"])
        )
        result: CursorResult[tuple[()]] = await self._session.execute(stmt)  # type: ignore[assignment]
        return (result.rowcount or 0) > 0

    async def select_eligible(
        self,
        *,
        now: datetime,
        lease: timedelta,
        limit: int,
    ) -> list[Job]:
        """
        Select and row-lock up to `limit` claimable jobs, earliest first.

        Rows locked by a concurrent transaction are skipped rather than waited on.
        """
        stale_lock = now - lease
        stmt = (
            select(Job)
            .where(Job.not_before <= now)
            .where(or_(Job.locked_at.is_(None), Job.locked_at < stale_lock))
            .order_by(Job.not_before.asc(), Job.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self._session.scalars(stmt)
        return list(result)

    async def mark_locked(self, job_ids: Sequence[int], *, now: datetime) -> None:
        if not job_ids:
            return
        await self._session.execute(
            update(Job)
            .where(Job.id.in_(job_ids))
            .values(locked_at=now)
            .execution_options(synchronize_session=False)
        )

    async def delete_by_ids(self, job_ids: Sequence[int]) -> int:
        if not job_ids:
            return 0
        result: CursorResult[tuple[()]] = await self._session.execute(  # type: ignore[assignment]
            delete(Job).where(Job.id.in_(job_ids)).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Job))
        return result.scalar_one()

    async def get_by_general_id(self, general_id: str) -> Job | None:
        return await self._session.scalar(select(Job).where(Job.general_id == general_id))


__all__ = ["JobRepository"]
