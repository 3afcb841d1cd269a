"""
Source repository: lookup, due selection, and attempt bookkeeping.

Due-selection notes:
- Healthy sources (no recent failures) are retried after the quiet interval.
- Failing sources back off linearly: quiet * min(recent_failures, cap).
- The backoff predicate is expanded into one clause per multiplier so it
  stays portable across dialects and can use ix_sources_last_attempt.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.sql.elements import ColumnElement

from ..models import Source
from .base import BaseRepository

FAILURE_KIND_FETCH = "fetch"
FAILURE_KIND_PARSE = "parse"
FAILURE_KIND_RATE_LIMIT = "rate_limit"


def _due_condition(
    now: datetime, quiet_interval: timedelta, max_multiplier: int
) -> ColumnElement[bool]:
    never_attempted = Source.last_attempt.is_(None)
    healthy_and_quiet = and_(
        Source.recent_failures == 0,
        Source.last_attempt < now - quiet_interval,
    )
    backoff_clauses = [
        and_(
            Source.recent_failures == multiplier,
            Source.last_attempt < now - quiet_interval * multiplier,
        )
        for multiplier in range(1, max_multiplier)
    ]
    backoff_clauses.append(
        and_(
            Source.recent_failures >= max_multiplier,
            Source.last_attempt < now - quiet_interval * max_multiplier,
        )
    )
    return or_(never_attempted, healthy_and_quiet, *backoff_clauses)


def _is_web_source() -> ColumnElement[bool]:
    return or_(Source.url.like("http://%"), Source.url.like("https://%"))


class SourceRepository(BaseRepository):
    """Data access helpers for Source entities."""

    async def get(self, source_id: int) -> Source | None:
        return await self._session.get(Source, source_id)

    async def find_by_url(self, url: str) -> Source | None:
        return await self._session.scalar(select(Source).where(Source.url == url).limit(1))

    async def count(self) -> int:
        result = await self._session.execute(select(func.count()).select_from(Source))
        return result.scalar_one()

    async def add(self, *, url: str, home_url: str, strategy_type: str | None = None) -> Source:
        """Insert a new source and flush so its id is available."""

        source = Source(url=url, home_url=home_url, strategy_type=strategy_type)
        self._session.add(source)
        await self._session.flush()
        return source

    async def select_due(
        self,
        *,
        now: datetime,
        quiet_interval: timedelta,
        max_multiplier: int = 15,
        batch_fraction: float = 0.1,
    ) -> list[Source]:
        """
        Return sources due for a fetch attempt, oldest attempt first.

        The result is capped to ceil(total_sources * batch_fraction) to bound
        how many jobs a single scan can produce.
        """
        total = await self.count()
        cap = math.ceil(total * batch_fraction)
        if cap <= 0:
            return []

        stmt = (
            select(Source)
            .where(_due_condition(now, quiet_interval, max_multiplier))
            .where(_is_web_source())
            .order_by(Source.last_attempt.asc().nulls_first(), Source.id.asc())
            .limit(cap)
        )
        result = await self._session.scalars(stmt)
        return list(result)

    async def mark_success(self, source_id: int, *, now: datetime, cached: bool = False) -> None:
        await self._session.execute(
            update(Source)
            .where(Source.id == source_id)
            .values(
                last_attempt=now,
                last_success=now,
                recent_failures=0,
                recent_failure_details="cached" if cached else "not cached",
                last_failure_kind=None,
            )
        )

    async def mark_failure(
        self,
        source_id: int,
        *,
        now: datetime,
        reason: str,
        kind: str = FAILURE_KIND_FETCH,
    ) -> None:
        """Record a failed attempt and bump the backoff counter."""

        await self._session.execute(
            update(Source)
            .where(Source.id == source_id)
            .values(
                last_attempt=now,
                recent_failures=Source.recent_failures + 1,
                recent_failure_details=reason,
                last_failure_kind=kind,
            )
        )

    async def mark_deferred(self, source_id: int, *, now: datetime, reason: str) -> None:
        """Record an attempt cut short by upstream rate limiting; the failure counter is left alone."""

        await self._session.execute(
            update(Source)
            .where(Source.id == source_id)
            .values(
                last_attempt=now,
                recent_failure_details=reason,
                last_failure_kind=FAILURE_KIND_RATE_LIMIT,
            )
        )


__all__ = [
    "FAILURE_KIND_FETCH",
    "FAILURE_KIND_PARSE",
    "FAILURE_KIND_RATE_LIMIT",
    "SourceRepository",
]
