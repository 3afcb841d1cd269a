"""
Article repository: the sink for parsed feed items.

Query Optimization Notes:
- One multi-row UPSERT (ON CONFLICT on guid) per parsed feed
- published_at is written on insert only; later sightings refresh the rest
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import TYPE_CHECKING

from sqlalchemy import func, select
from sqlalchemy.engine import CursorResult

from ..models import Article
from .base import BaseRepository

if TYPE_CHECKING:
    from ...aggregator.strategies.base import ParsedArticle


class ArticleRepository(BaseRepository):
    """Data access helpers for Article entities."""

    async def batch_upsert(self, articles: Iterable[ParsedArticle]) -> int:
        """
        Insert or refresh articles keyed on guid.

        Items repeating a guid within the batch are collapsed, the last one
        wins, since a single ON CONFLICT statement cannot touch a row twice.

        Returns:
            Number of rows inserted or updated
        """
        by_guid: dict[str, ParsedArticle] = {}
        for article in articles:
            by_guid[article.guid] = article
        if not by_guid:
            return 0

        values_list = [
            {
                "guid": article.guid,
                "source_id": article.source_id,
                "title": article.title,
                "url": article.url,
                "author": article.author,
                "content": article.content,
                "published_at": article.published_at,
                "updated_at": article.updated_at,
                "last_seen_in_feed_at": article.last_seen_in_feed_at,
            }
            for article in by_guid.values()
        ]

        stmt = self._insert(Article).values(values_list)
        upsert_stmt = stmt.on_conflict_do_update(
            index_elements=["guid"],
            set_={
                "title": stmt.excluded.title,
                "content": stmt.excluded.content,
                "author": stmt.excluded.author,
                "updated_at": stmt.excluded.updated_at,
                "last_seen_in_feed_at": stmt.excluded.last_seen_in_feed_at,
            },
        )

        result: CursorResult[tuple[()]] = await self._session.execute(upsert_stmt)  # type: ignore[assignment]
        return result.rowcount or 0

    async def get_by_guid(self, guid: str) -> Article | None:
        return await self._session.scalar(select(Article).where(Article.guid == guid))

    async def list_for_source(self, source_id: int) -> list[Article]:
        stmt = (
            select(Article)
            .where(Article.source_id == source_id)
            .order_by(Article.published_at.desc(), Article.id.desc())
        )
        result = await self._session.scalars(stmt)
        return list(result)

    async def count(self, *, source_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(Article)
        if source_id is not None:
            stmt = stmt.where(Article.source_id == source_id)
        result = await self._session.execute(stmt)
        return result.scalar_one()


__all__ = ["ArticleRepository"]
