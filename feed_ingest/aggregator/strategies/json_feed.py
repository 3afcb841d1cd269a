"""
JSON Feed (https://jsonfeed.org) strategy.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

from dateutil import parser as dateparser

from ..exceptions import ParseError
from ..fetcher import FetchResult
from .base import FeedStrategy, ParsedFeedInfo, ParsedFeedResult, SourceRef, StrategyName
from .mapping import build_article

JSON_FEED_VERSIONS = frozenset(
    {
        "https://jsonfeed.org/version/1",
        "https://jsonfeed.org/version/1.1",
    }
)


def _load(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError:
        return None


def _parse_date(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = dateparser.isoparse(value)
    except (ValueError, OverflowError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _author_name(container: dict[str, Any]) -> str | None:
    # 1.1 uses an "authors" list, 1.0 a single "author" object.
    authors = container.get("authors")
    if isinstance(authors, list) and authors:
        first = authors[0]
        if isinstance(first, dict):
            return first.get("name") or first.get("url")
    author = container.get("author")
    if isinstance(author, dict):
        return author.get("name") or author.get("url")
    return None


def is_json_feed(document: Any) -> bool:
    if not isinstance(document, dict):
        return False
    if document.get("version") in JSON_FEED_VERSIONS:
        return True
    return bool(document.get("title")) and isinstance(document.get("items"), list)


class JsonFeedStrategy(FeedStrategy):
    """Parses JSON Feed 1 and 1.1 documents."""

    name = StrategyName.JSON
    content_confidence = 0.8

    def can_likely_parse(self, body: str) -> bool:
        trimmed = body.lstrip()
        if not trimmed.startswith("{"):
            return False
        return is_json_feed(_load(trimmed))

    def feed_info(self, document: dict[str, Any], fetched_url: str) -> ParsedFeedInfo:
        hubs = document.get("hubs") or []
        hub = next(
            (item.get("url") for item in hubs if isinstance(item, dict) and item.get("url")),
            None,
        )
        return ParsedFeedInfo(
            title=document.get("title") or "",
            description=document.get("description") or "",
            link=document.get("home_page_url") or document.get("feed_url") or fetched_url,
            hub=hub,
            self_url=document.get("feed_url"),
        )

    async def extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        document = _load(response.body)
        if not is_json_feed(document):
            raise ParseError(
                "Content is not a valid JSON Feed",
                context={"url": response.url, "strategy": self.name.value},
            )

        info = self.feed_info(document, response.final_url)
        feed_author = _author_name(document)
        articles = []
        for item in document.get("items") or []:
            if not isinstance(item, dict):
                continue
            item_id = item.get("id")
            articles.append(
                build_article(
                    source=source,
                    base_url=response.final_url,
                    item_id=str(item_id) if item_id not in (None, "") else None,
                    url=item.get("url") or item.get("external_url"),
                    title=item.get("title"),
                    author=_author_name(item),
                    content=item.get("content_html") or item.get("content_text"),
                    description=item.get("summary"),
                    published_at=_parse_date(item.get("date_published")),
                    updated_at=_parse_date(item.get("date_modified")),
                    feed_title=info.title,
                    feed_url=document.get("feed_url") or info.link,
                    feed_author=feed_author,
                )
            )
        return ParsedFeedResult(info=info, articles=articles)


__all__ = ["JSON_FEED_VERSIONS", "JsonFeedStrategy", "is_json_feed"]
