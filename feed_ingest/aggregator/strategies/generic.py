"""
RSS / Atom / RDF strategy backed by feedparser.
"""

from __future__ import annotations

import re
import time
from datetime import UTC, datetime
from typing import Any

import feedparser

from ..exceptions import ParseError
from ..fetcher import FetchResult
from .base import FeedStrategy, ParsedFeedInfo, ParsedFeedResult, SourceRef, StrategyName
from .mapping import build_article

_XML_PREFIXES = ("<?xml", "<rss", "<feed")
_RSS_ELEMENTS = re.compile(r"<rss[^>]*>|<channel[^>]*>|<item[^>]*>", re.IGNORECASE)
_ATOM_ELEMENTS = re.compile(r"<feed[^>]*>|<entry[^>]*>", re.IGNORECASE)


def struct_to_datetime(value: time.struct_time | None) -> datetime | None:
    """Convert feedparser's UTC struct_time into an aware datetime."""

    if not value:
        return None
    return datetime(*value[:6], tzinfo=UTC)


def find_link(links: list[dict[str, Any]] | None, rel: str) -> str | None:
    for link in links or []:
        if link.get("rel") == rel and link.get("href"):
            return link["href"]
    return None


def entry_content(entry: dict[str, Any]) -> str | None:
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            return value
    return None


class GenericFeedStrategy(FeedStrategy):
    """Parses XML syndication formats."""

    name = StrategyName.GENERIC
    content_confidence = 0.7

    def can_likely_parse(self, body: str) -> bool:
        trimmed = body.strip()
        if trimmed.startswith(_XML_PREFIXES):
            return True
        return bool(_RSS_ELEMENTS.search(trimmed) or _ATOM_ELEMENTS.search(trimmed))

    def parse_document(self, body: str) -> Any:
        parsed = feedparser.parse(body)
        if parsed.bozo and not parsed.entries and not parsed.feed.get("title"):
            raise ParseError(
                f"Malformed feed document: {parsed.get('bozo_exception')}",
                context={"strategy": self.name.value},
            )
        return parsed

    def feed_info(self, parsed: Any) -> ParsedFeedInfo:
        feed = parsed.feed
        return ParsedFeedInfo(
            title=feed.get("title", ""),
            description=feed.get("subtitle", "") or feed.get("description", ""),
            link=feed.get("link", ""),
            hub=find_link(feed.get("links"), "hub"),
            self_url=find_link(feed.get("links"), "self"),
        )

    async def extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        parsed = self.parse_document(response.body)
        info = self.feed_info(parsed)
        feed = parsed.feed

        articles = [
            build_article(
                source=source,
                base_url=response.final_url,
                item_id=entry.get("id"),
                url=entry.get("link"),
                title=entry.get("title"),
                author=entry.get("author"),
                content=entry_content(entry),
                description=entry.get("summary"),
                published_at=struct_to_datetime(entry.get("published_parsed")),
                updated_at=struct_to_datetime(entry.get("updated_parsed")),
                feed_title=info.title,
                feed_url=info.link,
                feed_author=feed.get("author"),
            )
            for entry in parsed.entries
        ]
        return ParsedFeedResult(info=info, articles=articles)


__all__ = ["GenericFeedStrategy", "entry_content", "find_link", "struct_to_datetime"]
