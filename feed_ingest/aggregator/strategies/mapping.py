"""
Mapping of feed items into ParsedArticle records, shared by all strategies.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from urllib.parse import urljoin

from ..links import rewrite_links
from .base import ParsedArticle, SourceRef


def _first(*values: str | None) -> str:
    for value in values:
        if value:
            return value
    return ""


def generate_guid(
    *,
    item_id: str | None,
    url: str | None,
    title: str | None,
    content: str | None = None,
    description: str | None = None,
    feed_title: str | None = None,
    feed_url: str | None = None,
    source_url: str | None = None,
) -> str:
    """
    Stable identity for an item.

    Explicit id, else ``<url>_<title>``, else a SHA-1 over the non-empty parts
    of (content, description, title, feed title, feed url, source url).
    """
    if item_id:
        return item_id
    if url and title:
        return f"{url}_{title}"
    parts = [content, description, title, feed_title, feed_url, source_url]
    hash_input = "_".join(part for part in parts if part)
    return hashlib.sha1(hash_input.encode("utf-8")).hexdigest()


def build_article(
    *,
    source: SourceRef,
    base_url: str,
    item_id: str | None,
    url: str | None,
    title: str | None,
    author: str | None,
    content: str | None,
    description: str | None,
    published_at: datetime | None,
    updated_at: datetime | None,
    feed_title: str | None = None,
    feed_url: str | None = None,
    feed_author: str | None = None,
) -> ParsedArticle:
    """
    Apply the shared fallback rules and rewrite links in the content.

    A relative item url is resolved against `base_url`, the fetched feed url;
    the guid is still derived from the url as the feed wrote it.
    """

    guid = generate_guid(
        item_id=item_id,
        url=url,
        title=title,
        content=content,
        description=description,
        feed_title=feed_title,
        feed_url=feed_url,
        source_url=source.url,
    )
    item_url = urljoin(base_url, url) if url else base_url
    published = published_at or source.fetched_at
    return ParsedArticle(
        guid=guid,
        source_id=source.id,
        title=_first(title, feed_title, feed_url, source.url),
        url=item_url,
        author=_first(author, feed_author, source.url),
        content=rewrite_links(_first(content, description), item_url),
        published_at=published,
        updated_at=updated_at or published,
        last_seen_in_feed_at=source.fetched_at,
    )


__all__ = ["build_article", "generate_guid"]
