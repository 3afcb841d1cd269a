"""
Scraping strategy for social pages that publish no syndication feed.

Posts are pulled out of the JSON blobs embedded in the page HTML with a
regular expression; no DOM is built.
"""

from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from urllib.parse import urlsplit

from ..fetcher import FetchResult
from ..throttle import RateLimitPolicy
from .base import FeedStrategy, ParsedFeedInfo, ParsedFeedResult, SourceRef, StrategyName
from .mapping import build_article

SCRAPE_HOSTS = ("facebook.com", "fb.com")
TITLE_LENGTH = 100
TIMESTAMP_WINDOW = 500

_MESSAGE_TEXT = re.compile(r'"message"\s*:\s*\{[^{}]*?"text"\s*:\s*"((?:\\.|[^"\\])*)"')
_TIMESTAMP = re.compile(r'"timestamp"\s*:\s*(\d+)')
_SORTING = re.compile(r"[?&]sorting_setting=")

BROWSER_HEADERS = {
    "User-Agent": "Mozilla/5.0 (X11; Linux x86_64; rv:141.0) Gecko/20100101 Firefox/141.0",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
}


def unescape_text(raw: str) -> str:
    try:
        return json.loads(f'"{raw}"')
    except ValueError:
        return raw.replace('\\"', '"').replace("\\n", "\n")


def extract_posts(html: str, default_time: datetime) -> list[tuple[str, datetime]]:
    """Return unique (text, posted_at) pairs in page order."""

    seen: set[str] = set()
    posts: list[tuple[str, datetime]] = []
    for match in _MESSAGE_TEXT.finditer(html):
        text = unescape_text(match.group(1))
        if not text.strip() or text in seen:
            continue
        seen.add(text)
        window = html[match.end() : match.end() + TIMESTAMP_WINDOW]
        stamp = _TIMESTAMP.search(window)
        posted_at = datetime.fromtimestamp(int(stamp.group(1)), UTC) if stamp else default_time
        posts.append((text, posted_at))
    return posts


def page_title(url: str) -> str:
    parts = [part for part in urlsplit(url).path.split("/") if part]
    if parts and parts[0] == "groups" and len(parts) > 1:
        return f"Facebook Group: {parts[1]}"
    if parts and parts[0] != "pages":
        return f"Facebook Page: {parts[0]}"
    return "Facebook Feed"


class ScrapeStrategy(FeedStrategy):
    """Extracts posts from Facebook pages and groups."""

    name = StrategyName.SCRAPE
    content_confidence = 0.6

    def matches_url(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return any(host == domain or host.endswith(f".{domain}") for domain in SCRAPE_HOSTS)

    def can_likely_parse(self, body: str) -> bool:
        return _MESSAGE_TEXT.search(body) is not None

    def request_url(self, url: str) -> str:
        if _SORTING.search(url):
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}sorting_setting=CHRONOLOGICAL"

    def request_headers(self, url: str) -> dict[str, str]:
        return dict(BROWSER_HEADERS)

    def rate_limit_policy(self) -> RateLimitPolicy:
        return RateLimitPolicy(min_delay_ms=60_000, max_delay_ms=5 * 60_000, randomize=True)

    async def extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        info = ParsedFeedInfo(
            title=page_title(source.url),
            description="Facebook posts and updates",
            link=source.url,
        )
        articles = []
        for text, posted_at in extract_posts(response.body, source.fetched_at):
            title = text[:TITLE_LENGTH] + ("..." if len(text) > TITLE_LENGTH else "")
            articles.append(
                build_article(
                    source=source,
                    base_url=response.final_url,
                    item_id=None,
                    url=None,
                    title=title,
                    author=None,
                    content=text,
                    description=None,
                    published_at=posted_at,
                    updated_at=posted_at,
                    feed_title=info.title,
                    feed_url=info.link,
                    feed_author=info.title,
                )
            )
        return ParsedFeedResult(info=info, articles=articles)


__all__ = ["BROWSER_HEADERS", "ScrapeStrategy", "extract_posts", "page_title", "unescape_text"]
