"""
WebSub (push) strategy: articles arrive through hub notifications, so a fetch
only resolves feed metadata.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from ..fetcher import FetchResult
from .base import FeedStrategy, ParsedArticle, ParsedFeedInfo, ParsedFeedResult, SourceRef, StrategyName
from .generic import GenericFeedStrategy

WEBSUB_HUB_HOSTS = (
    "websub.io",
    "websub.rocks",
    "websubhub.com",
    "pubsubhubbub.appspot.com",
    "superfeedr.com",
)

_HUB_LINK = re.compile(r"""rel\s*=\s*["']?hub\b""", re.IGNORECASE)


def _rel_values(tag) -> list[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return [value.lower() for value in rel]


class WebSubStrategy(FeedStrategy):
    """Resolves title, self link and hub of a push-enabled feed."""

    name = StrategyName.WEBSUB
    content_confidence = 0.4

    def __init__(self, *, xml_strategy: GenericFeedStrategy | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self._xml = xml_strategy or GenericFeedStrategy()

    def matches_url(self, url: str) -> bool:
        host = (urlsplit(url).hostname or "").lower()
        return any(host == hub or host.endswith(f".{hub}") for hub in WEBSUB_HUB_HOSTS)

    def can_likely_parse(self, body: str) -> bool:
        return _HUB_LINK.search(body) is not None

    def request_headers(self, url: str) -> dict[str, str]:
        return {"Accept": "application/atom+xml, application/rss+xml, application/xml, text/xml"}

    def validate_response(self, response: FetchResult) -> None:
        # The hub link is optional here: a WebSub source may be served without one.
        if response.status_code != 200 or not response.body.strip():
            super().validate_response(response)

    def feed_info(self, response: FetchResult) -> ParsedFeedInfo:
        if self._xml.can_likely_parse(response.body):
            info = self._xml.feed_info(self._xml.parse_document(response.body))
            return ParsedFeedInfo(
                title=info.title or "WebSub Feed",
                description=info.description or "WebSub-enabled feed",
                link=info.self_url or info.link or response.final_url,
                hub=info.hub,
                self_url=info.self_url,
            )

        soup = BeautifulSoup(response.body, "html.parser")
        hub = self_url = None
        for tag in soup.find_all("link", href=True):
            rels = _rel_values(tag)
            if "hub" in rels and hub is None:
                hub = tag["href"]
            if "self" in rels and self_url is None:
                self_url = tag["href"]
        title = soup.title.get_text(strip=True) if soup.title else ""
        return ParsedFeedInfo(
            title=title or "WebSub Feed",
            description="WebSub-enabled feed",
            link=self_url or response.final_url,
            hub=hub,
            self_url=self_url,
        )

    async def extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        return ParsedFeedResult(info=self.feed_info(response), articles=[])

    async def get_articles_only(self, response: FetchResult, source: SourceRef) -> list[ParsedArticle]:
        return []


__all__ = ["WEBSUB_HUB_HOSTS", "WebSubStrategy"]
