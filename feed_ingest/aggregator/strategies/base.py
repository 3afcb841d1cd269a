"""
Shared strategy abstractions and data structures.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import ClassVar

from ..exceptions import FetchError, ParseError
from ..fetcher import FetchResult
from ..throttle import RateLimitPolicy


class StrategyName(str, Enum):
    """Closed set of parsing strategies."""

    GENERIC = "generic"
    JSON = "json"
    SCRAPE = "scrape"
    WEBSUB = "websub"


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(slots=True)
class ParsedArticle:
    """
    Standard representation of an article across strategies.
    """

    guid: str
    source_id: int
    title: str
    url: str
    author: str
    content: str
    published_at: datetime
    updated_at: datetime | None = None
    last_seen_in_feed_at: datetime = field(default_factory=_utc_now)


@dataclass(slots=True)
class ParsedFeedInfo:
    title: str
    description: str = ""
    link: str = ""
    hub: str | None = None
    self_url: str | None = None


@dataclass(slots=True)
class ParsedFeedResult:
    info: ParsedFeedInfo
    articles: list[ParsedArticle] = field(default_factory=list)


@dataclass(slots=True, frozen=True)
class SourceRef:
    """The source a payload was fetched for."""

    id: int
    url: str
    fetched_at: datetime = field(default_factory=_utc_now)


class FeedStrategy(ABC):
    """Abstract base class that encapsulates strategy workflow and logging."""

    name: ClassVar[StrategyName]
    # Confidence reported when content sniffing matches.
    content_confidence: ClassVar[float] = 0.7

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(self.__class__.__name__)

    @property
    def logger(self) -> logging.Logger:
        """Return the strategy-specific logger instance."""

        return self._logger

    def matches_url(self, url: str) -> bool:
        """Return True when the URL alone identifies this strategy."""

        return False

    @abstractmethod
    def can_likely_parse(self, body: str) -> bool:
        """Cheap content sniffing used during detection."""

    def request_url(self, url: str) -> str:
        """URL actually requested for a source; strategies may add query parameters."""

        return url

    def request_headers(self, url: str) -> dict[str, str]:
        """Extra headers to send when fetching a source handled by this strategy."""

        return {}

    def rate_limit_policy(self) -> RateLimitPolicy | None:
        """Spacing override for this strategy, or None for the domain default."""

        return None

    def validate_response(self, response: FetchResult) -> None:
        """
        Reject responses this strategy must not parse.

        Non-200 statuses are fetch failures; empty or foreign payloads are
        parse failures.
        """
        if response.status_code != 200:
            raise FetchError(
                f"Failed to load data for {response.url}, received status {response.status_code}",
                context={"url": response.url, "status_code": response.status_code},
            )
        if not response.body or not response.body.strip():
            raise ParseError(
                f"Empty payload from {response.url}",
                context={"url": response.url, "strategy": self.name.value},
            )
        if not self.can_likely_parse(response.body):
            raise ParseError(
                f"Payload from {response.url} is not a {self.name.value} document",
                context={"url": response.url, "strategy": self.name.value},
            )

    async def parse(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        """Validate the response, then extract feed info and articles."""

        self.validate_response(response)
        result = await self._safe_extract(response, source)
        self.logger.debug(
            "%s extracted %d article(s) from %s.",
            self.__class__.__name__,
            len(result.articles),
            response.url,
        )
        return result

    async def get_info_only(self, response: FetchResult, source: SourceRef) -> ParsedFeedInfo:
        return (await self.parse(response, source)).info

    async def get_articles_only(self, response: FetchResult, source: SourceRef) -> list[ParsedArticle]:
        return (await self.parse(response, source)).articles

    async def _safe_extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        """Wrap extract with consistent exception handling."""

        try:
            return await self.extract(response, source)
        except ParseError:
            self.logger.exception("Failed to parse content from %s.", response.url)
            raise
        except Exception as exc:  # noqa: BLE001
            self.logger.exception("Unexpected parse failure for %s.", response.url, exc_info=exc)
            raise ParseError(
                "Unhandled parse error.",
                context={"url": response.url, "strategy": self.name.value},
            ) from exc

    @abstractmethod
    async def extract(self, response: FetchResult, source: SourceRef) -> ParsedFeedResult:
        """Transform the raw payload into feed info and normalized articles."""


__all__ = [
    "FeedStrategy",
    "ParsedArticle",
    "ParsedFeedInfo",
    "ParsedFeedResult",
    "SourceRef",
    "StrategyName",
]
