"""
Strategy registry: selection by stored preference, URL shape, or content.

Confidence levels:
- 1.0 stored per-source preference
- 0.9 URL-based match
- strategy.content_confidence for content sniffing (JSON 0.8, Generic 0.7)
- 0.5 fallback to the default strategy
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from ..exceptions import ParseError
from ..fetcher import FetchResult
from .base import FeedStrategy, ParsedFeedInfo, ParsedFeedResult, SourceRef, StrategyName
from .generic import GenericFeedStrategy
from .json_feed import JsonFeedStrategy
from .scrape import ScrapeStrategy
from .websub import WebSubStrategy

LOGGER = logging.getLogger(__name__)

PREFERENCE_CONFIDENCE = 1.0
URL_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.5


@dataclass(slots=True, frozen=True)
class StrategyCandidate:
    strategy: FeedStrategy
    confidence: float

    @property
    def is_fallback(self) -> bool:
        return self.confidence <= FALLBACK_CONFIDENCE


class StrategyRegistry:
    """Holds one instance per StrategyName, built once at startup."""

    def __init__(
        self,
        strategies: Iterable[FeedStrategy],
        *,
        default: StrategyName = StrategyName.GENERIC,
    ) -> None:
        self._strategies: dict[StrategyName, FeedStrategy] = {}
        for strategy in strategies:
            if strategy.name in self._strategies:
                raise ValueError(f"Strategy {strategy.name.value} registered twice.")
            self._strategies[strategy.name] = strategy
        if default not in self._strategies:
            raise ValueError(f"Default strategy {default.value} is not registered.")
        self._default = default

    @property
    def names(self) -> list[StrategyName]:
        return list(self._strategies)

    @property
    def default(self) -> FeedStrategy:
        return self._strategies[self._default]

    def get(self, name: StrategyName | str) -> FeedStrategy:
        try:
            return self._strategies[StrategyName(name)]
        except (KeyError, ValueError) as exc:
            raise ValueError(f"Unknown strategy: {name!r}") from exc

    def detect(self, url: str) -> StrategyCandidate:
        """URL-only detection; falls back to the default strategy."""

        matches = [s for s in self._strategies.values() if s.matches_url(url)]
        if not matches:
            return StrategyCandidate(self.default, FALLBACK_CONFIDENCE)
        # Ties go to the default strategy, then registration order.
        matches.sort(key=lambda s: s.name != self._default)
        return StrategyCandidate(matches[0], URL_CONFIDENCE)

    def resolve(self, url: str, preference: str | None = None) -> StrategyCandidate:
        """Stored preference first, otherwise URL detection."""

        if preference:
            try:
                return StrategyCandidate(self.get(preference), PREFERENCE_CONFIDENCE)
            except ValueError:
                LOGGER.warning("Ignoring unknown strategy preference %r for %s.", preference, url)
        return self.detect(url)

    def rank_by_content(self, body: str) -> list[StrategyCandidate]:
        """Strategies whose sniffing accepts the body, most confident first."""

        candidates = [
            StrategyCandidate(strategy, strategy.content_confidence)
            for strategy in self._strategies.values()
            if strategy.can_likely_parse(body)
        ]
        candidates.sort(key=lambda c: (-c.confidence, c.strategy.name != self._default))
        return candidates

    async def parse(
        self,
        response: FetchResult,
        source: SourceRef,
        *,
        preferred: FeedStrategy | None = None,
    ) -> tuple[FeedStrategy, ParsedFeedResult]:
        """
        Parse with the preferred strategy, or try content-ranked candidates in turn.

        Raises:
            FetchError: the response status is not 200.
            ParseError: no strategy could parse the payload.
        """
        if preferred is not None:
            return preferred, await preferred.parse(response, source)

        if response.status_code != 200:
            self.default.validate_response(response)

        candidates = self.rank_by_content(response.body)
        if not candidates:
            raise ParseError(
                "No suitable strategy found for feed",
                context={"url": response.url, "strategy": "none", "data": response.body[:100]},
            )

        *earlier, last = candidates
        for candidate in earlier:
            try:
                return candidate.strategy, await candidate.strategy.parse(response, source)
            except ParseError as exc:
                LOGGER.debug(
                    "Strategy %s could not parse %s: %s",
                    candidate.strategy.name.value,
                    response.url,
                    exc,
                )
        return last.strategy, await last.strategy.parse(response, source)

    async def get_info(
        self,
        response: FetchResult,
        source: SourceRef,
        *,
        preferred: FeedStrategy | None = None,
    ) -> ParsedFeedInfo:
        if preferred is not None:
            return await preferred.get_info_only(response, source)
        _, result = await self.parse(response, source)
        return result.info


def build_default_registry() -> StrategyRegistry:
    """Registry with every built-in strategy; Generic is the default."""

    generic = GenericFeedStrategy()
    return StrategyRegistry(
        [
            generic,
            JsonFeedStrategy(),
            ScrapeStrategy(),
            WebSubStrategy(xml_strategy=generic),
        ]
    )


__all__ = [
    "FALLBACK_CONFIDENCE",
    "PREFERENCE_CONFIDENCE",
    "URL_CONFIDENCE",
    "StrategyCandidate",
    "StrategyRegistry",
    "build_default_registry",
]
