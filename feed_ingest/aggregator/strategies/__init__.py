"""
Content parsing strategies and their registry.
"""

from .base import (
    FeedStrategy,
    ParsedArticle,
    ParsedFeedInfo,
    ParsedFeedResult,
    SourceRef,
    StrategyName,
)
from .generic import GenericFeedStrategy
from .json_feed import JsonFeedStrategy
from .registry import StrategyCandidate, StrategyRegistry, build_default_registry
from .scrape import ScrapeStrategy
from .websub import WebSubStrategy

__all__ = [
    "FeedStrategy",
    "GenericFeedStrategy",
    "JsonFeedStrategy",
    "ParsedArticle",
    "ParsedFeedInfo",
    "ParsedFeedResult",
    "ScrapeStrategy",
    "SourceRef",
    "StrategyCandidate",
    "StrategyName",
    "StrategyRegistry",
    "WebSubStrategy",
    "build_default_registry",
]
