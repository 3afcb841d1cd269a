"""
Unit tests for WebSubStrategy.
"""

from __future__ import annotations

import pytest

from feed_ingest.aggregator.exceptions import FetchError
from feed_ingest.aggregator.fetcher import FetchResult
from feed_ingest.aggregator.strategies.base import SourceRef
from feed_ingest.aggregator.strategies.websub import WebSubStrategy

HUB_PAGE = """<html><head>
<title>Push Blog</title>
<link rel="hub" href="https://pubsubhubbub.appspot.com/">
<link rel="self" href="https://push.example.com/feed">
</head><body></body></html>"""

ATOM_WITH_HUB = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Push</title>
  <link rel="hub" href="https://websub.rocks/hub"/>
  <link rel="self" href="https://push.example.com/atom"/>
  <entry><title>ignored</title><id>1</id></entry>
</feed>"""


class TestWebSubStrategy:
    """Tests for hub metadata resolution."""

    @pytest.fixture
    def strategy(self) -> WebSubStrategy:
        return WebSubStrategy()

    @pytest.fixture
    def source(self) -> SourceRef:
        return SourceRef(id=1, url="https://push.example.com/feed")

    def test_matches_hub_hosts(self, strategy: WebSubStrategy) -> None:
        assert strategy.matches_url("https://pubsubhubbub.appspot.com/subscribe")
        assert strategy.matches_url("https://push.superfeedr.com/")
        assert not strategy.matches_url("https://example.com/feed")

    def test_sniffs_hub_links(self, strategy: WebSubStrategy) -> None:
        assert strategy.can_likely_parse(HUB_PAGE)
        assert not strategy.can_likely_parse("<html><head></head></html>")

    @pytest.mark.asyncio
    async def test_html_page_yields_metadata_only(
        self, strategy: WebSubStrategy, source: SourceRef
    ) -> None:
        response = FetchResult(url=source.url, body=HUB_PAGE, status_code=200)

        result = await strategy.parse(response, source)

        assert result.articles == []
        assert result.info.title == "Push Blog"
        assert result.info.hub == "https://pubsubhubbub.appspot.com/"
        assert result.info.self_url == "https://push.example.com/feed"
        assert result.info.link == "https://push.example.com/feed"

    @pytest.mark.asyncio
    async def test_xml_feed_uses_feed_links(self, strategy: WebSubStrategy, source: SourceRef) -> None:
        response = FetchResult(url=source.url, body=ATOM_WITH_HUB, status_code=200)

        info = await strategy.get_info_only(response, source)

        assert info.title == "Atom Push"
        assert info.hub == "https://websub.rocks/hub"
        assert info.link == "https://push.example.com/atom"
        assert await strategy.get_articles_only(response, source) == []

    @pytest.mark.asyncio
    async def test_page_without_hub_still_parses(self, strategy: WebSubStrategy, source: SourceRef) -> None:
        response = FetchResult(url=source.url, body="<html><head></head></html>", status_code=200)

        result = await strategy.parse(response, source)

        assert result.info.title == "WebSub Feed"
        assert result.info.hub is None

    @pytest.mark.asyncio
    async def test_error_status_is_fetch_error(self, strategy: WebSubStrategy, source: SourceRef) -> None:
        response = FetchResult(url=source.url, body=HUB_PAGE, status_code=503)

        with pytest.raises(FetchError):
            await strategy.parse(response, source)
