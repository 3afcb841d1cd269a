"""
Unit tests for ScrapeStrategy.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from feed_ingest.aggregator.fetcher import FetchResult
from feed_ingest.aggregator.strategies.base import SourceRef
from feed_ingest.aggregator.strategies.mapping import generate_guid
from feed_ingest.aggregator.strategies.scrape import (
    ScrapeStrategy,
    extract_posts,
    page_title,
    unescape_text,
)

FETCHED_AT = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
PAGE_URL = "https://www.facebook.com/examplepage"

PAGE_HTML = (
    "<html><script>"
    '{"message":{"text":"Hello \\"world\\"\\nsecond line"},"creation":{"timestamp":1714478400}}'
    '{"message":{"text":"Hello \\"world\\"\\nsecond line"},"creation":{"timestamp":1714478400}}'
    '{"message":{"text":"' + "x" * 120 + '"}}'
    "</script></html>"
)


class TestScrapeHelpers:
    def test_page_title(self) -> None:
        assert page_title("https://www.facebook.com/examplepage") == "Facebook Page: examplepage"
        assert page_title("https://www.facebook.com/groups/1234/") == "Facebook Group: 1234"
        assert page_title("https://www.facebook.com/") == "Facebook Feed"

    def test_unescape_text(self) -> None:
        assert unescape_text('a \\"b\\"\\nc') == 'a "b"\nc'

    def test_extract_posts_dedupes_and_reads_timestamps(self) -> None:
        posts = extract_posts(PAGE_HTML, FETCHED_AT)

        assert len(posts) == 2
        assert posts[0] == ('Hello "world"\nsecond line', datetime.fromtimestamp(1714478400, UTC))
        assert posts[1][1] == FETCHED_AT


class TestScrapeStrategy:
    """Tests for Facebook page scraping."""

    @pytest.fixture
    def strategy(self) -> ScrapeStrategy:
        return ScrapeStrategy()

    def test_matches_facebook_hosts(self, strategy: ScrapeStrategy) -> None:
        assert strategy.matches_url("https://www.facebook.com/page")
        assert strategy.matches_url("https://fb.com/page")
        assert not strategy.matches_url("https://notfacebook.com/page")

    def test_request_url_adds_chronological_sorting(self, strategy: ScrapeStrategy) -> None:
        assert strategy.request_url(PAGE_URL) == f"{PAGE_URL}?sorting_setting=CHRONOLOGICAL"
        assert strategy.request_url(f"{PAGE_URL}?ref=x") == f"{PAGE_URL}?ref=x&sorting_setting=CHRONOLOGICAL"
        already = f"{PAGE_URL}?sorting_setting=TOP"
        assert strategy.request_url(already) == already

    def test_policy_is_randomized_minutes(self, strategy: ScrapeStrategy) -> None:
        policy = strategy.rate_limit_policy()
        assert policy.randomize is True
        assert (policy.min_delay_ms, policy.max_delay_ms) == (60_000, 300_000)
        assert "Mozilla" in strategy.request_headers(PAGE_URL)["User-Agent"]

    @pytest.mark.asyncio
    async def test_parse_page(self, strategy: ScrapeStrategy) -> None:
        source = SourceRef(id=9, url=PAGE_URL, fetched_at=FETCHED_AT)
        response = FetchResult(url=PAGE_URL, body=PAGE_HTML, status_code=200)

        result = await strategy.parse(response, source)

        assert result.info.title == "Facebook Page: examplepage"
        first, second = result.articles
        assert first.title == 'Hello "world"\nsecond line'
        assert first.url == PAGE_URL
        assert first.author == "Facebook Page: examplepage"
        assert first.guid == generate_guid(
            item_id=None,
            url=None,
            title=first.title,
            content=first.content,
            feed_title="Facebook Page: examplepage",
            feed_url=PAGE_URL,
            source_url=PAGE_URL,
        )
        assert second.title == "x" * 100 + "..."
        assert second.content == "x" * 120

    @pytest.mark.asyncio
    async def test_guid_is_stable_across_fetches(self, strategy: ScrapeStrategy) -> None:
        response = FetchResult(url=PAGE_URL, body=PAGE_HTML, status_code=200)

        first = await strategy.parse(response, SourceRef(id=9, url=PAGE_URL, fetched_at=FETCHED_AT))
        later = await strategy.parse(response, SourceRef(id=9, url=PAGE_URL))

        assert [a.guid for a in first.articles] == [a.guid for a in later.articles]
