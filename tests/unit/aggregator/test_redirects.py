"""
Unit tests for RedirectTracker.
"""

from __future__ import annotations

import pytest

from feed_ingest.aggregator.redirects import REDIRECT_TTL_SECONDS, RedirectTracker, normalize_url
from tests.helpers import MockRedisClient


class TestRedirectTracker:
    """Tests for the permanent redirect map."""

    def test_normalize_strips_one_trailing_slash(self) -> None:
        assert normalize_url("https://example.com/feed/") == "https://example.com/feed"
        assert normalize_url("https://example.com/feed") == "https://example.com/feed"

    @pytest.mark.asyncio
    async def test_resolve_follows_stored_redirect(
        self, redirects: RedirectTracker, mock_redis: MockRedisClient
    ) -> None:
        await redirects.set_redirect("https://old.example.com/rss/", "https://new.example.com/rss")

        assert await redirects.resolve_url("https://old.example.com/rss") == "https://new.example.com/rss"
        assert mock_redis.expiries["redirect_map:https://old.example.com/rss"] == (
            REDIRECT_TTL_SECONDS,
            None,
        )

    @pytest.mark.asyncio
    async def test_unknown_url_resolves_to_itself(self, redirects: RedirectTracker) -> None:
        assert await redirects.resolve_url("https://example.com/feed") == "https://example.com/feed"

    @pytest.mark.asyncio
    async def test_self_redirect_is_ignored(self, redirects: RedirectTracker) -> None:
        await redirects.set_redirect("https://example.com/feed/", "https://example.com/feed")

        assert await redirects.get_redirect("https://example.com/feed") is None

    @pytest.mark.asyncio
    async def test_remove_and_list(self, redirects: RedirectTracker) -> None:
        await redirects.set_redirect("https://a.example.com/x", "https://b.example.com/x")
        await redirects.set_redirect("https://c.example.com/y", "https://d.example.com/y")
        await redirects.remove_redirect("https://a.example.com/x")

        assert await redirects.all_redirects() == {
            "https://c.example.com/y": "https://d.example.com/y"
        }
