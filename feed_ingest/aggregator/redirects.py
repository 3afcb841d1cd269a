"""
Redis map of permanent redirects observed while fetching sources.
"""

from __future__ import annotations

import logging

from redis.asyncio import Redis

LOGGER = logging.getLogger(__name__)

REDIRECT_TTL_SECONDS = 24 * 60 * 60


def normalize_url(url: str) -> str:
    return url[:-1] if url.endswith("/") else url


class RedirectTracker:
    """Stores `from -> to` mappings for 301/308 responses with a 24h TTL."""

    def __init__(
        self,
        client: Redis,
        *,
        namespace: str = "redirect_map",
        ttl_seconds: int = REDIRECT_TTL_SECONDS,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._ttl_seconds = ttl_seconds

    async def set_redirect(self, from_url: str, to_url: str) -> None:
        source = normalize_url(from_url)
        target = normalize_url(to_url)
        if source == target:
            return
        await self._client.set(self._build_key(source), target, ex=self._ttl_seconds)
        LOGGER.info("Recorded permanent redirect %s -> %s.", source, target)

    async def get_redirect(self, url: str) -> str | None:
        return await self._client.get(self._build_key(normalize_url(url)))

    async def resolve_url(self, url: str) -> str:
        """Return the stored redirect target for a URL, or the URL itself."""

        target = await self.get_redirect(url)
        return target or url

    async def remove_redirect(self, url: str) -> None:
        await self._client.delete(self._build_key(normalize_url(url)))

    async def all_redirects(self) -> dict[str, str]:
        prefix = f"{self._namespace}:"
        redirects: dict[str, str] = {}
        async for key in self._client.scan_iter(match=f"{prefix}*"):
            target = await self._client.get(key)
            if target is not None:
                redirects[key[len(prefix) :]] = target
        return redirects

    def _build_key(self, url: str) -> str:
        return f"{self._namespace}:{url}"


__all__ = ["REDIRECT_TTL_SECONDS", "RedirectTracker", "normalize_url"]
