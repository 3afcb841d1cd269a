"""
HTTP fetching with response caching, redirect tracking, and rate-limit signals.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

import httpx

from ..db.cache import CachedResponse, ResponseCache
from .exceptions import FetchError, RateLimitedError
from .redirects import RedirectTracker
from .throttle import DomainThrottle, domain_of, parse_retry_after, wait_from_headers

LOGGER = logging.getLogger(__name__)

PERMANENT_REDIRECT_STATUSES = frozenset({301, 308})


@dataclass(slots=True)
class FetchResult:
    """Outcome of a fetch, either from the network or the response cache."""

    url: str
    body: str
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    cached: bool = False
    final_url: str = ""
    permanent_redirect: bool = False

    def __post_init__(self) -> None:
        if not self.final_url:
            self.final_url = self.url

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")


class FetchClient:
    """Performs GET requests on behalf of strategies and job handlers."""

    def __init__(
        self,
        *,
        redirects: RedirectTracker,
        throttle: DomainThrottle,
        cache: ResponseCache | None = None,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        user_agent: str = "feed-ingest/0.1",
    ) -> None:
        self._redirects = redirects
        self._throttle = throttle
        self._cache = cache
        self._user_agent = user_agent
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_seconds))
        self._owns_client = client is None

    async def aclose(self) -> None:
        """Close the owned HTTP client."""

        if self._owns_client:
            await self._client.aclose()

    async def fetch(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        force_refresh: bool = False,
    ) -> FetchResult:
        """
        Fetch a URL, short-circuiting on a fresh cache entry.

        Raises:
            RateLimitedError: the upstream answered 429; a cooldown was recorded.
            FetchError: the request failed at the transport level.
        """
        target = await self._redirects.resolve_url(url)
        now = self._throttle.now()
        domain = domain_of(target)

        entry: CachedResponse | None = None
        if self._cache is not None:
            entry = await self._cache.get(target)
        if entry is not None and not force_refresh and entry.is_fresh(now):
            LOGGER.debug("Serving %s from the response cache.", target)
            return self._from_cache(target, entry)

        request_headers = {"User-Agent": self._user_agent}
        request_headers.update(headers or {})
        if entry is not None:
            request_headers.update(entry.validator_headers())

        try:
            response = await self._client.get(target, headers=request_headers, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise FetchError(
                f"Request to {target} failed: {exc}",
                context={"url": target, "error": type(exc).__name__},
            ) from exc

        response_headers = dict(response.headers.items())

        if response.status_code == 429:
            wait_until = parse_retry_after(response_headers.get("retry-after"), now)
            await self._throttle.defer_until(domain, wait_until)
            raise RateLimitedError(
                f"Rate limited by {domain}, retry after {wait_until.isoformat()}",
                wait_until=wait_until,
                context={"url": target, "status_code": 429},
            )

        upcoming = wait_from_headers(response_headers, now)
        if upcoming is not None:
            LOGGER.warning("Upcoming rate limit for %s, pausing requests until %s.", domain, upcoming)
            await self._throttle.defer_until(domain, upcoming)

        if response.status_code == 304 and entry is not None and self._cache is not None:
            entry = await self._cache.touch(entry, response_headers, now)
            return self._from_cache(target, entry)

        final_url = str(response.url)
        permanent = False
        if response.history:
            permanent = await self._is_permanent_redirect(target, request_headers)
            if permanent:
                await self._redirects.set_redirect(url, final_url)

        body = response.text
        if self._cache is not None and response.status_code == 200:
            await self._cache.store(
                target,
                status_code=response.status_code,
                body=body,
                headers=response_headers,
                now=now,
            )

        return FetchResult(
            url=target,
            body=body,
            status_code=response.status_code,
            headers=response_headers,
            cached=False,
            final_url=final_url,
            permanent_redirect=permanent,
        )

    async def _is_permanent_redirect(self, url: str, headers: Mapping[str, str]) -> bool:
        """Probe the URL without following redirects to classify the first hop."""

        try:
            probe = await self._client.get(url, headers=dict(headers), follow_redirects=False)
        except httpx.HTTPError as exc:
            LOGGER.debug("Redirect probe for %s failed: %s", url, exc)
            return False
        return probe.status_code in PERMANENT_REDIRECT_STATUSES

    @staticmethod
    def _from_cache(url: str, entry: CachedResponse) -> FetchResult:
        return FetchResult(
            url=url,
            body=entry.body,
            status_code=entry.status_code,
            headers=dict(entry.headers),
            cached=True,
            final_url=url,
        )


__all__ = ["FetchClient", "FetchResult", "PERMANENT_REDIRECT_STATUSES"]
