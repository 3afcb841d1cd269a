"""
Redis-backed HTTP response cache used by the fetch client.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Any

from redis.asyncio import Redis


def _parse_cache_control(value: str | None) -> dict[str, str | None]:
    directives: dict[str, str | None] = {}
    if not value:
        return directives
    for part in value.split(","):
        name, _, arg = part.strip().partition("=")
        if name:
            directives[name.lower()] = arg.strip('"') if arg else None
    return directives


def _parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(slots=True)
class CachedResponse:
    """A stored response body plus the metadata needed to reuse or revalidate it."""

    url: str
    status_code: int
    body: str
    headers: dict[str, str] = field(default_factory=dict)
    etag: str | None = None
    last_modified: str | None = None
    fresh_until: datetime | None = None
    stored_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def is_fresh(self, now: datetime) -> bool:
        return self.fresh_until is not None and now < self.fresh_until

    def validator_headers(self) -> dict[str, str]:
        """Conditional request headers for revalidating this entry."""

        headers: dict[str, str] = {}
        if self.etag:
            headers["If-None-Match"] = self.etag
        if self.last_modified:
            headers["If-Modified-Since"] = self.last_modified
        return headers


class ResponseCache:
    """Namespaced response cache honouring Cache-Control, Expires, and validators."""

    def __init__(
        self,
        client: Redis,
        *,
        namespace: str = "http-cache",
        stale_ttl_seconds: int = 24 * 60 * 60,
    ) -> None:
        self._client = client
        self._namespace = namespace
        self._stale_ttl = timedelta(seconds=stale_ttl_seconds)

    async def get(self, url: str) -> CachedResponse | None:
        """Return the cached entry for a URL, fresh or stale, or None."""

        data = await self._client.get(self._build_key(url))
        if data is None:
            return None
        return self._deserialize(json.loads(data))

    async def store(
        self,
        url: str,
        *,
        status_code: int,
        body: str,
        headers: Mapping[str, str],
        now: datetime | None = None,
    ) -> CachedResponse | None:
        """
        Persist a successful response when its headers allow it.

        Responses marked no-store, non-200 responses, and responses with neither
        a freshness lifetime nor a validator are not cached.
        """
        if status_code != 200:
            return None
        now = now or datetime.now(UTC)
        lowered = {key.lower(): value for key, value in headers.items()}
        directives = _parse_cache_control(lowered.get("cache-control"))
        if "no-store" in directives:
            return None

        fresh_until = self.freshness_deadline(lowered, now)
        etag = lowered.get("etag")
        last_modified = lowered.get("last-modified")
        if fresh_until is None and not etag and not last_modified:
            return None

        entry = CachedResponse(
            url=url,
            status_code=status_code,
            body=body,
            headers={"content-type": lowered.get("content-type", "")},
            etag=etag,
            last_modified=last_modified,
            fresh_until=fresh_until,
            stored_at=now,
        )
        ttl = self._stale_ttl
        if fresh_until is not None and fresh_until > now:
            ttl += fresh_until - now
        await self._client.set(
            self._build_key(url),
            json.dumps(self._serialize(entry)),
            ex=max(1, int(ttl.total_seconds())),
        )
        return entry

    async def touch(self, entry: CachedResponse, headers: Mapping[str, str], now: datetime) -> CachedResponse:
        """Refresh an entry's freshness after a 304 Not Modified."""

        lowered = {key.lower(): value for key, value in headers.items()}
        entry.fresh_until = self.freshness_deadline(lowered, now)
        entry.etag = lowered.get("etag", entry.etag)
        entry.last_modified = lowered.get("last-modified", entry.last_modified)
        entry.stored_at = now
        ttl = self._stale_ttl
        if entry.fresh_until is not None and entry.fresh_until > now:
            ttl += entry.fresh_until - now
        await self._client.set(
            self._build_key(entry.url),
            json.dumps(self._serialize(entry)),
            ex=max(1, int(ttl.total_seconds())),
        )
        return entry

    async def invalidate(self, url: str) -> None:
        await self._client.delete(self._build_key(url))

    @staticmethod
    def freshness_deadline(headers: Mapping[str, str], now: datetime) -> datetime | None:
        """Compute when a response stops being fresh from lower-cased headers."""

        directives = _parse_cache_control(headers.get("cache-control"))
        if "no-cache" in directives:
            return now
        for name in ("s-maxage", "max-age"):
            raw = directives.get(name)
            if raw is None:
                continue
            try:
                return now + timedelta(seconds=max(0, int(raw)))
            except ValueError:
                continue
        return _parse_http_date(headers.get("expires"))

    def _build_key(self, url: str) -> str:
        return f"{self._namespace}:{url}"

    @staticmethod
    def _serialize(entry: CachedResponse) -> dict[str, Any]:
        data = asdict(entry)
        data["fresh_until"] = entry.fresh_until.isoformat() if entry.fresh_until else None
        data["stored_at"] = entry.stored_at.isoformat()
        return data

    @staticmethod
    def _deserialize(payload: dict[str, Any]) -> CachedResponse:
        payload = payload.copy()
        if payload.get("fresh_until"):
            payload["fresh_until"] = datetime.fromisoformat(payload["fresh_until"])
        payload["stored_at"] = datetime.fromisoformat(payload["stored_at"])
        return CachedResponse(**payload)


__all__ = ["CachedResponse", "ResponseCache"]
