"""
Per-domain courtesy spacing and rate-limit cooldowns shared through Redis.

Two kinds of keys are kept:

- ``lastFetchTimestamp:<domain>[:<strategy>]`` records the last attempt and the
  spacing chosen for it; a fetch is skipped until that spacing has elapsed.
- ``rateLimitUntil:<domain>[:<strategy>]`` holds an upstream-imposed cooldown
  as epoch milliseconds.

Cooldowns are written with SET NX so a running cooldown is not shortened by a
later writer. This is not linearizable: two workers receiving 429s at the same
moment race, and whichever writes first wins even if the other computed a
later deadline. The state is advisory and best effort.
"""

from __future__ import annotations

import json
import logging
import random
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from urllib.parse import urlsplit

from redis.asyncio import Redis

LOGGER = logging.getLogger(__name__)

DEFAULT_RETRY_AFTER = timedelta(minutes=5)
LAST_FETCH_PREFIX = "lastFetchTimestamp"
RATE_LIMIT_PREFIX = "rateLimitUntil"


@dataclass(slots=True, frozen=True)
class RateLimitPolicy:
    """Spacing a strategy asks for between fetches to one domain."""

    min_delay_ms: int
    max_delay_ms: int
    randomize: bool = False

    def pick_delay_ms(self) -> int:
        if self.randomize and self.max_delay_ms > self.min_delay_ms:
            return random.randint(self.min_delay_ms, self.max_delay_ms)
        return self.min_delay_ms


def domain_of(url: str) -> str:
    """Return the lower-cased host name of a URL, or an empty string."""

    return (urlsplit(url).hostname or "").lower()


def parse_retry_after(value: str | None, now: datetime) -> datetime:
    """
    Translate a Retry-After header into an absolute deadline.

    Accepts delta-seconds or an HTTP-date. Missing or unparseable values fall
    back to five minutes from now.
    """
    if value:
        raw = value.strip()
        try:
            seconds = float(raw)
        except ValueError:
            seconds = None
        if seconds is not None and seconds >= 0:
            try:
                return now + timedelta(seconds=seconds)
            except OverflowError:
                LOGGER.debug("Retry-After %s is out of range, using the default wait.", raw)
                return now + DEFAULT_RETRY_AFTER
        try:
            parsed = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=UTC)
            return parsed
    return now + DEFAULT_RETRY_AFTER


def wait_from_headers(headers: Mapping[str, str], now: datetime) -> datetime | None:
    """Return the reset instant when x-ratelimit-* headers say the quota is nearly spent."""

    lowered = {key.lower(): value for key, value in headers.items()}
    remaining_raw = lowered.get("x-ratelimit-remaining")
    reset_raw = lowered.get("x-ratelimit-reset")
    if remaining_raw is None or reset_raw is None:
        return None
    try:
        remaining = float(remaining_raw)
        reset = float(reset_raw)
    except ValueError:
        return None
    if remaining > 1:
        return None
    try:
        wait_until = datetime.fromtimestamp(reset, UTC)
    except (OverflowError, OSError, ValueError):
        return None
    if wait_until <= now:
        return None
    return wait_until


class DomainThrottle:
    """Advisory gate deciding whether a domain may be fetched right now."""

    def __init__(
        self,
        client: Redis,
        *,
        default_delay_seconds: float = 10.0,
        domain_delays: Mapping[str, float] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._default_delay_ms = int(default_delay_seconds * 1000)
        self._domain_delays_ms = {
            domain.lower(): int(seconds * 1000) for domain, seconds in (domain_delays or {}).items()
        }
        self._clock = clock

    def now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), UTC)

    def delay_for(self, domain: str, policy: RateLimitPolicy | None = None) -> int:
        """Spacing in milliseconds: strategy policy, then domain override, then default."""

        if policy is not None:
            return policy.pick_delay_ms()
        host = domain.lower()
        while host:
            if host in self._domain_delays_ms:
                return self._domain_delays_ms[host]
            _, _, host = host.partition(".")
        return self._default_delay_ms

    async def can_proceed(
        self,
        domain: str,
        strategy: str | None = None,
        policy: RateLimitPolicy | None = None,
    ) -> bool:
        """Return False while a cooldown is active or the last attempt is too recent."""

        now_ms = self._clock() * 1000
        for key in self._cooldown_keys(domain, strategy):
            raw = await self._client.get(key)
            if raw is None:
                continue
            try:
                until_ms = float(raw)
            except ValueError:
                continue
            if now_ms < until_ms:
                LOGGER.debug("Domain %s cooling down for another %.0f ms.", domain, until_ms - now_ms)
                return False

        raw = await self._client.get(self._build_key(LAST_FETCH_PREFIX, domain, strategy))
        if raw is None:
            return True
        try:
            state = json.loads(raw)
            ready_at = float(state["attempted_at"]) + float(state["delay_ms"])
        except (TypeError, ValueError, KeyError):
            return True
        return now_ms >= ready_at

    async def mark_attempted(
        self,
        domain: str,
        strategy: str | None = None,
        policy: RateLimitPolicy | None = None,
    ) -> None:
        delay_ms = max(1, self.delay_for(domain, policy))
        state = {"attempted_at": int(self._clock() * 1000), "delay_ms": delay_ms}
        await self._client.set(
            self._build_key(LAST_FETCH_PREFIX, domain, strategy),
            json.dumps(state),
            px=delay_ms,
        )

    async def try_acquire(
        self,
        domain: str,
        strategy: str | None = None,
        policy: RateLimitPolicy | None = None,
    ) -> bool:
        """Check the gate and, when open, record this attempt."""

        if not await self.can_proceed(domain, strategy, policy):
            return False
        await self.mark_attempted(domain, strategy, policy)
        return True

    async def defer_until(
        self,
        domain: str,
        wait_until: datetime,
        strategy: str | None = None,
    ) -> bool:
        """
        Start a cooldown for the domain unless one is already running.

        Returns True when this call wrote the cooldown.
        """
        now = self.now()
        ttl_ms = max(1, int((wait_until - now).total_seconds() * 1000))
        written = await self._client.set(
            self._build_key(RATE_LIMIT_PREFIX, domain, strategy),
            str(int(wait_until.timestamp() * 1000)),
            px=ttl_ms,
            nx=True,
        )
        if written:
            LOGGER.warning("Rate limiting domain %s until %s.", domain, wait_until.isoformat())
        return bool(written)

    async def cooldown_until(self, domain: str, strategy: str | None = None) -> datetime | None:
        raw = await self._client.get(self._build_key(RATE_LIMIT_PREFIX, domain, strategy))
        if raw is None:
            return None
        try:
            return datetime.fromtimestamp(float(raw) / 1000, UTC)
        except (OverflowError, OSError, ValueError):
            return None

    def _cooldown_keys(self, domain: str, strategy: str | None) -> list[str]:
        keys = [self._build_key(RATE_LIMIT_PREFIX, domain, None)]
        if strategy:
            keys.append(self._build_key(RATE_LIMIT_PREFIX, domain, strategy))
        return keys

    @staticmethod
    def _build_key(prefix: str, domain: str, strategy: str | None) -> str:
        if strategy:
            return f"{prefix}:{domain}:{strategy}"
        return f"{prefix}:{domain}"


__all__ = [
    "DEFAULT_RETRY_AFTER",
    "DomainThrottle",
    "RateLimitPolicy",
    "domain_of",
    "parse_retry_after",
    "wait_from_headers",
]
