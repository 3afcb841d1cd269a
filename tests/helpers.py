"""
Test doubles shared across test modules.
"""

from __future__ import annotations

import fnmatch
from collections.abc import AsyncIterator
from datetime import UTC, datetime


class MockRedisClient:
    """Minimal in-memory Redis replacement for async tests.

    Expiry arguments are recorded but not enforced; code under test compares
    timestamps against its own clock.
    """

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.expiries: dict[str, tuple[int | None, int | None]] = {}

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ex: int | None = None,
        px: int | None = None,
        nx: bool = False,
    ) -> bool | None:
        if nx and key in self._store:
            return None
        self._store[key] = value
        self.expiries[key] = (ex, px)
        return True

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)
        self.expiries.pop(key, None)

    async def scan_iter(self, match: str | None = None) -> AsyncIterator[str]:
        for key in list(self._store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    async def flushdb(self) -> None:
        self._store.clear()
        self.expiries.clear()


class FakeClock:
    """Settable epoch-seconds clock for DomainThrottle."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value

    def advance(self, seconds: float) -> None:
        self.value += seconds

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.value, UTC)


def naive(value: datetime | None) -> datetime | None:
    """Drop tzinfo after converting to UTC; SQLite returns naive datetimes."""

    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


__all__ = ["FakeClock", "MockRedisClient", "naive"]
