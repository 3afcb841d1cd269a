"""
Exception hierarchy for fetching and parsing feed sources.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class IngestionError(Exception):
    """Base exception for all ingestion errors."""

    def __init__(self, message: str, *, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context = context or {}


class FetchError(IngestionError):
    """Raised when remote content cannot be fetched or the upstream answered with an error."""


class RateLimitedError(FetchError):
    """Raised when the upstream asked us to back off (HTTP 429)."""

    def __init__(
        self,
        message: str,
        *,
        wait_until: datetime,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context=context)
        self.wait_until = wait_until


class ParseError(IngestionError):
    """Raised when a fetched payload cannot be parsed by the chosen strategy."""


__all__ = ["FetchError", "IngestionError", "ParseError", "RateLimitedError"]
