"""
Fetch and parse layer: throttling, redirects, HTTP fetching, and strategies.
"""

from .exceptions import FetchError, IngestionError, ParseError, RateLimitedError

__all__ = ["FetchError", "IngestionError", "ParseError", "RateLimitedError"]
