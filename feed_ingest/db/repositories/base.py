"""
Base repository class with shared utilities.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """
    Base class for all repositories.

    Holds the session and builds dialect-specific INSERT statements so that
    ON CONFLICT clauses work against both PostgreSQL and the SQLite test engine.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    def session(self) -> AsyncSession:
        """Expose the underlying session for transaction management."""
        return self._session

    def _insert(self, model: Any) -> Any:
        """Return an INSERT construct supporting on_conflict_* for the bound dialect."""

        if self._session.get_bind().dialect.name == "sqlite":
            return sqlite.insert(model)
        return postgresql.insert(model)


__all__ = ["BaseRepository"]
