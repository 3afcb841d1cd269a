"""
Repository classes for database access.

This module provides specialized repositories for different entity types:
- JobRepository: Rows of the durable job queue
- SourceRepository: Feed sources and their backoff state
- ArticleRepository: Upsert sink for parsed articles
"""

from .article import ArticleRepository
from .base import BaseRepository
from .job import JobRepository
from .source import SourceRepository

__all__ = ["ArticleRepository", "BaseRepository", "JobRepository", "SourceRepository"]
