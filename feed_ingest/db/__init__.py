"""
Database toolkit exposing ORM models, repositories, and Redis-backed caches.
"""

from .models import Article, Base, Job, Source
from .repositories import ArticleRepository, BaseRepository, JobRepository, SourceRepository

__all__ = [
    "Article",
    "ArticleRepository",
    "Base",
    "BaseRepository",
    "Job",
    "JobRepository",
    "Source",
    "SourceRepository",
]
