"""Persistence repositories built on the shared SQLAlchemy session factory."""

from .artifacts import ArtifactRepository
from .distiller import DistillerRepository
from .documents import DocumentRepository, normalize_content
from .reports import ReportRepository
from .source_watch import SourceWatchRepository, normalize_source_url
from .topics import TopicRepository

__all__ = [
    "ArtifactRepository",
    "DistillerRepository",
    "DocumentRepository",
    "ReportRepository",
    "SourceWatchRepository",
    "TopicRepository",
    "normalize_content",
    "normalize_source_url",
]
