"""
Database Package

Provides the async SQLAlchemy connection handle, model definitions and the
embedding cache store for PostgreSQL with pgvector.
"""

from .session import Database
from .models import Base, Document, DocumentChunk
from .vector_store import EmbeddingCacheStore

__all__ = [
    "Database",
    "Base",
    "Document",
    "DocumentChunk",
    "EmbeddingCacheStore",
]
