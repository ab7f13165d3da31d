"""
SQLAlchemy Models

Defines the database schema for:
- Documents (registry of every referenced document and its status)
- Document chunks (chunk text + embedding vector, one row per chunk)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from pgvector.sqlalchemy import Vector


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


# ---------------------------------------------------------------------
# Document Model
# ---------------------------------------------------------------------

class Document(Base):
    """
    A referenced document, keyed by its URL or filename.
    """
    __tablename__ = "document"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    extension: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="unprocessed")
    chunk_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    extraction_tool: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    degraded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


# ---------------------------------------------------------------------
# Chunk Model
# ---------------------------------------------------------------------

class DocumentChunk(Base):
    """
    One chunk of a document's extracted text and its embedding.

    Uses pgvector on PostgreSQL; plain JSON on SQLite for tests.
    """
    __tablename__ = "document_chunk"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_key: Mapped[str] = mapped_column(
        Text,
        ForeignKey("document.document_key", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chunk_index: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    chunk_text: Mapped[str] = mapped_column(Text, nullable=False)

    # Dimension left open so the model can change without a migration
    embedding = Column(Vector().with_variant(JSON(), "sqlite"), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("document_key", "chunk_index", name="uq_chunk_document_index"),
        Index("idx_chunk_document_order", "document_key", "chunk_index"),
    )
