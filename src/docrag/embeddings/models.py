"""
Embedding Data Models

Canonical models for cached document chunks and retrieval results.

Each CachedChunk corresponds to ONE persisted chunk of text and ONE
embedding vector. Retrieval results are per-query and never persisted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class DocumentStatus(str, Enum):
    UNPROCESSED = "unprocessed"
    EXTRACTED = "extracted"
    CACHED = "cached"


class CachedChunk(BaseModel):
    """
    A persisted chunk read back from the embedding cache.
    """

    document_key: str = Field(..., min_length=1)
    chunk_index: int = Field(..., ge=0)
    text: str
    embedding: List[float]
    created_at: Optional[datetime] = None

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
    )


class ScoredChunk(BaseModel):
    """A chunk paired with its similarity to the query vector."""

    chunk_index: int = Field(..., ge=0)
    text: str
    score: float

    model_config = ConfigDict(extra="forbid", frozen=True)


class RetrievalResult(BaseModel):
    """
    Ranked chunks for one query.

    Ordered by descending score (ties by ascending chunk index), at most
    `k` entries, every score at or above `threshold`.
    """

    document_key: str
    k: int = Field(..., ge=0)
    threshold: float
    chunks: List[ScoredChunk] = Field(default_factory=list)

    model_config = ConfigDict(extra="forbid", frozen=True)

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def texts(self) -> List[str]:
        return [c.text for c in self.chunks]


class DocumentRecord(BaseModel):
    document_key: str
    extension: Optional[str] = None
    status: DocumentStatus
    chunk_count: int = 0
    extraction_tool: Optional[str] = None
    degraded: bool = False

    model_config = ConfigDict(extra="forbid", frozen=True)


class IngestReport(BaseModel):
    """
    Outcome of an ingest call.

    `cache_hit` is True when the document was already cached and no
    extraction or embedding work ran.
    """

    document_key: str
    status: DocumentStatus
    chunk_count: int = Field(default=0, ge=0)
    embedded: int = Field(default=0, ge=0)
    cache_hit: bool = False
    degraded: bool = False
    extraction_tool: Optional[str] = None

    model_config = ConfigDict(extra="forbid")
