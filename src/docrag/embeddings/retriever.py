"""
Similarity-ranked top-K retrieval over a document's cached chunks.
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

import numpy as np

from ..core.errors import SimilarityDimensionError
from ..db.vector_store import EmbeddingCacheStore
from .models import CachedChunk, RetrievalResult, ScoredChunk

logger = logging.getLogger("docrag.retriever")

DEFAULT_K = 10
DEFAULT_THRESHOLD = 0.5


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors; 0.0 when either has zero magnitude.

    Raises
    ------
    SimilarityDimensionError
        If the vectors differ in length.
    """
    if len(a) != len(b):
        raise SimilarityDimensionError(len(a), len(b))

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = math.sqrt(float(np.dot(va, va)))
    norm_b = math.sqrt(float(np.dot(vb, vb)))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return float(np.dot(va, vb)) / (norm_a * norm_b)


def rank_chunks(
    chunks: Sequence[CachedChunk],
    query_vector: Sequence[float],
    k: int = DEFAULT_K,
    threshold: float = DEFAULT_THRESHOLD,
    document_key: Optional[str] = None,
) -> List[ScoredChunk]:
    """
    Score every chunk against `query_vector` and keep the top `k`.

    Chunks scoring below `threshold` are dropped; ties are broken by
    ascending chunk index so rankings are deterministic.
    """
    if k < 0:
        raise ValueError("k must be >= 0")
    if k == 0 or not chunks:
        return []

    dim = len(query_vector)
    for chunk in chunks:
        if len(chunk.embedding) != dim:
            raise SimilarityDimensionError(
                dim,
                len(chunk.embedding),
                document_key=document_key or chunk.document_key,
            )

    query = np.asarray(query_vector, dtype=np.float64)
    matrix = np.asarray([c.embedding for c in chunks], dtype=np.float64)

    dots = matrix @ query
    denom = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)

    scored = [
        ScoredChunk(chunk_index=c.chunk_index, text=c.text, score=float(s))
        for c, s in zip(chunks, scores)
        if float(s) >= threshold
    ]
    scored.sort(key=lambda sc: (-sc.score, sc.chunk_index))
    return scored[:k]


class Retriever:
    """Read-only ranking over the embedding cache."""

    def __init__(self, store: EmbeddingCacheStore) -> None:
        self._store = store

    async def retrieve(
        self,
        document_key: str,
        query_vector: Sequence[float],
        k: int = DEFAULT_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> RetrievalResult:
        chunks = await self._store.get_chunks(document_key)
        ranked = rank_chunks(chunks, query_vector, k, threshold, document_key)

        logger.info(
            "Retrieved %d of %d chunk(s) for %s (k=%d, threshold=%.2f)",
            len(ranked),
            len(chunks),
            document_key,
            k,
            threshold,
        )
        return RetrievalResult(
            document_key=document_key,
            k=k,
            threshold=threshold,
            chunks=ranked,
        )
