"""
Document ingestion and retrieval pipeline.

Ingest: fetch -> route -> extract -> chunk -> embed -> cache.
Retrieve: combined question embedding -> rank cached chunks.

A cache hit short-circuits ingestion before any fetch, extraction or
embedding work. Concurrent first-time ingestion of the same document is not
de-duplicated up front; both requests may embed, and the cache store's
uniqueness constraint keeps exactly one batch.
"""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from .core.errors import EmbeddingAPIError, InvalidQueryError
from .core.shutdown import ShutdownToken
from .db.vector_store import EmbeddingCacheStore
from .embeddings.chunker import MAX_CHUNK_CHARS, chunk_text
from .embeddings.embedder import Embedder
from .embeddings.models import DocumentStatus, IngestReport, RetrievalResult
from .embeddings.retriever import DEFAULT_K, DEFAULT_THRESHOLD, Retriever
from .extraction.router import FormatRouter, normalize_extension
from .fetch.fetcher import DocumentFetcher

logger = logging.getLogger("docrag.pipeline")


class DocumentPipeline:
    def __init__(
        self,
        store: EmbeddingCacheStore,
        embedder: Embedder,
        fetcher: DocumentFetcher,
        router: FormatRouter,
        *,
        retriever: Optional[Retriever] = None,
        shutdown: Optional[ShutdownToken] = None,
        chunk_max_chars: int = MAX_CHUNK_CHARS,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.fetcher = fetcher
        self.router = router
        self.retriever = retriever or Retriever(store)
        self.shutdown = shutdown or ShutdownToken()
        self.chunk_max_chars = chunk_max_chars

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ingest(self, document_key: str) -> IngestReport:
        """
        Make sure `document_key` is extracted, embedded and cached.

        Idempotent: an already cached document returns immediately with
        `cache_hit=True` and triggers no provider calls.

        Raises
        ------
        FetchError, UnsupportedFormatError, ExtractionToolFailure,
        EmbeddingAPIError, CacheStoreError, OperationCancelled
        """
        return await self.shutdown.race(self._ingest(document_key), document_key)

    async def retrieve(
        self,
        document_key: str,
        questions: Sequence[str],
        k: int = DEFAULT_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> RetrievalResult:
        """
        Rank the document's cached chunks against the combined questions.

        Returns an empty result when nothing meets `threshold` or the
        document has no cached chunks.
        """
        return await self.shutdown.race(
            self._retrieve(document_key, questions, k, threshold),
            document_key,
        )

    async def run(
        self,
        document_key: str,
        questions: Sequence[str],
        k: int = DEFAULT_K,
        threshold: float = DEFAULT_THRESHOLD,
    ) -> RetrievalResult:
        """Ingest if needed, then retrieve context for the questions."""
        await self.ingest(document_key)
        return await self.retrieve(document_key, questions, k, threshold)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _ingest(self, document_key: str) -> IngestReport:
        if await self.store.has_embeddings(document_key):
            return await self._cache_hit(document_key)

        await self.store.register_document(document_key)

        self.shutdown.raise_if_set(document_key)
        fetched = await self.fetcher.fetch(document_key)
        try:
            extension = normalize_extension(fetched.extension)
            extract = self.router.route(fetched.path, extension, document_key)

            self.shutdown.raise_if_set(document_key)
            result = await extract(fetched.path, document_key)
        finally:
            self.fetcher.release(fetched)

        chunks = chunk_text(result.text, self.chunk_max_chars)
        logger.info(
            "Document %s: %d chunk(s) from %d chars via %s",
            document_key,
            len(chunks),
            len(result.text),
            result.tool,
        )
        await self.store.mark_extracted(
            document_key,
            chunk_count=len(chunks),
            extraction_tool=result.tool,
            degraded=result.degraded,
            extension=extension,
        )

        if not chunks:
            return IngestReport(
                document_key=document_key,
                status=DocumentStatus.EXTRACTED,
                degraded=result.degraded,
                extraction_tool=result.tool,
            )

        self.shutdown.raise_if_set(document_key)
        try:
            vectors = await self.embedder.embed([c.text for c in chunks])
        except EmbeddingAPIError as exc:
            exc.document_key = document_key
            raise

        self.shutdown.raise_if_set(document_key)
        inserted = await self.store.batch_insert(document_key, chunks, vectors)
        if not inserted:
            return await self._cache_hit(document_key, embedded=len(vectors))

        return IngestReport(
            document_key=document_key,
            status=DocumentStatus.CACHED,
            chunk_count=len(chunks),
            embedded=len(vectors),
            degraded=result.degraded,
            extraction_tool=result.tool,
        )

    async def _cache_hit(self, document_key: str, embedded: int = 0) -> IngestReport:
        record = await self.store.get_document(document_key)
        chunk_count = record.chunk_count if record else 0
        logger.info("Cache hit for %s (%d chunk(s))", document_key, chunk_count)
        return IngestReport(
            document_key=document_key,
            status=DocumentStatus.CACHED,
            chunk_count=chunk_count,
            embedded=embedded,
            cache_hit=True,
            extraction_tool=record.extraction_tool if record else None,
        )

    async def _retrieve(
        self,
        document_key: str,
        questions: Sequence[str],
        k: int,
        threshold: float,
    ) -> RetrievalResult:
        try:
            query_vector = await self.embedder.embed_query(questions)
        except (EmbeddingAPIError, InvalidQueryError) as exc:
            exc.document_key = document_key
            raise

        self.shutdown.raise_if_set(document_key)
        return await self.retriever.retrieve(document_key, query_vector, k, threshold)
