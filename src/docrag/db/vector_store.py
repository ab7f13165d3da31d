"""
Embedding Cache Store

Persistent mapping (document key, chunk index) -> chunk text + embedding.

Concurrency model
-----------------
No application-level locks. Two requests racing to cache the same document
are arbitrated by the (document_key, chunk_index) uniqueness constraint:
the losing transaction rolls back in full and the conflict is reported as
"already cached" after re-reading, never as a fatal error.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import CacheStoreError
from ..embeddings.chunker import TextChunk
from ..embeddings.models import CachedChunk, DocumentRecord, DocumentStatus
from .models import Document, DocumentChunk
from .session import Database

logger = logging.getLogger("docrag.store")

# A conflict on the document row alone (no chunks yet) is retried once
_MAX_INSERT_ATTEMPTS = 2


class EmbeddingCacheStore:
    """
    Database-backed embedding cache.

    Parameters
    ----------
    database : Database
        Process-wide connection pool handle.
    """

    def __init__(self, database: Database) -> None:
        self._db = database

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def has_embeddings(self, document_key: str) -> bool:
        """
        Return True if the document's chunks are cached.

        Batches are inserted atomically, so one row implies all rows.
        """
        stmt = (
            select(DocumentChunk.id)
            .where(DocumentChunk.document_key == document_key)
            .limit(1)
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                return result.first() is not None
        except SQLAlchemyError as exc:
            raise CacheStoreError(
                f"Cache lookup failed: {type(exc).__name__}",
                document_key=document_key,
            ) from exc

    async def get_chunks(self, document_key: str) -> List[CachedChunk]:
        """
        Return the document's cached chunks ordered by chunk index.
        """
        stmt = (
            select(DocumentChunk)
            .where(DocumentChunk.document_key == document_key)
            .order_by(DocumentChunk.chunk_index)
        )
        try:
            async with self._db.session() as session:
                result = await session.execute(stmt)
                rows = result.scalars().all()
        except SQLAlchemyError as exc:
            raise CacheStoreError(
                f"Chunk read failed: {type(exc).__name__}",
                document_key=document_key,
            ) from exc

        return [
            CachedChunk(
                document_key=row.document_key,
                chunk_index=row.chunk_index,
                text=row.chunk_text,
                embedding=np.asarray(row.embedding, dtype=float).tolist(),
                created_at=row.created_at,
            )
            for row in rows
        ]

    async def get_document(self, document_key: str) -> Optional[DocumentRecord]:
        try:
            async with self._db.session() as session:
                doc = await self._load_document(session, document_key)
        except SQLAlchemyError as exc:
            raise CacheStoreError(
                f"Document read failed: {type(exc).__name__}",
                document_key=document_key,
            ) from exc

        if doc is None:
            return None
        return DocumentRecord(
            document_key=doc.document_key,
            extension=doc.extension,
            status=DocumentStatus(doc.status),
            chunk_count=doc.chunk_count,
            extraction_tool=doc.extraction_tool,
            degraded=doc.degraded,
        )

    async def get_stats(self) -> dict:
        """
        Return totals for diagnostics.
        """
        try:
            async with self._db.session() as session:
                documents = (
                    await session.execute(select(func.count()).select_from(Document))
                ).scalar() or 0
                cached = (
                    await session.execute(
                        select(func.count())
                        .select_from(Document)
                        .where(Document.status == DocumentStatus.CACHED.value)
                    )
                ).scalar() or 0
                chunks = (
                    await session.execute(select(func.count()).select_from(DocumentChunk))
                ).scalar() or 0
        except SQLAlchemyError as exc:
            raise CacheStoreError(f"Stats query failed: {type(exc).__name__}") from exc

        return {
            "total_documents": documents,
            "cached_documents": cached,
            "total_chunks": chunks,
        }

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def register_document(
        self,
        document_key: str,
        extension: Optional[str] = None,
    ) -> None:
        """
        Create the document record on first reference; no-op afterwards.
        """
        try:
            async with self._db.session() as session:
                doc = await self._load_document(session, document_key)
                if doc is None:
                    session.add(
                        Document(
                            document_key=document_key,
                            extension=extension,
                            status=DocumentStatus.UNPROCESSED.value,
                        )
                    )
                elif extension and not doc.extension:
                    doc.extension = extension
        except IntegrityError:
            # Registered concurrently by another request
            logger.debug("Document %s registered concurrently", document_key)
        except SQLAlchemyError as exc:
            raise CacheStoreError(
                f"Document registration failed: {type(exc).__name__}",
                document_key=document_key,
            ) from exc

    async def mark_extracted(
        self,
        document_key: str,
        chunk_count: int,
        extraction_tool: str,
        degraded: bool = False,
        extension: Optional[str] = None,
    ) -> None:
        """
        Record extraction results unless the document is already cached.

        The status guard is part of the UPDATE itself, so a batch insert
        committed concurrently is never downgraded.
        """
        values = {
            "status": DocumentStatus.EXTRACTED.value,
            "chunk_count": chunk_count,
            "extraction_tool": extraction_tool,
            "degraded": degraded,
        }
        if extension:
            values["extension"] = extension

        stmt = (
            update(Document)
            .where(
                Document.document_key == document_key,
                Document.status != DocumentStatus.CACHED.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            async with self._db.session() as session:
                if await self._load_document(session, document_key) is None:
                    session.add(
                        Document(
                            document_key=document_key,
                            status=DocumentStatus.UNPROCESSED.value,
                        )
                    )
                    await session.flush()
                await session.execute(stmt)
        except SQLAlchemyError as exc:
            raise CacheStoreError(
                f"Status update failed: {type(exc).__name__}",
                document_key=document_key,
            ) from exc

    async def batch_insert(
        self,
        document_key: str,
        chunks: Sequence[TextChunk],
        embeddings: Sequence[Sequence[float]],
    ) -> bool:
        """
        Persist every chunk of a document in one transaction.

        Parameters
        ----------
        document_key : str
            Document the chunks belong to.

        chunks : Sequence[TextChunk]
            Chunks with contiguous indices `0..n-1`.

        embeddings : Sequence[Sequence[float]]
            One vector per chunk, aligned with `chunks`.

        Returns
        -------
        bool
            True if this call stored the batch, False if the document was
            already cached (by an earlier or concurrent request).

        Raises
        ------
        CacheStoreError
            On invalid input or storage failure. Nothing is committed.
        """
        self._validate_batch(document_key, chunks, embeddings)

        for attempt in range(1, _MAX_INSERT_ATTEMPTS + 1):
            try:
                async with self._db.session() as session:
                    await self._insert(session, document_key, chunks, embeddings)
            except IntegrityError:
                if await self.has_embeddings(document_key):
                    logger.warning(
                        "Insert conflict for %s: already cached by another request",
                        document_key,
                    )
                    return False
                logger.warning(
                    "Insert conflict on document row for %s (attempt %d)",
                    document_key,
                    attempt,
                )
                continue
            except SQLAlchemyError as exc:
                raise CacheStoreError(
                    f"Batch insert failed: {type(exc).__name__}",
                    document_key=document_key,
                ) from exc

            logger.info("Cached %d chunk(s) for %s", len(chunks), document_key)
            return True

        raise CacheStoreError(
            "Batch insert kept conflicting without cached rows",
            document_key=document_key,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    async def _load_document(session: AsyncSession, document_key: str) -> Optional[Document]:
        result = await session.execute(
            select(Document).where(Document.document_key == document_key)
        )
        return result.scalar_one_or_none()

    async def _insert(
        self,
        session: AsyncSession,
        document_key: str,
        chunks: Sequence[TextChunk],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        doc = await self._load_document(session, document_key)
        if doc is None:
            doc = Document(document_key=document_key)
            session.add(doc)
            await session.flush()

        session.add_all(
            [
                DocumentChunk(
                    document_key=document_key,
                    chunk_index=chunk.index,
                    chunk_text=chunk.text,
                    embedding=[float(x) for x in vector],
                )
                for chunk, vector in zip(chunks, embeddings)
            ]
        )
        doc.status = DocumentStatus.CACHED.value
        doc.chunk_count = len(chunks)
        await session.flush()

    @staticmethod
    def _validate_batch(
        document_key: str,
        chunks: Sequence[TextChunk],
        embeddings: Sequence[Sequence[float]],
    ) -> None:
        if not chunks:
            raise CacheStoreError("Cannot cache an empty batch", document_key=document_key)

        if len(chunks) != len(embeddings):
            raise CacheStoreError(
                f"Chunk count {len(chunks)} does not match embedding count {len(embeddings)}",
                document_key=document_key,
            )

        indices = sorted(chunk.index for chunk in chunks)
        if indices != list(range(len(chunks))):
            raise CacheStoreError(
                "Chunk indices must form a contiguous range starting at 0",
                document_key=document_key,
            )

        dim = len(embeddings[0])
        if dim == 0 or any(len(v) != dim for v in embeddings):
            raise CacheStoreError(
                "Embedding vectors must be non-empty and share one dimension",
                document_key=document_key,
            )
