"""
Embedding Client

This module implements the embedding client used for both document chunks
and questions. It talks to the OpenAI embeddings API (or any compatible
provider) and is responsible for:

- Bounded concurrency: at most `max_concurrency` requests in flight
- Per-text failure isolation (one bad text never aborts its siblings)
- Strict response validation
- Combined-query embedding of several questions in one call

The client performs no caching; callers consult the embedding cache store
before asking for vectors.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence, Union

import httpx

from ..config import settings
from ..core.errors import EmbeddingAPIError, InvalidQueryError

logger = logging.getLogger("docrag.embedder")

COMBINED_QUERY_DELIMITER = "\n\n---\n\n"

Vector = List[float]


def combine_questions(questions: Sequence[str]) -> str:
    """
    Join several questions into one text for a single joint embedding.

    Raises
    ------
    InvalidQueryError
        If no non-blank question is given.
    """
    cleaned = [q.strip() for q in questions if q and q.strip()]
    if not cleaned:
        raise InvalidQueryError("At least one non-empty question is required")
    return COMBINED_QUERY_DELIMITER.join(cleaned)


class Embedder:
    """
    Asynchronous embedding generator with a fixed concurrency cap.

    Each input text is sent as its own request; a semaphore keeps at most
    `max_concurrency` of them in flight against the provider.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : Optional[str]
            Override for the provider API key. Defaults to settings.openai_api_key.

        model : Optional[str]
            Override for the embedding model. Defaults to settings.embedding_model.

        base_url : Optional[str]
            Embeddings endpoint. Defaults to settings.embedding_api_url.

        timeout : Optional[float]
            HTTP timeout for each request.

        max_concurrency : Optional[int]
            Maximum in-flight requests. Defaults to settings.embedding_concurrency.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom transport, used by tests to stub the provider.
        """
        self.api_key = api_key if api_key is not None else settings.openai_api_key.get_secret_value()
        self.model = model or settings.embedding_model
        self.base_url = base_url or settings.embedding_api_url
        self.timeout = timeout or settings.embedding_timeout
        self.max_concurrency = max(1, max_concurrency or settings.embedding_concurrency)
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        texts: Sequence[str],
        *,
        return_exceptions: bool = False,
    ) -> List[Union[Vector, EmbeddingAPIError]]:
        """
        Generate one embedding per input text, in input order.

        Parameters
        ----------
        texts : Sequence[str]
            Input texts. The sequence is only read, never modified.

        return_exceptions : bool
            When True, failed positions hold their EmbeddingAPIError and the
            successful vectors are still returned.

        Returns
        -------
        List[Vector]
            Vectors aligned with `texts`.

        Raises
        ------
        EmbeddingAPIError
            For the lowest failing index, once every sibling request has
            finished (only when `return_exceptions` is False).
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)
        limits = httpx.Limits(
            max_connections=self.max_concurrency,
            max_keepalive_connections=self.max_concurrency,
        )

        async with httpx.AsyncClient(
            timeout=self.timeout,
            limits=limits,
            transport=self._transport,
        ) as client:
            results = await asyncio.gather(
                *(
                    self._embed_one(client, semaphore, index, text)
                    for index, text in enumerate(texts)
                )
            )

        failures = [r for r in results if isinstance(r, EmbeddingAPIError)]
        if failures:
            logger.error(
                "%d of %d embedding requests failed (first failing index=%s)",
                len(failures),
                len(texts),
                failures[0].index,
            )
            if not return_exceptions:
                raise failures[0]

        return results

    async def embed_query(self, questions: Sequence[str]) -> Vector:
        """
        Embed one or more questions as a single combined query vector.
        """
        combined = combine_questions(questions)
        logger.info("Embedding combined query of %d question(s)", len(questions))
        [result] = await self.embed([combined], return_exceptions=True)
        if isinstance(result, EmbeddingAPIError):
            raise EmbeddingAPIError(
                f"Query embedding failed: {result.message}",
                status_code=result.status_code,
            ) from result
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _embed_one(
        self,
        client: httpx.AsyncClient,
        semaphore: asyncio.Semaphore,
        index: int,
        text: str,
    ) -> Union[Vector, EmbeddingAPIError]:
        payload = {"model": self.model, "input": text}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with semaphore:
            try:
                response = await client.post(self.base_url, json=payload, headers=headers)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                logger.warning(
                    "Embedding request %d rejected with HTTP %d%s",
                    index,
                    status,
                    " (rate limited)" if status == 429 else "",
                )
                return EmbeddingAPIError(
                    f"Embedding provider returned HTTP {status}",
                    index=index,
                    status_code=status,
                )
            except httpx.HTTPError as exc:
                logger.warning(
                    "Embedding request %d failed (%s): %s",
                    index,
                    type(exc).__name__,
                    str(exc),
                )
                return EmbeddingAPIError(
                    f"Embedding request failed: {type(exc).__name__}",
                    index=index,
                )

        try:
            return self._extract_embedding(response.json())
        except ValueError as exc:
            return EmbeddingAPIError(str(exc), index=index)

    @staticmethod
    def _extract_embedding(data: object) -> Vector:
        """
        Parse and validate a single-input embedding response.

        OpenAI returns:
            { "data": [ {"embedding": [...]} ] }

        Raises
        ------
        ValueError
            If the response has an unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise ValueError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list) or len(records) != 1:
            raise ValueError("'data' field must be a list with exactly one record.")

        record = records[0]
        if not isinstance(record, dict) or "embedding" not in record:
            raise ValueError(f"Malformed embedding record: {record!r}")

        emb = record["embedding"]
        if not isinstance(emb, list) or not emb or not all(
            isinstance(x, (float, int)) for x in emb
        ):
            raise ValueError("Invalid embedding vector: must be a non-empty float list.")

        return [float(x) for x in emb]
