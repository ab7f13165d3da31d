"""
Pipeline Error Taxonomy

This module defines the typed failures surfaced by the ingestion, embedding
and retrieval pipeline, plus a reporter that turns any exception into a
standardized payload for the external gateway.

Design Goals
------------
- Every surfaced failure names the document key and the failing stage
- Stable, machine-readable error codes
- Never leak internal exception details for unexpected errors
- Log full stack traces internally for debugging
"""

from __future__ import annotations

import logging
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

logger = logging.getLogger("docrag.errors")


class ToolAttempt(NamedTuple):
    """One failed strategy in a fallback chain."""
    tool: str
    reason: str


# ---------------------------------------------------------------------
# Exception Hierarchy
# ---------------------------------------------------------------------

class PipelineError(Exception):
    """
    Base class for all typed pipeline failures.

    Parameters
    ----------
    message : str
        Human-readable description, safe to return to end users.

    document_key : Optional[str]
        Key of the document being processed, when known.

    stage : Optional[str]
        Pipeline stage that failed. Defaults to the class-level stage.
    """

    code: str = "pipeline_error"
    default_stage: str = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        document_key: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.document_key = document_key
        self.stage = stage or self.default_stage

    def __str__(self) -> str:
        if self.document_key:
            return f"{self.message} (document={self.document_key}, stage={self.stage})"
        return f"{self.message} (stage={self.stage})"


class FetchError(PipelineError):
    """Raised when a document cannot be retrieved from its source."""

    code = "fetch_failed"
    default_stage = "fetch"


class UnsupportedFormatError(PipelineError):
    """Raised when a document's extension is not in the supported set."""

    code = "unsupported_format"
    default_stage = "route"

    def __init__(self, extension: str, *, document_key: Optional[str] = None) -> None:
        self.extension = extension
        super().__init__(
            f"Unsupported document format: {extension or '<none>'!r}",
            document_key=document_key,
        )


class ExtractionToolFailure(PipelineError):
    """Raised when every fallback strategy for a format has been exhausted."""

    code = "extraction_failed"
    default_stage = "extract"

    def __init__(
        self,
        document_format: str,
        attempts: Sequence[ToolAttempt],
        *,
        document_key: Optional[str] = None,
    ) -> None:
        self.document_format = document_format
        self.attempts: Tuple[ToolAttempt, ...] = tuple(attempts)
        tried = ", ".join(a.tool for a in self.attempts) or "none"
        super().__init__(
            f"All {document_format} extraction strategies failed (tried: {tried})",
            document_key=document_key,
        )

    @property
    def tools(self) -> Tuple[str, ...]:
        return tuple(a.tool for a in self.attempts)


class EmbeddingAPIError(PipelineError):
    """
    Raised when the embedding provider fails for one input text.

    `index` is the position of the failing text in the batch passed to
    `Embedder.embed`; `None` for single-text calls such as combined queries.
    """

    code = "embedding_failed"
    default_stage = "embed"

    def __init__(
        self,
        message: str,
        *,
        index: Optional[int] = None,
        status_code: Optional[int] = None,
        document_key: Optional[str] = None,
    ) -> None:
        self.index = index
        self.status_code = status_code
        super().__init__(message, document_key=document_key)

    @property
    def rate_limited(self) -> bool:
        return self.status_code == 429


class CacheStoreError(PipelineError):
    """Raised when the persistence layer is unavailable or rejects a write."""

    code = "cache_store_failed"
    default_stage = "store"


class InvalidQueryError(PipelineError):
    """Raised when a retrieval request carries no usable question."""

    code = "invalid_query"
    default_stage = "retrieve"


class SimilarityDimensionError(PipelineError):
    """Raised when query and cached vectors differ in dimensionality."""

    code = "dimension_mismatch"
    default_stage = "retrieve"

    def __init__(
        self,
        expected: int,
        actual: int,
        *,
        document_key: Optional[str] = None,
    ) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Vector dimension mismatch: expected {expected}, got {actual}",
            document_key=document_key,
        )


class OperationCancelled(PipelineError):
    """Raised when the shutdown signal fires while work is in flight."""

    code = "cancelled"
    default_stage = "shutdown"


# ---------------------------------------------------------------------
# Public Error Reporter
# ---------------------------------------------------------------------

def error_payload(exc: BaseException) -> Dict[str, Any]:
    """
    Build the standardized error payload for an exception.

    Behavior
    --------
    - Typed pipeline errors expose their code, message, document key and
      stage, logged at ERROR level.
    - Any other exception is logged with its full traceback and reported
      as a generic internal error with no internal details.

    Parameters
    ----------
    exc : BaseException
        The exception to report.

    Returns
    -------
    Dict[str, Any]
        A JSON-serializable error payload.
    """
    if isinstance(exc, PipelineError):
        logger.error(
            "Pipeline failure [%s] at stage %s for %s: %s",
            exc.code,
            exc.stage,
            exc.document_key or "<unknown>",
            exc.message,
        )
        payload: Dict[str, Any] = {
            "error": exc.code,
            "detail": exc.message,
            "document_key": exc.document_key,
            "stage": exc.stage,
        }
        if isinstance(exc, ExtractionToolFailure):
            payload["tools"] = list(exc.tools)
        return payload

    logger.exception("Unhandled pipeline exception", exc_info=exc)

    return {
        "error": "internal_error",
        "detail": "Internal error",
        "document_key": None,
        "stage": None,
    }
