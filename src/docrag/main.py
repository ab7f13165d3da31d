"""
Pipeline Application Entry Point

This module wires the pipeline components together from explicit resource
handles and manages their lifecycle.

Design Goals
------------
- Deterministic startup: schema created before the first request
- One connection pool and one extraction thread pool per process
- Every component receives its dependencies explicitly (test-friendly)
- Graceful shutdown: signal in-flight work, then release pools
"""

from __future__ import annotations

import asyncio
import logging
import signal
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import AsyncIterator, Optional

from .config import Settings, settings as default_settings
from .core.shutdown import ShutdownToken
from .db import Database, EmbeddingCacheStore
from .embeddings.embedder import Embedder
from .extraction.extractors import DocumentExtractor
from .extraction.router import FormatRouter
from .fetch.fetcher import DocumentFetcher
from .pipeline import DocumentPipeline

logger = logging.getLogger("docrag.app")


# ---------------------------------------------------------------------
# Pipeline Factory (Test-Friendly)
# ---------------------------------------------------------------------

def create_pipeline(
    database: Database,
    *,
    settings: Optional[Settings] = None,
    executor: Optional[Executor] = None,
    shutdown: Optional[ShutdownToken] = None,
    embedder: Optional[Embedder] = None,
    fetcher: Optional[DocumentFetcher] = None,
    extractor: Optional[DocumentExtractor] = None,
) -> DocumentPipeline:
    """
    Build a DocumentPipeline around an existing database handle.

    Any component may be supplied directly, which is how tests substitute
    fakes for the embedding provider, fetcher or extraction tools.
    """
    cfg = settings or default_settings
    work_dir = Path(cfg.work_dir)

    extractor = extractor or DocumentExtractor.from_settings(cfg, executor=executor)
    fetcher = fetcher or DocumentFetcher(
        work_dir / "downloads",
        timeout=cfg.fetch_timeout,
        max_bytes=cfg.fetch_max_bytes,
    )
    embedder = embedder or Embedder(
        api_key=cfg.openai_api_key.get_secret_value(),
        model=cfg.embedding_model,
        base_url=cfg.embedding_api_url,
        timeout=cfg.embedding_timeout,
        max_concurrency=cfg.embedding_concurrency,
    )

    return DocumentPipeline(
        EmbeddingCacheStore(database),
        embedder,
        fetcher,
        FormatRouter(extractor),
        shutdown=shutdown,
        chunk_max_chars=cfg.chunk_max_chars,
    )


# ---------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------

@asynccontextmanager
async def pipeline_lifespan(
    settings: Optional[Settings] = None,
    install_signal_handlers: bool = True,
) -> AsyncIterator[DocumentPipeline]:
    """
    Open every process-wide resource, yield a ready pipeline, release all.

    SIGINT/SIGTERM trigger the shutdown token, which aborts in-flight
    ingestion without committing partial cache batches.
    """
    cfg = settings or default_settings
    logger.info("Starting docrag pipeline")

    database = Database.from_settings(cfg)
    executor = ThreadPoolExecutor(
        max_workers=cfg.worker_count,
        thread_name_prefix="docrag-extract",
    )
    shutdown = ShutdownToken()

    loop = asyncio.get_running_loop()
    installed = []
    if install_signal_handlers:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, shutdown.trigger, f"received {sig.name}")
                installed.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug("Signal handlers unavailable for %s", sig.name)

    try:
        await database.create_schema()
        logger.info("Database schema ready; %d extraction worker(s)", cfg.worker_count)
        yield create_pipeline(
            database,
            settings=cfg,
            executor=executor,
            shutdown=shutdown,
        )
    finally:
        logger.info("Shutting down docrag pipeline")
        shutdown.trigger("pipeline closing")
        for sig in installed:
            loop.remove_signal_handler(sig)
        await loop.run_in_executor(
            None, partial(executor.shutdown, wait=True, cancel_futures=True)
        )
        await database.dispose()
