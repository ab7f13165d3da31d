"""
Format-specific extractors.

Each public `extract_*` method builds the fallback chain for one format and
runs it. CPU-bound library work (PyMuPDF) is offloaded to the extraction
thread pool; external tools run as subprocesses.

Chains
------
- pdf:  pymupdf (parallel when large) -> pdftotext -> qpdf repair -> ocr
- docx/xlsx: LibreOffice -> PDF (cached per document), then the pdf chain
- pptx: slide images -> ocr
- jpeg/png: ocr
- txt:  utf-8 -> latin-1
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TypeVar

from ..config import Settings
from ..core.errors import ToolAttempt
from .chain import ExtractionResult, FallbackChain, Strategy
from .ocr import OcrPipeline
from .office import OfficeConverter, ToolRunner
from .pdf import clean_text, count_pages, extract_page_range
from .splitter import extract_parallel
from .tools import ToolError, run_tool

logger = logging.getLogger("docrag.extraction")

T = TypeVar("T")


class DocumentExtractor:
    """
    Produce plain text from a local document file.

    Parameters
    ----------
    converter : OfficeConverter
        LibreOffice conversion with its per-document PDF cache.

    ocr : OcrPipeline
        Rasterization and text recognition.

    executor : Optional[Executor]
        Thread pool for CPU-bound extraction. None uses the loop default.

    workers : int
        Number of page ranges used for large PDFs.

    parallel_min_pages : int
        Page count from which PDFs are split across workers.

    estimation_fallback : bool
        Return degraded results instead of failing on chain exhaustion.
    """

    def __init__(
        self,
        converter: OfficeConverter,
        ocr: OcrPipeline,
        *,
        executor: Optional[Executor] = None,
        workers: int = 1,
        parallel_min_pages: int = 16,
        estimation_fallback: bool = False,
        pdftotext_binary: str = "pdftotext",
        qpdf_binary: str = "qpdf",
        tool_timeout: float = 300.0,
        runner: ToolRunner = run_tool,
    ) -> None:
        self.converter = converter
        self.ocr = ocr
        self.executor = executor
        self.workers = max(1, workers)
        self.parallel_min_pages = parallel_min_pages
        self.estimation_fallback = estimation_fallback
        self.pdftotext_binary = pdftotext_binary
        self.qpdf_binary = qpdf_binary
        self.tool_timeout = tool_timeout
        self._run = runner

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        executor: Optional[Executor] = None,
        runner: ToolRunner = run_tool,
    ) -> "DocumentExtractor":
        converter = OfficeConverter(
            Path(settings.work_dir) / "converted",
            binary=settings.soffice_binary,
            timeout=settings.tool_timeout,
            runner=runner,
        )
        ocr = OcrPipeline(
            converter,
            convert_binary=settings.convert_binary,
            pdftoppm_binary=settings.pdftoppm_binary,
            ocr_binary=settings.ocr_binary,
            dpi=settings.ocr_dpi,
            timeout=settings.tool_timeout,
            max_parallel=settings.worker_count,
            runner=runner,
        )
        return cls(
            converter,
            ocr,
            executor=executor,
            workers=settings.worker_count,
            parallel_min_pages=settings.parallel_pdf_min_pages,
            estimation_fallback=settings.estimation_fallback,
            pdftotext_binary=settings.pdftotext_binary,
            qpdf_binary=settings.qpdf_binary,
            tool_timeout=settings.tool_timeout,
            runner=runner,
        )

    # ------------------------------------------------------------------
    # Format entry points
    # ------------------------------------------------------------------

    async def extract_pdf(
        self,
        path: Path,
        document_key: str,
        document_format: str = "pdf",
        prior_attempts: Sequence[ToolAttempt] = (),
    ) -> ExtractionResult:
        chain = self._chain(
            document_format,
            [
                Strategy("pymupdf", self._pymupdf),
                Strategy("pdftotext", self._pdftotext),
                Strategy("qpdf-repair", self._qpdf_repair),
                Strategy("ocr", self.ocr.ocr_pdf),
            ],
        )
        return await chain.run(path, document_key, prior_attempts)

    async def extract_office(
        self,
        path: Path,
        document_key: str,
        document_format: str,
    ) -> ExtractionResult:
        try:
            pdf_path = await self.converter.to_cached_pdf(path, document_key)
        except ToolError as exc:
            logger.warning(
                "%s conversion failed for %s: %s",
                document_format,
                document_key,
                exc.reason,
            )
            return self._chain(document_format, []).exhausted(
                path,
                document_key,
                [ToolAttempt(exc.tool, exc.reason)],
            )
        return await self.extract_pdf(pdf_path, document_key, document_format)

    async def extract_pptx(self, path: Path, document_key: str) -> ExtractionResult:
        chain = self._chain(
            "pptx",
            [Strategy("slide-ocr", lambda p: self.ocr.ocr_document(p, label="Slide"))],
        )
        return await chain.run(path, document_key)

    async def extract_image(
        self,
        path: Path,
        document_key: str,
        document_format: str,
    ) -> ExtractionResult:
        chain = self._chain(document_format, [Strategy("ocr", self.ocr.ocr_document)])
        return await chain.run(path, document_key)

    async def extract_txt(self, path: Path, document_key: str) -> ExtractionResult:
        chain = self._chain(
            "txt",
            [
                Strategy("utf-8", lambda p: self._read_text(p, "utf-8")),
                Strategy("latin-1", lambda p: self._read_text(p, "latin-1")),
            ],
        )
        return await chain.run(path, document_key)

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _pymupdf(self, path: Path) -> str:
        total = await self._run_cpu(count_pages, path)
        if total == 0:
            raise ToolError("pymupdf", "document has no pages")

        if self.workers > 1 and total >= self.parallel_min_pages:
            raw = await extract_parallel(
                path,
                total,
                self.workers,
                extract_page_range,
                self.executor,
            )
        else:
            raw = await self._run_cpu(extract_page_range, path, 1, total)
        return clean_text(raw)

    async def _pdftotext(self, path: Path) -> str:
        stdout = await self._run(
            self.pdftotext_binary,
            ["-layout", "-enc", "UTF-8", path, "-"],
            timeout=self.tool_timeout,
        )
        return clean_text(stdout.decode("utf-8", errors="replace"))

    async def _qpdf_repair(self, path: Path) -> str:
        with tempfile.TemporaryDirectory(prefix="docrag-qpdf-") as tmp:
            repaired = Path(tmp) / "repaired.pdf"
            await self._run(
                self.qpdf_binary,
                ["--warning-exit-0", path, repaired],
                timeout=self.tool_timeout,
            )
            return await self._pymupdf(repaired)

    async def _read_text(self, path: Path, encoding: str) -> str:
        try:
            data = await self._run_cpu(path.read_bytes)
        except OSError as exc:
            raise ToolError(encoding, f"cannot read file: {exc}") from exc
        try:
            return data.decode(encoding)
        except UnicodeDecodeError as exc:
            raise ToolError(encoding, f"decode failed at byte {exc.start}") from exc

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _chain(self, document_format: str, strategies: Sequence[Strategy]) -> FallbackChain:
        return FallbackChain(
            document_format,
            strategies,
            estimation_fallback=self.estimation_fallback,
        )

    async def _run_cpu(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self.executor, fn, *args)
