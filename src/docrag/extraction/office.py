"""
Office document conversion through LibreOffice.

Converted PDFs for known documents are cached under the work directory,
keyed by a hash of the document key; a valid cached PDF skips the
converter entirely.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

from .tools import StrPath, ToolError, run_tool

logger = logging.getLogger("docrag.extraction.office")

ToolRunner = Callable[..., Awaitable[bytes]]

PDF_MAGIC = b"%PDF"


def cache_name(document_key: str) -> str:
    return hashlib.sha256(document_key.encode("utf-8")).hexdigest()


def is_valid_pdf(path: Path) -> bool:
    try:
        with path.open("rb") as f:
            return f.read(len(PDF_MAGIC)) == PDF_MAGIC
    except OSError:
        return False


class OfficeConverter:
    """
    Convert DOCX/XLSX/PPTX (and images) to PDF with a headless LibreOffice.

    Parameters
    ----------
    cache_dir : Path
        Directory holding converted PDFs keyed by document.

    binary : str
        LibreOffice executable.

    timeout : float
        Seconds allowed per conversion.

    runner : ToolRunner
        Subprocess runner, replaceable in tests.
    """

    def __init__(
        self,
        cache_dir: Path,
        binary: str = "soffice",
        timeout: float = 300.0,
        runner: ToolRunner = run_tool,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.binary = binary
        self.timeout = timeout
        self._run = runner

    def cache_path(self, document_key: str) -> Path:
        return self.cache_dir / f"{cache_name(document_key)}.pdf"

    def cached_pdf(self, document_key: str) -> Optional[Path]:
        path = self.cache_path(document_key)
        if path.is_file() and path.stat().st_size > 0 and is_valid_pdf(path):
            return path
        return None

    async def to_pdf(self, source: Path, out_dir: Path) -> Path:
        """
        Convert `source` into `out_dir` and return the produced PDF path.

        Raises
        ------
        ToolError
            If LibreOffice fails or produces no PDF.
        """
        out_dir.mkdir(parents=True, exist_ok=True)

        # Separate profile per call; concurrent soffice instances otherwise
        # contend for the same user installation lock
        with tempfile.TemporaryDirectory(prefix="docrag-lo-profile-") as profile:
            args: Sequence[StrPath] = [
                f"-env:UserInstallation={Path(profile).as_uri()}",
                "--headless",
                "--convert-to",
                "pdf",
                "--outdir",
                out_dir,
                source,
            ]
            await self._run(self.binary, args, timeout=self.timeout)

        produced = out_dir / f"{source.stem}.pdf"
        if not produced.is_file() or not is_valid_pdf(produced):
            raise ToolError(self.binary, f"no PDF produced for {source.name}")
        return produced

    async def to_cached_pdf(self, source: Path, document_key: str) -> Path:
        """
        Return the cached PDF for `document_key`, converting on a miss.
        """
        cached = self.cached_pdf(document_key)
        if cached is not None:
            logger.info("Using cached PDF conversion for %s", document_key)
            return cached

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        destination = self.cache_path(document_key)

        # Convert inside the cache directory so the final rename is atomic
        with tempfile.TemporaryDirectory(dir=self.cache_dir, prefix=".convert-") as tmp:
            produced = await self.to_pdf(source, Path(tmp))
            os.replace(produced, destination)

        logger.info("Converted %s to PDF for %s", source.name, document_key)
        return destination
