"""
OCR Pipeline

Sources (slides, images, scanned PDFs) are rasterized to normalized page
images and then run through a dedicated text-recognition engine.

Rasterization fallback order
----------------------------
1. ImageMagick direct conversion at the configured density, flattening
   transparency onto a white background.
2. LibreOffice render to PDF, then poppler `pdftoppm` page images.

Recognized pages keep their original order in the output text.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import List, Optional

from .office import OfficeConverter, ToolRunner
from .tools import ToolError, collect_images, run_tool

logger = logging.getLogger("docrag.extraction.ocr")


class OcrPipeline:
    """
    Rasterize documents and recognize their text.

    Parameters
    ----------
    converter : OfficeConverter
        Used for the LibreOffice rendering fallback.

    convert_binary, pdftoppm_binary, ocr_binary : str
        External tool executables.

    dpi : int
        Target resolution for rendered pages.

    timeout : float
        Seconds allowed per tool invocation.

    max_parallel : int
        Upper bound on pages recognized concurrently.

    runner : ToolRunner
        Subprocess runner, replaceable in tests.
    """

    def __init__(
        self,
        converter: OfficeConverter,
        *,
        convert_binary: str = "convert",
        pdftoppm_binary: str = "pdftoppm",
        ocr_binary: str = "ocrs",
        dpi: int = 150,
        timeout: float = 300.0,
        max_parallel: int = 1,
        runner: ToolRunner = run_tool,
    ) -> None:
        self.converter = converter
        self.convert_binary = convert_binary
        self.pdftoppm_binary = pdftoppm_binary
        self.ocr_binary = ocr_binary
        self.dpi = dpi
        self.timeout = timeout
        self.max_parallel = max(1, max_parallel)
        self._run = runner

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ocr_document(self, source: Path, label: Optional[str] = None) -> str:
        """
        Rasterize `source` and return the recognized text of every page.

        Parameters
        ----------
        source : Path
            Slide deck, image, or other renderable document.

        label : Optional[str]
            Section header word ("Slide", "Page"). When None, headers are
            only added for multi-page sources.

        Raises
        ------
        ToolError
            If rasterization fails on every path or no page yields text.
        """
        with tempfile.TemporaryDirectory(prefix="docrag-ocr-") as tmp:
            images = await self.rasterize(source, Path(tmp))
            return await self.recognize_pages(images, label)

    async def ocr_pdf(self, pdf_path: Path) -> str:
        """Render a PDF's pages and recognize them, for scanned documents."""
        with tempfile.TemporaryDirectory(prefix="docrag-ocr-") as tmp:
            images = await self.render_pdf(pdf_path, Path(tmp))
            return await self.recognize_pages(images, "Page")

    async def rasterize(self, source: Path, out_dir: Path) -> List[Path]:
        try:
            return await self._imagemagick(source, out_dir / "direct")
        except ToolError as direct_exc:
            logger.warning(
                "ImageMagick conversion failed for %s (%s); falling back to LibreOffice",
                source.name,
                direct_exc.reason,
            )
            try:
                return await self._office_render(source, out_dir / "office")
            except ToolError as office_exc:
                raise ToolError(
                    "rasterize",
                    f"{direct_exc}; {office_exc}",
                ) from office_exc

    async def render_pdf(self, pdf_path: Path, out_dir: Path) -> List[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        await self._run(
            self.pdftoppm_binary,
            ["-png", "-r", str(self.dpi), pdf_path, out_dir / "page"],
            timeout=self.timeout,
        )
        images = collect_images(out_dir)
        if not images:
            raise ToolError(self.pdftoppm_binary, f"no pages rendered from {pdf_path.name}")
        return images

    async def recognize(self, image: Path) -> str:
        stdout = await self._run(self.ocr_binary, [image], timeout=self.timeout)
        return stdout.decode("utf-8", errors="replace")

    async def recognize_pages(self, images: List[Path], label: Optional[str]) -> str:
        """
        Recognize pages concurrently and join them in page order.

        A page that fails recognition is logged and skipped.
        """
        semaphore = asyncio.Semaphore(self.max_parallel)

        async def _one(number: int, image: Path) -> Optional[str]:
            async with semaphore:
                try:
                    return await self.recognize(image)
                except ToolError as exc:
                    logger.warning("OCR failed for page %d (%s): %s", number, image.name, exc.reason)
                    return None

        texts = await asyncio.gather(
            *(_one(number, image) for number, image in enumerate(images, start=1))
        )

        with_headers = label is not None or len(images) > 1
        header = label or "Page"

        sections: List[str] = []
        for number, text in enumerate(texts, start=1):
            if text is None or not text.strip():
                continue
            if with_headers:
                sections.append(f"=== {header} {number} ===\n{text.strip()}")
            else:
                sections.append(text.strip())

        if not sections:
            raise ToolError(self.ocr_binary, "no text recognized on any page")

        logger.info("Recognized text on %d of %d page(s)", len(sections), len(images))
        return "\n\n".join(sections)

    # ------------------------------------------------------------------
    # Rasterization strategies
    # ------------------------------------------------------------------

    async def _imagemagick(self, source: Path, out_dir: Path) -> List[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        await self._run(
            self.convert_binary,
            [
                "-density", str(self.dpi),
                source,
                "-background", "white",
                "-alpha", "remove",
                "-alpha", "off",
                "-quality", "85",
                out_dir / "page-%03d.png",
            ],
            timeout=self.timeout,
        )
        images = collect_images(out_dir)
        if not images:
            raise ToolError(self.convert_binary, f"no images produced for {source.name}")
        return images

    async def _office_render(self, source: Path, out_dir: Path) -> List[Path]:
        pdf_path = await self.converter.to_pdf(source, out_dir)
        return await self.render_pdf(pdf_path, out_dir / "pages")
