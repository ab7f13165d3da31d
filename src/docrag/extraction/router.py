"""
Format Router

Maps a file extension to the extractor entry point for that format.
Unknown extensions fail fast; there is no generic fallback extractor.
"""

from __future__ import annotations

from enum import Enum
from functools import partial
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

from ..core.errors import UnsupportedFormatError
from .chain import ExtractionResult
from .extractors import DocumentExtractor

ExtractFn = Callable[[Path, str], Awaitable[ExtractionResult]]


class DocumentFormat(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    XLSX = "xlsx"
    PPTX = "pptx"
    JPEG = "jpeg"
    PNG = "png"
    TXT = "txt"


_ALIASES: Dict[str, DocumentFormat] = {"jpg": DocumentFormat.JPEG}


def normalize_extension(extension: str) -> str:
    return extension.strip().lstrip(".").lower()


def resolve_format(extension: str, document_key: Optional[str] = None) -> DocumentFormat:
    """
    Resolve an extension ("pdf", ".PDF", "jpg") to a supported format.

    Raises
    ------
    UnsupportedFormatError
        If the extension is not supported.
    """
    ext = normalize_extension(extension)
    if ext in _ALIASES:
        return _ALIASES[ext]
    try:
        return DocumentFormat(ext)
    except ValueError:
        raise UnsupportedFormatError(ext, document_key=document_key) from None


class FormatRouter:
    """Dispatch documents to the matching DocumentExtractor entry point."""

    def __init__(self, extractor: DocumentExtractor) -> None:
        self._routes: Dict[DocumentFormat, ExtractFn] = {
            DocumentFormat.PDF: extractor.extract_pdf,
            DocumentFormat.DOCX: partial(extractor.extract_office, document_format="docx"),
            DocumentFormat.XLSX: partial(extractor.extract_office, document_format="xlsx"),
            DocumentFormat.PPTX: extractor.extract_pptx,
            DocumentFormat.JPEG: partial(extractor.extract_image, document_format="jpeg"),
            DocumentFormat.PNG: partial(extractor.extract_image, document_format="png"),
            DocumentFormat.TXT: extractor.extract_txt,
        }

    def route(
        self,
        path: Path,
        extension: Optional[str] = None,
        document_key: Optional[str] = None,
    ) -> ExtractFn:
        """
        Return the extraction entry point for `path`.

        The declared `extension` wins over the path suffix when given.
        """
        document_format = resolve_format(
            extension if extension is not None else path.suffix,
            document_key=document_key,
        )
        return self._routes[document_format]

    async def extract(
        self,
        path: Path,
        document_key: str,
        extension: Optional[str] = None,
    ) -> ExtractionResult:
        extract = self.route(path, extension, document_key)
        return await extract(path, document_key)
