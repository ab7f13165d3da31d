"""
PyMuPDF text extraction.

These functions are synchronous and CPU-bound; callers run them on the
extraction thread pool. Each call opens its own document handle, so page
ranges of the same file can be extracted concurrently.
"""

from __future__ import annotations

from pathlib import Path
from typing import Union

import fitz  # PyMuPDF

from .tools import ToolError

TOOL_NAME = "pymupdf"


def clean_text(text: str) -> str:
    """Trim every line and drop blank ones, keeping line structure."""
    lines = (line.strip() for line in text.splitlines())
    return "\n".join(line for line in lines if line)


def count_pages(path: Union[str, Path]) -> int:
    try:
        with fitz.open(str(path)) as doc:
            return doc.page_count
    except (RuntimeError, ValueError) as exc:
        raise ToolError(TOOL_NAME, f"cannot open PDF: {exc}") from exc


def extract_page_range(path: Union[str, Path], start: int, end: int) -> str:
    """
    Extract raw text of pages `start`..`end` (1-indexed, inclusive).
    """
    try:
        with fitz.open(str(path)) as doc:
            if start < 1 or end > doc.page_count or start > end:
                raise ToolError(
                    TOOL_NAME,
                    f"page range {start}-{end} outside document of {doc.page_count} pages",
                )
            return "\n".join(doc[i].get_text() for i in range(start - 1, end))
    except ToolError:
        raise
    except (RuntimeError, ValueError) as exc:
        raise ToolError(TOOL_NAME, f"pages {start}-{end}: {exc}") from exc
