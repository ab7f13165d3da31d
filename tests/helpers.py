"""
Test helpers: scripted external-tool runner, PDF builder and extractor
wiring that never touches real conversion binaries.
"""

from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import fitz

from docrag.extraction.extractors import DocumentExtractor
from docrag.extraction.ocr import OcrPipeline
from docrag.extraction.office import OfficeConverter
from docrag.extraction.tools import ToolError

Handler = Callable[[List[str]], Awaitable[bytes]]


class FakeRunner:
    """
    Stand-in for `run_tool`.

    Each binary maps to an async handler receiving the stringified args.
    Binaries without a handler fail like a missing executable.
    """

    def __init__(self, handlers: Optional[Dict[str, Handler]] = None):
        self.handlers = dict(handlers or {})
        self.calls: List[Tuple[str, List[str]]] = []

    async def __call__(self, binary, args, *, timeout, cwd=None) -> bytes:
        argv = [str(a) for a in args]
        self.calls.append((binary, argv))
        handler = self.handlers.get(binary)
        if handler is None:
            raise ToolError(binary, "executable not found")
        return await handler(argv)

    def binaries(self) -> List[str]:
        return [binary for binary, _ in self.calls]


def write_pdf(path: Path, pages: Sequence[str]) -> Path:
    """Write a PDF with one line of text per page."""
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    doc.save(str(path))
    doc.close()
    return path


def make_extractor(work_dir: Path, runner: FakeRunner, **kwargs) -> DocumentExtractor:
    converter = OfficeConverter(work_dir / "converted", runner=runner)
    ocr = OcrPipeline(converter, runner=runner, max_parallel=4)
    return DocumentExtractor(converter, ocr, runner=runner, **kwargs)
