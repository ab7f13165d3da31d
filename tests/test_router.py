from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from docrag.core.errors import UnsupportedFormatError
from docrag.extraction.chain import ExtractionResult
from docrag.extraction.extractors import DocumentExtractor
from docrag.extraction.router import DocumentFormat, FormatRouter, resolve_format


@pytest.fixture
def extractor():
    mock = AsyncMock(spec=DocumentExtractor)
    result = ExtractionResult(text="text", tool="fake")
    for name in ("extract_pdf", "extract_office", "extract_pptx", "extract_image", "extract_txt"):
        getattr(mock, name).return_value = result
    return mock


@pytest.mark.parametrize(
    "extension,expected",
    [
        ("pdf", DocumentFormat.PDF),
        (".PDF", DocumentFormat.PDF),
        ("docx", DocumentFormat.DOCX),
        ("xlsx", DocumentFormat.XLSX),
        ("pptx", DocumentFormat.PPTX),
        ("jpeg", DocumentFormat.JPEG),
        ("jpg", DocumentFormat.JPEG),
        ("png", DocumentFormat.PNG),
        ("txt", DocumentFormat.TXT),
    ],
)
def test_resolve_supported_formats(extension, expected):
    assert resolve_format(extension) is expected


@pytest.mark.parametrize("extension", ["bmp", "doc", "", "tar.gz"])
def test_resolve_unsupported_formats(extension):
    with pytest.raises(UnsupportedFormatError) as exc_info:
        resolve_format(extension, document_key="scan.bmp")
    assert exc_info.value.document_key == "scan.bmp"
    assert exc_info.value.stage == "route"


@pytest.mark.asyncio
async def test_unsupported_extension_invokes_no_extractor(extractor):
    router = FormatRouter(extractor)

    with pytest.raises(UnsupportedFormatError):
        await router.extract(Path("/data/scan.bmp"), "scan.bmp")

    for name in ("extract_pdf", "extract_office", "extract_pptx", "extract_image", "extract_txt"):
        getattr(extractor, name).assert_not_awaited()


@pytest.mark.asyncio
async def test_routes_office_and_image_formats(extractor):
    router = FormatRouter(extractor)

    await router.extract(Path("/data/report.docx"), "report.docx")
    extractor.extract_office.assert_awaited_once_with(
        Path("/data/report.docx"), "report.docx", document_format="docx"
    )

    await router.extract(Path("/data/photo.JPG"), "photo.JPG")
    extractor.extract_image.assert_awaited_once_with(
        Path("/data/photo.JPG"), "photo.JPG", document_format="jpeg"
    )


@pytest.mark.asyncio
async def test_declared_extension_wins_over_suffix(extractor):
    router = FormatRouter(extractor)

    await router.extract(Path("/downloads/abc123.bin"), "https://x/doc", extension="pdf")

    extractor.extract_pdf.assert_awaited_once_with(Path("/downloads/abc123.bin"), "https://x/doc")
