from pathlib import Path

import pytest

from docrag.extraction.ocr import OcrPipeline
from docrag.extraction.office import OfficeConverter
from docrag.extraction.tools import ToolError, collect_images

from helpers import FakeRunner


def imagemagick_pages(count):
    async def handler(argv):
        out = Path(argv[-1]).parent
        for i in range(count):
            (out / f"page-{i:03d}.png").write_bytes(b"png")
        return b""
    return handler


async def ocr_by_name(argv):
    return f"text from {Path(argv[0]).name}\n".encode()


async def failing(argv):
    raise ToolError("convert", "no decode delegate")


async def soffice_writes_pdf(argv):
    out = Path(argv[argv.index("--outdir") + 1])
    source = Path(argv[-1])
    (out / f"{source.stem}.pdf").write_bytes(b"%PDF-1.4 rendered")
    return b""


async def pdftoppm_two_pages(argv):
    prefix = Path(argv[-1])
    for n in (1, 2):
        (prefix.parent / f"{prefix.name}-{n}.png").write_bytes(b"png")
    return b""


def make_pipeline(tmp_path, runner):
    converter = OfficeConverter(tmp_path / "converted", runner=runner)
    return OcrPipeline(converter, runner=runner, max_parallel=4)


@pytest.mark.asyncio
async def test_slides_keep_numeric_order(tmp_path):
    runner = FakeRunner({"convert": imagemagick_pages(11), "ocrs": ocr_by_name})
    deck = tmp_path / "deck.pptx"
    deck.write_bytes(b"pptx")

    text = await make_pipeline(tmp_path, runner).ocr_document(deck, label="Slide")

    headers = [line for line in text.splitlines() if line.startswith("=== ")]
    assert headers == [f"=== Slide {n} ===" for n in range(1, 12)]
    assert "=== Slide 10 ===\ntext from page-009.png" in text


@pytest.mark.asyncio
async def test_imagemagick_invocation(tmp_path):
    runner = FakeRunner({"convert": imagemagick_pages(1), "ocrs": ocr_by_name})
    image = tmp_path / "scan.png"
    image.write_bytes(b"png")

    text = await make_pipeline(tmp_path, runner).ocr_document(image)

    assert text == "text from page-000.png"
    binary, argv = runner.calls[0]
    assert binary == "convert"
    assert argv[:3] == ["-density", "150", str(image)]
    assert ["-background", "white"] == argv[3:5]
    assert "-quality" in argv and "85" in argv


@pytest.mark.asyncio
async def test_failed_slide_is_skipped(tmp_path):
    async def ocr_skipping_third(argv):
        if Path(argv[0]).name == "page-002.png":
            raise ToolError("ocrs", "model failure")
        return await ocr_by_name(argv)

    runner = FakeRunner({"convert": imagemagick_pages(4), "ocrs": ocr_skipping_third})
    deck = tmp_path / "deck.pptx"
    deck.write_bytes(b"pptx")

    text = await make_pipeline(tmp_path, runner).ocr_document(deck, label="Slide")

    assert "=== Slide 3 ===" not in text
    assert "=== Slide 4 ===" in text


@pytest.mark.asyncio
async def test_no_recognized_text_fails(tmp_path):
    async def blank(argv):
        return b"   \n"

    runner = FakeRunner({"convert": imagemagick_pages(2), "ocrs": blank})
    deck = tmp_path / "deck.pptx"
    deck.write_bytes(b"pptx")

    with pytest.raises(ToolError) as exc_info:
        await make_pipeline(tmp_path, runner).ocr_document(deck, label="Slide")
    assert exc_info.value.tool == "ocrs"


@pytest.mark.asyncio
async def test_falls_back_to_libreoffice_render(tmp_path):
    runner = FakeRunner(
        {
            "convert": failing,
            "soffice": soffice_writes_pdf,
            "pdftoppm": pdftoppm_two_pages,
            "ocrs": ocr_by_name,
        }
    )
    deck = tmp_path / "deck.pptx"
    deck.write_bytes(b"pptx")

    text = await make_pipeline(tmp_path, runner).ocr_document(deck, label="Slide")

    assert runner.binaries()[:3] == ["convert", "soffice", "pdftoppm"]
    assert "=== Slide 1 ===\ntext from page-1.png" in text
    assert "=== Slide 2 ===\ntext from page-2.png" in text


@pytest.mark.asyncio
async def test_both_rasterizers_failing(tmp_path):
    runner = FakeRunner({"convert": failing})
    deck = tmp_path / "deck.pptx"
    deck.write_bytes(b"pptx")

    with pytest.raises(ToolError) as exc_info:
        await make_pipeline(tmp_path, runner).ocr_document(deck)
    assert exc_info.value.tool == "rasterize"


def test_collect_images_sorts_numerically(tmp_path):
    for name in ("slide-10.png", "slide-2.png", "slide-1.png", "notes.txt"):
        (tmp_path / name).write_bytes(b"")

    assert [p.name for p in collect_images(tmp_path)] == [
        "slide-1.png",
        "slide-2.png",
        "slide-10.png",
    ]
