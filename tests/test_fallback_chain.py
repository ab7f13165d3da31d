"""
Fallback Chain Tests

Covers strategy ordering, failure aggregation and the estimation policy.
"""

import pytest

from docrag.core.errors import ExtractionToolFailure, ToolAttempt
from docrag.extraction.chain import FallbackChain, Strategy, estimate_pages
from docrag.extraction.tools import ToolError


def _failing(tool, reason="boom"):
    async def run(path):
        raise ToolError(tool, reason)
    return run


def _returning(text):
    async def run(path):
        return text
    return run


@pytest.mark.asyncio
async def test_first_success_wins(tmp_path):
    calls = []

    async def tracked(path):
        calls.append("second")
        return "never"

    chain = FallbackChain(
        "pdf",
        [
            Strategy("primary", _returning("primary text")),
            Strategy("secondary", tracked),
        ],
    )
    result = await chain.run(tmp_path / "a.pdf", "a.pdf")

    assert result.text == "primary text"
    assert result.tool == "primary"
    assert result.attempts == ()
    assert calls == []


@pytest.mark.asyncio
async def test_failures_and_empty_output_advance_the_chain(tmp_path):
    chain = FallbackChain(
        "pdf",
        [
            Strategy("broken", _failing("broken", "exit status 1")),
            Strategy("blank", _returning("  \n ")),
            Strategy("working", _returning("finally")),
        ],
    )
    result = await chain.run(tmp_path / "a.pdf", "a.pdf")

    assert result.tool == "working"
    assert result.attempts == (
        ToolAttempt("broken", "exit status 1"),
        ToolAttempt("blank", "no text produced"),
    )


@pytest.mark.asyncio
async def test_exhausted_chain_lists_every_tool(tmp_path):
    chain = FallbackChain(
        "docx",
        [Strategy("a", _failing("a")), Strategy("b", _failing("b"))],
    )

    with pytest.raises(ExtractionToolFailure) as exc_info:
        await chain.run(
            tmp_path / "r.docx",
            "r.docx",
            prior_attempts=[ToolAttempt("soffice", "timed out")],
        )

    failure = exc_info.value
    assert failure.tools == ("soffice", "a", "b")
    assert failure.document_key == "r.docx"
    assert failure.document_format == "docx"


@pytest.mark.asyncio
async def test_estimation_policy_returns_degraded_result(tmp_path):
    path = tmp_path / "big.pdf"
    path.write_bytes(b"x" * 120_000)

    chain = FallbackChain(
        "pdf",
        [Strategy("a", _failing("a"))],
        estimation_fallback=True,
    )
    result = await chain.run(path, "big.pdf")

    assert result.degraded
    assert result.text == ""
    assert result.tool == "estimate"
    assert result.estimated_pages == 3
    assert result.attempts == (ToolAttempt("a", "boom"),)


def test_estimate_pages_minimum(tmp_path):
    empty = tmp_path / "empty.pdf"
    empty.write_bytes(b"")
    assert estimate_pages(empty) == 1
    assert estimate_pages(tmp_path / "missing.pdf") == 1
