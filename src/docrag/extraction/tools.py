"""
External tool invocation.

Document-conversion binaries (LibreOffice, ImageMagick, poppler, qpdf, the
OCR engine) run as subprocesses. Their failures are reported as ToolError so
the fallback driver can advance to the next strategy.
"""

from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence, Union

logger = logging.getLogger("docrag.extraction.tools")

StrPath = Union[str, Path]

_STDERR_TAIL = 500
_DIGITS = re.compile(r"(\d+)")


class ToolError(RuntimeError):
    """A single extraction tool or library call failed."""

    def __init__(self, tool: str, reason: str) -> None:
        super().__init__(f"{tool}: {reason}")
        self.tool = tool
        self.reason = reason


async def run_tool(
    binary: str,
    args: Sequence[StrPath],
    *,
    timeout: float,
    cwd: Optional[StrPath] = None,
) -> bytes:
    """
    Run an external binary and return its stdout.

    Parameters
    ----------
    binary : str
        Executable name or path.

    args : Sequence[StrPath]
        Command-line arguments.

    timeout : float
        Seconds to wait before the process is killed.

    cwd : Optional[StrPath]
        Working directory for the process.

    Raises
    ------
    ToolError
        If the binary is missing, times out, or exits non-zero.
    """
    argv = [binary, *(str(a) for a in args)]
    logger.debug("Running tool: %s", " ".join(argv))

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
        )
    except FileNotFoundError as exc:
        raise ToolError(binary, "executable not found") from exc
    except PermissionError as exc:
        raise ToolError(binary, "executable not permitted") from exc

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        await _kill(proc)
        raise ToolError(binary, f"timed out after {timeout:.0f}s") from exc
    except asyncio.CancelledError:
        await _kill(proc)
        raise

    if proc.returncode != 0:
        detail = stderr.decode("utf-8", errors="replace").strip()[-_STDERR_TAIL:]
        raise ToolError(binary, f"exit status {proc.returncode}: {detail or 'no output'}")

    return stdout


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()


def page_number(path: Path) -> int:
    """Trailing page/slide number embedded in a rendered image filename."""
    numbers = _DIGITS.findall(path.stem)
    return int(numbers[-1]) if numbers else 0


def collect_images(directory: Path, suffix: str = ".png") -> List[Path]:
    """
    Return rendered page images in page order.

    Ordering is numeric on the page suffix so that `slide-10` follows
    `slide-9` regardless of zero padding.
    """
    images = [p for p in directory.iterdir() if p.suffix.lower() == suffix]
    return sorted(images, key=lambda p: (page_number(p), p.name))
