"""
Parallel PDF Splitter

Large PDFs are partitioned into contiguous page ranges, one per worker, and
each range is extracted on the CPU thread pool. Results are reassembled in
page order, never completion order.
"""

from __future__ import annotations

import asyncio
import logging
import math
from concurrent.futures import Executor
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional

from .tools import ToolError

logger = logging.getLogger("docrag.extraction.splitter")

RangeExtractor = Callable[[str, int, int], str]


class PageRange(NamedTuple):
    """Inclusive, 1-indexed page range."""
    start: int
    end: int

    @property
    def page_count(self) -> int:
        return self.end - self.start + 1


def partition_pages(total_pages: int, workers: int) -> List[PageRange]:
    """
    Split pages `1..total_pages` into `min(workers, total_pages)` ranges.

    Ranges are contiguous, non-overlapping and cover every page exactly
    once. Each range holds `ceil(total_pages / count)` pages with a shorter
    final range. When that step would leave a trailing range empty
    (9 pages on 4 workers), sizes are balanced instead, differing by at
    most one page with the larger ranges first.

    Raises
    ------
    ValueError
        If either argument is less than 1.
    """
    if total_pages < 1:
        raise ValueError("total_pages must be >= 1")
    if workers < 1:
        raise ValueError("workers must be >= 1")

    count = min(workers, total_pages)
    step = math.ceil(total_pages / count)

    if (count - 1) * step < total_pages:
        sizes = [step] * (count - 1) + [total_pages - (count - 1) * step]
    else:
        base, extra = divmod(total_pages, count)
        sizes = [base + (1 if i < extra else 0) for i in range(count)]

    ranges: List[PageRange] = []
    start = 1
    for size in sizes:
        ranges.append(PageRange(start, start + size - 1))
        start += size
    return ranges


async def extract_parallel(
    path: Path,
    total_pages: int,
    workers: int,
    extract_range: RangeExtractor,
    executor: Optional[Executor] = None,
) -> str:
    """
    Extract every page range concurrently and join them in page order.

    Any failing range fails the whole document; no partial text is
    returned.

    Raises
    ------
    ToolError
        If any range's extraction fails.
    """
    loop = asyncio.get_running_loop()
    ranges = partition_pages(total_pages, workers)
    logger.info(
        "Splitting %s (%d pages) into %d ranges",
        path.name,
        total_pages,
        len(ranges),
    )

    futures = [
        loop.run_in_executor(executor, extract_range, str(path), r.start, r.end)
        for r in ranges
    ]

    # gather preserves input order, which is page order
    results = await asyncio.gather(*futures, return_exceptions=True)

    for page_range, result in zip(ranges, results):
        if isinstance(result, ToolError):
            raise ToolError(
                "pymupdf-parallel",
                f"pages {page_range.start}-{page_range.end}: {result.reason}",
            ) from result
        if isinstance(result, BaseException):
            raise result

    return "\n".join(results)
