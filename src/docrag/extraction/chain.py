"""
Fallback Chain Driver

Each document format is extracted by an ordered list of strategies. A single
driver loop tries them in priority order, records why each one failed, and
returns the first non-empty text. Exhausting the list raises
ExtractionToolFailure, unless page estimation is enabled, in which case a
degraded (empty-text) result is returned instead.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from ..core.errors import ExtractionToolFailure, ToolAttempt
from .tools import ToolError

logger = logging.getLogger("docrag.extraction")

StrategyFn = Callable[[Path], Awaitable[str]]

# Rough size of one page for the estimation policy
ESTIMATED_BYTES_PER_PAGE = 50_000


@dataclass(frozen=True)
class Strategy:
    name: str
    run: StrategyFn


@dataclass(frozen=True)
class ExtractionResult:
    """
    Text produced for one document.

    `degraded` results come from the estimation policy: `text` is empty and
    `estimated_pages` holds the page estimate.
    """
    text: str
    tool: str
    attempts: Tuple[ToolAttempt, ...] = ()
    degraded: bool = False
    estimated_pages: Optional[int] = None


def estimate_pages(path: Path) -> int:
    try:
        size = path.stat().st_size
    except OSError:
        return 1
    return max(1, math.ceil(size / ESTIMATED_BYTES_PER_PAGE))


class FallbackChain:
    """
    Ordered strategies for one document format.

    Parameters
    ----------
    document_format : str
        Format label used in logs and failures (e.g. "pdf", "docx").

    strategies : Sequence[Strategy]
        Strategies in priority order.

    estimation_fallback : bool
        Return a degraded result instead of failing when every strategy
        has been exhausted.
    """

    def __init__(
        self,
        document_format: str,
        strategies: Sequence[Strategy],
        *,
        estimation_fallback: bool = False,
    ) -> None:
        self.document_format = document_format
        self.strategies = tuple(strategies)
        self.estimation_fallback = estimation_fallback

    async def run(
        self,
        path: Path,
        document_key: str,
        prior_attempts: Sequence[ToolAttempt] = (),
    ) -> ExtractionResult:
        attempts: List[ToolAttempt] = list(prior_attempts)

        for strategy in self.strategies:
            try:
                text = await strategy.run(path)
            except ToolError as exc:
                logger.warning(
                    "%s strategy '%s' failed for %s: %s",
                    self.document_format,
                    strategy.name,
                    document_key,
                    exc.reason,
                )
                attempts.append(ToolAttempt(strategy.name, exc.reason))
                continue

            if not text.strip():
                logger.warning(
                    "%s strategy '%s' produced no text for %s",
                    self.document_format,
                    strategy.name,
                    document_key,
                )
                attempts.append(ToolAttempt(strategy.name, "no text produced"))
                continue

            logger.info(
                "Extracted %d chars from %s with '%s'",
                len(text),
                document_key,
                strategy.name,
            )
            return ExtractionResult(text=text, tool=strategy.name, attempts=tuple(attempts))

        return self.exhausted(path, document_key, attempts)

    def exhausted(
        self,
        path: Path,
        document_key: str,
        attempts: Sequence[ToolAttempt],
    ) -> ExtractionResult:
        """Apply the estimation policy or raise ExtractionToolFailure."""
        if not self.estimation_fallback:
            raise ExtractionToolFailure(
                self.document_format,
                attempts,
                document_key=document_key,
            )

        pages = estimate_pages(path)
        logger.warning(
            "All %s strategies failed for %s; returning degraded estimate of %d page(s)",
            self.document_format,
            document_key,
            pages,
        )
        return ExtractionResult(
            text="",
            tool="estimate",
            attempts=tuple(attempts),
            degraded=True,
            estimated_pages=pages,
        )
