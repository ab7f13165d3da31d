"""
Cooperative shutdown signalling.

A single `ShutdownToken` is created per process and passed to every
long-running task. Tasks check it at stage boundaries, and `race()` runs a
coroutine against the signal so in-flight work is cancelled when shutdown
fires. Cancellation unwinds through `async with` blocks, so open
transactions roll back and temporary directories are removed.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, TypeVar

from .errors import OperationCancelled

logger = logging.getLogger("docrag.shutdown")

T = TypeVar("T")


class ShutdownToken:
    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def is_set(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def trigger(self, reason: str = "shutdown requested") -> None:
        if not self._event.is_set():
            logger.info("Shutdown signalled: %s", reason)
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_set(self, document_key: Optional[str] = None) -> None:
        """Raise OperationCancelled if shutdown has been signalled."""
        if self._event.is_set():
            raise OperationCancelled(
                f"Operation aborted: {self._reason}",
                document_key=document_key,
            )

    async def race(
        self,
        work: Awaitable[T],
        document_key: Optional[str] = None,
    ) -> T:
        """
        Await `work` unless shutdown fires first.

        When the signal wins, the work task is cancelled and awaited until it
        has unwound, then OperationCancelled is raised.
        """
        if self._event.is_set():
            if asyncio.iscoroutine(work):
                work.close()
            self.raise_if_set(document_key)

        task = asyncio.ensure_future(work)
        waiter = asyncio.ensure_future(self._event.wait())

        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            raise

        if task in done:
            waiter.cancel()
            return task.result()

        task.cancel()
        # Let the task run its cleanup; its outcome is superseded by shutdown
        await asyncio.gather(task, return_exceptions=True)
        raise OperationCancelled(
            f"Operation aborted: {self._reason}",
            document_key=document_key,
        )
