"""
Document Fetcher

Resolves a document key to a local file and its extension. HTTP(S) keys are
streamed to the download directory; `file://` URLs and plain paths are used
in place.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import uuid
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Dict, Optional
from urllib.parse import unquote, urlparse

import httpx

from ..core.errors import FetchError

logger = logging.getLogger("docrag.fetcher")

CONTENT_TYPE_EXTENSIONS: Dict[str, str] = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation": "pptx",
    "image/jpeg": "jpeg",
    "image/png": "png",
    "text/plain": "txt",
}


@dataclass(frozen=True)
class FetchedDocument:
    path: Path
    extension: str
    # True when the file was downloaded and should be removed after use
    temporary: bool = False


def _suffix(name: str) -> str:
    return PurePosixPath(name).suffix.lstrip(".").lower()


class DocumentFetcher:
    """
    Fetch documents by key.

    Parameters
    ----------
    download_dir : Path
        Where remote documents are written.

    timeout : float
        HTTP timeout in seconds.

    max_bytes : int
        Downloads larger than this fail with FetchError.

    transport : Optional[httpx.AsyncBaseTransport]
        Custom transport, used by tests.
    """

    def __init__(
        self,
        download_dir: Path,
        timeout: float = 60.0,
        max_bytes: int = 100 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.download_dir = Path(download_dir)
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._transport = transport

    async def fetch(self, document_key: str) -> FetchedDocument:
        """
        Return a local path and extension for `document_key`.

        Raises
        ------
        FetchError
            If the document is unreachable or missing.
        """
        try:
            parsed = urlparse(document_key)
        except ValueError as exc:
            raise FetchError("Invalid document URL", document_key=document_key) from exc

        if parsed.scheme in ("http", "https"):
            return await self._download(document_key)

        if parsed.scheme == "file":
            path = Path(unquote(parsed.path))
        elif parsed.scheme and len(parsed.scheme) > 1:
            raise FetchError(
                f"Unsupported URL scheme: {parsed.scheme}",
                document_key=document_key,
            )
        else:
            path = Path(document_key)

        if not path.is_file():
            raise FetchError(f"Document not found: {path}", document_key=document_key)
        return FetchedDocument(path=path, extension=_suffix(path.name))

    def release(self, fetched: FetchedDocument) -> None:
        """Remove a temporary download."""
        if fetched.temporary:
            try:
                fetched.path.unlink()
            except FileNotFoundError:
                pass

    async def _download(self, url: str) -> FetchedDocument:
        loop = asyncio.get_running_loop()
        extension = _suffix(unquote(urlparse(url).path))
        self.download_dir.mkdir(parents=True, exist_ok=True)
        # Unique per call so concurrent fetches of one URL never share a file
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()[:32]
        stem = f"{digest}-{uuid.uuid4().hex[:8]}"
        partial = self.download_dir / f"{stem}.part"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                async with client.stream("GET", url) as response:
                    response.raise_for_status()
                    if not extension:
                        content_type = response.headers.get("content-type", "")
                        extension = CONTENT_TYPE_EXTENSIONS.get(
                            content_type.split(";")[0].strip().lower(), ""
                        )

                    received = 0
                    with partial.open("wb") as f:
                        async for block in response.aiter_bytes():
                            received += len(block)
                            if received > self.max_bytes:
                                raise FetchError(
                                    f"Document exceeds {self.max_bytes} bytes",
                                    document_key=url,
                                )
                            await loop.run_in_executor(None, f.write, block)
        except httpx.HTTPStatusError as exc:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"Download failed with HTTP {exc.response.status_code}",
                document_key=url,
            ) from exc
        except httpx.HTTPError as exc:
            partial.unlink(missing_ok=True)
            raise FetchError(
                f"Download failed: {type(exc).__name__}",
                document_key=url,
            ) from exc
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

        path = self.download_dir / f"{stem}.{extension or 'bin'}"
        os.replace(partial, path)
        logger.info("Downloaded %s (%d bytes) to %s", url, received, path)
        return FetchedDocument(path=path, extension=extension, temporary=True)
